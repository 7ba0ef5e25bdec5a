import asyncio

import httpx
import pytest

from sitescope.exceptions import RenderError
from sitescope.render.base import CrawlRequest
from sitescope.render.http_engine import HttpRenderEngine
from fake_render import FakeRenderEngine, html_page


class Recorder:
    def __init__(self, follow=None):
        self.pages = []
        self.failures = []
        self.follow = follow or {}

    async def on_page(self, context):
        self.pages.append(context.request.url)
        links = self.follow.get(context.request.url, [])
        await context.enqueue([CrawlRequest(url=link, depth=context.request.depth + 1) for link in links])

    async def on_failure(self, request, error):
        self.failures.append((request.url, getattr(error, "reason", None)))


@pytest.mark.asyncio
async def test_run_follows_enqueued_links_once():
    pages = {url: html_page(url, "") for url in ["https://a.test/", "https://a.test/x", "https://a.test/y"]}
    recorder = Recorder(
        follow={
            "https://a.test/": ["https://a.test/x", "https://a.test/y", "https://a.test/x"],
            "https://a.test/x": ["https://a.test/"],
        }
    )
    engine = FakeRenderEngine(pages)

    stats = await engine.run([CrawlRequest(url="https://a.test/")], recorder.on_page, recorder.on_failure)

    assert sorted(recorder.pages) == sorted(pages)
    assert stats.handled == 3
    assert stats.requested == 3
    assert engine.rendered.count("https://a.test/x") == 1


@pytest.mark.asyncio
async def test_run_stops_at_max_requests():
    pages = {f"https://a.test/{i}": html_page(f"https://a.test/{i}", "") for i in range(10)}
    recorder = Recorder()
    engine = FakeRenderEngine(pages, max_requests=4, concurrency=3)

    stats = await engine.run([CrawlRequest(url=url) for url in pages], recorder.on_page, recorder.on_failure)

    assert stats.requested == 4
    assert len(engine.rendered) == 4
    assert len(recorder.pages) == 4


@pytest.mark.asyncio
async def test_render_failure_is_reported_and_run_continues():
    pages = {
        "https://a.test/": html_page("https://a.test/", ""),
        "https://a.test/boom": RenderError("server_error", "HTTP 503"),
    }
    recorder = Recorder()
    engine = FakeRenderEngine(pages)

    stats = await engine.run(
        [CrawlRequest(url="https://a.test/boom"), CrawlRequest(url="https://a.test/"), CrawlRequest(url="https://a.test/missing")],
        recorder.on_page,
        recorder.on_failure,
    )

    assert recorder.pages == ["https://a.test/"]
    assert sorted(recorder.failures) == [
        ("https://a.test/boom", "server_error"),
        ("https://a.test/missing", "not_found"),
    ]
    assert stats.failed == 2


@pytest.mark.asyncio
async def test_handler_error_aborts_run():
    pages = {f"https://a.test/{i}": html_page(f"https://a.test/{i}", "") for i in range(5)}
    engine = FakeRenderEngine(pages)

    async def on_page(context):
        raise RuntimeError("database is gone")

    async def on_failure(request, error):
        pass

    with pytest.raises(RuntimeError, match="database is gone"):
        await engine.run([CrawlRequest(url=url) for url in pages], on_page, on_failure)

    assert len(engine.rendered) == 1


@pytest.mark.asyncio
async def test_enqueue_dedups_by_unique_key():
    engine = FakeRenderEngine({})

    added = await engine.enqueue(
        [
            CrawlRequest(url="https://a.test/?ref=1", unique_key="https://a.test/"),
            CrawlRequest(url="https://a.test/"),
        ]
    )

    assert added == 1


def _http_engine(handler, **kwargs):
    kwargs.setdefault("max_requests", 10)
    return HttpRenderEngine(user_agent="SiteScope-Bot/1.0", transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.asyncio
async def test_http_engine_renders_html_and_follows_redirects():
    seen_agents = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_agents.append(request.headers["User-Agent"])
        if request.url.path == "/old":
            return httpx.Response(301, headers={"Location": "https://a.test/new"})
        return httpx.Response(
            200,
            headers={"Content-Type": "text/html; charset=utf-8", "Last-Modified": "Wed, 21 Oct 2015 07:28:00 GMT"},
            text="<html><title>New</title></html>",
        )

    recorder_pages = []

    async def on_page(context):
        recorder_pages.append(context.page)

    async def on_failure(request, error):
        raise AssertionError(f"unexpected failure {error}")

    await _http_engine(handler).run([CrawlRequest(url="https://a.test/old")], on_page, on_failure)

    (page,) = recorder_pages
    assert page.url == "https://a.test/old"
    assert page.loaded_url == "https://a.test/new"
    assert page.status_code == 200
    assert "<title>New</title>" in page.html
    assert page.http_version == "HTTP/1.1"
    assert page.headers["last-modified"] == "Wed, 21 Oct 2015 07:28:00 GMT"
    assert set(seen_agents) == {"SiteScope-Bot/1.0"}


@pytest.mark.asyncio
async def test_http_engine_keeps_client_errors_as_pages():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, headers={"Content-Type": "text/html"}, text="<html>gone</html>")

    statuses = []

    async def on_page(context):
        statuses.append(context.page.status_code)

    async def on_failure(request, error):
        raise AssertionError(f"unexpected failure {error}")

    await _http_engine(handler).run([CrawlRequest(url="https://a.test/")], on_page, on_failure)

    assert statuses == [404]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response,reason",
    [
        (httpx.Response(200, headers={"Content-Type": "application/pdf"}, content=b"%PDF"), "non_html_content"),
        (httpx.Response(502, headers={"Content-Type": "text/html"}, text="bad gateway"), "server_error"),
        (httpx.Response(200, headers={"Content-Type": "text/html"}, text="x" * 100), "body_too_large"),
    ],
)
async def test_http_engine_failure_reasons(response, reason):
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    failures = []

    async def on_page(context):
        raise AssertionError("page should not be handled")

    async def on_failure(request, error):
        failures.append(error.reason)

    await _http_engine(handler, max_download_bytes=50).run([CrawlRequest(url="https://a.test/")], on_page, on_failure)

    assert failures == [reason]


@pytest.mark.asyncio
async def test_http_engine_maps_transport_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    failures = []

    async def on_page(context):
        raise AssertionError("page should not be handled")

    async def on_failure(request, error):
        failures.append(error.reason)

    await _http_engine(handler).run([CrawlRequest(url="https://a.test/")], on_page, on_failure)

    assert failures == ["connection_error"]


@pytest.mark.asyncio
async def test_handler_timeout_fails_only_that_page():
    pages = {url: html_page(url, "") for url in ["https://a.test/slow", "https://a.test/fast"]}
    recorder = Recorder()
    engine = FakeRenderEngine(pages, request_handler_timeout=0.05)

    async def on_page(context):
        if context.request.url.endswith("/slow"):
            await asyncio.sleep(1)
        await recorder.on_page(context)

    stats = await engine.run(
        [CrawlRequest(url="https://a.test/slow"), CrawlRequest(url="https://a.test/fast")],
        on_page,
        recorder.on_failure,
    )

    assert recorder.failures == [("https://a.test/slow", "handler_timeout")]
    assert recorder.pages == ["https://a.test/fast"]
    assert stats.failed == 1
    assert stats.handled == 1

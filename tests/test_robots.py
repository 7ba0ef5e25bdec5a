import httpx
import pytest

from sitescope.utils.robots import (
    RobotsFetcher,
    parse_robots_txt,
    path_matches,
    robots_url_for,
)


ROBOTS_TXT = """
# sample
User-agent: *
Disallow: /private
Allow: /private/public$
Crawl-delay: 2

User-agent: SiteScope-Bot
Disallow: /bot-only
Crawl-delay: 5

Sitemap: https://example.com/sitemap.xml
Sitemap: https://example.com/sitemap.xml
Sitemap: https://example.com/news-sitemap.xml
"""


def test_longer_allow_overrides_disallow():
    directives = parse_robots_txt(ROBOTS_TXT)

    assert directives.is_allowed("/private/public")
    assert not directives.is_allowed("/private/x")
    assert not directives.is_allowed("/private/public/more")


def test_explicit_allow_list_denies_unmatched_paths():
    directives = parse_robots_txt(ROBOTS_TXT)

    # "*" has an Allow rule, so anything it does not match is refused
    assert not directives.is_allowed("/blog")


def test_no_rules_means_allowed():
    directives = parse_robots_txt("Sitemap: https://example.com/s.xml\n")

    assert directives.is_allowed("/anything")
    assert directives.sitemap_urls == ["https://example.com/s.xml"]


def test_agent_rules_are_checked_before_wildcard():
    directives = parse_robots_txt(ROBOTS_TXT)

    assert not directives.is_allowed("/bot-only", "SiteScope-Bot")
    assert directives.is_allowed("/private/public", "SiteScope-Bot")
    assert not directives.is_allowed("/private/x", "SiteScope-Bot")
    assert "/bot-only" not in directives.user_agents["*"].disallow


def test_agent_block_matches_full_user_agent_string():
    directives = parse_robots_txt("User-agent: SiteScope-Bot\nDisallow: /\nCrawl-delay: 4\n")

    assert not directives.is_url_allowed("https://example.com/page", "SiteScope-Bot/1.0")
    assert not directives.is_url_allowed("https://example.com/", "SiteScope-Bot/1.0 (+https://sitescope.test/bot)")
    assert directives.is_url_allowed("https://example.com/page", "OtherBot/2.0")
    assert directives.get_crawl_delay("SiteScope-Bot/1.0") == 4


def test_versioned_group_name_is_reduced_to_product_token():
    directives = parse_robots_txt("User-agent: SiteScope-Bot/2.0\nDisallow: /drafts\n")

    assert list(directives.user_agents) == ["sitescope-bot"]
    assert not directives.is_allowed("/drafts/1", "SiteScope-Bot/1.0")


def test_sitemaps_are_deduplicated_in_order():
    directives = parse_robots_txt(ROBOTS_TXT)

    assert directives.sitemap_urls == [
        "https://example.com/sitemap.xml",
        "https://example.com/news-sitemap.xml",
    ]


def test_crawl_delay_prefers_agent_block():
    directives = parse_robots_txt(ROBOTS_TXT)

    assert directives.get_crawl_delay("SiteScope-Bot") == 5
    assert directives.get_crawl_delay("OtherBot") == 2


def test_empty_disallow_and_unknown_directives_are_ignored():
    directives = parse_robots_txt("User-agent: *\nDisallow:\nNoindex: /x\nDisallow /broken\n")

    assert directives.user_agents["*"].disallow == []
    assert directives.is_allowed("/x")


@pytest.mark.parametrize(
    "path,pattern,expected",
    [
        ("/private/x", "/private", True),
        ("/privateer", "/private", True),
        ("/public", "/private", False),
        ("/shop/item.php?id=1", "/*.php", True),
        ("/page.php", "/*.php$", True),
        ("/page.php5", "/*.php$", False),
        ("/anything", "", False),
    ],
)
def test_path_matches_wildcards_and_anchors(path, pattern, expected):
    assert path_matches(path, pattern) is expected


def test_is_url_allowed_includes_query_string():
    directives = parse_robots_txt("User-agent: *\nDisallow: /search?q=\n")

    assert not directives.is_url_allowed("https://example.com/search?q=shoes")
    assert directives.is_url_allowed("https://example.com/search")


def test_robots_url_for_uses_origin():
    assert robots_url_for("https://Example.com/blog/post?x=1") == "https://example.com/robots.txt"


@pytest.mark.anyio
async def test_fetch_parses_successful_response():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/robots.txt"
        assert request.headers["User-Agent"] == "TestBot"
        return httpx.Response(200, text=ROBOTS_TXT)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await RobotsFetcher(client, "TestBot").fetch("https://example.com/start")

    assert result.status_code == 200
    assert result.content == ROBOTS_TXT
    assert result.error is None
    assert len(result.sitemap_urls) == 2


@pytest.mark.anyio
async def test_fetch_missing_file_returns_empty_result():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="not here")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await RobotsFetcher(client, "TestBot").fetch("https://example.com")

    assert result.content is None
    assert result.status_code == 404
    assert result.sitemap_urls == []
    assert result.directives.is_allowed("/anything")


@pytest.mark.anyio
async def test_fetch_network_error_never_raises():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await RobotsFetcher(client, "TestBot").fetch("https://example.com")

    assert result.content is None
    assert result.status_code is None
    assert "connection refused" in result.error

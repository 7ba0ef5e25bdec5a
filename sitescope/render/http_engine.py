import os
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from sitescope.exceptions import RenderError
from sitescope.render.base import CrawlRequest, RenderedPage, RenderEngine


MAX_DOWNLOAD_BYTES = int(os.getenv("MAX_DOWNLOAD_BYTES", 2_000_000))
MAX_REDIRECTS = 10


class HttpRenderEngine(RenderEngine):
    """Plain HTTP fetches; no JavaScript and no screenshots."""

    name = "http"

    def __init__(
        self,
        *,
        user_agent: str,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_download_bytes: int = MAX_DOWNLOAD_BYTES,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.user_agent = user_agent
        self.max_download_bytes = max_download_bytes
        self._transport = transport
        self._client = client
        self._owns_client = client is None

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[None]:
        if not self._owns_client:
            yield
            return

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=self.navigation_timeout),
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            transport=self._transport,
        ) as client:
            self._client = client
            try:
                yield
            finally:
                self._client = None

    async def _render(self, request: CrawlRequest) -> RenderedPage:
        if self._client is None:
            raise RuntimeError("HTTP client is not initialized")

        start = time.perf_counter()
        try:
            resp = await self._client.get(
                request.url,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": (
                        "text/html,application/xhtml+xml,application/xml;q=0.9,"
                        "*/*;q=0.8"
                    ),
                },
            )
        except httpx.TooManyRedirects as exc:
            raise RenderError("redirect_loop", str(exc)) from exc
        except httpx.TimeoutException as exc:
            raise RenderError("network_timeout", str(exc) or "timed out") from exc
        except httpx.TransportError as exc:
            raise RenderError("connection_error", str(exc) or exc.__class__.__name__) from exc

        response_time_ms = int((time.perf_counter() - start) * 1000)

        if resp.status_code >= 500:
            raise RenderError("server_error", f"HTTP {resp.status_code} for {request.url}")

        content_type = (resp.headers.get("Content-Type") or "").lower()
        body = resp.content or b""

        if len(body) > self.max_download_bytes:
            raise RenderError("body_too_large", f"{len(body)} bytes from {request.url}")

        if "text/html" not in content_type and "application/xhtml" not in content_type:
            raise RenderError("non_html_content", f"{content_type or 'no content type'} at {request.url}")

        return RenderedPage(
            url=request.url,
            loaded_url=str(resp.url),
            status_code=resp.status_code,
            headers=dict(resp.headers),
            html=resp.text or "",
            response_time_ms=response_time_ms,
            http_version=resp.http_version,
        )

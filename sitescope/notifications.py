import asyncio
from typing import Callable, List, Optional

import httpx
from loguru import logger

from sitescope.utils.config_loader import Config


ClientFactory = Callable[[], httpx.AsyncClient]


class WebhookNotifier:
    """POST ``{"jobId": ...}`` to a downstream service once a job completes.

    Failures are retried with a linearly growing delay and finally logged;
    they never reach the caller. An unset URL makes :meth:`notify` a no-op.
    """

    def __init__(
        self,
        name: str,
        url: Optional[str],
        *,
        timeout: float = 30,
        max_retries: int = 3,
        retry_delay: float = 5,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.name = name
        self.url = url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._client_factory = client_factory or (lambda: httpx.AsyncClient(timeout=self.timeout))

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def notify(self, job_id) -> bool:
        if not self.enabled:
            logger.debug(f"[{self.name}] webhook not configured, skipping job {job_id}")
            return False

        payload = {"jobId": str(job_id)}
        async with self._client_factory() as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    logger.info(
                        f"[{self.name}] Sending webhook (attempt {attempt}/{self.max_retries}) for job {job_id}"
                    )
                    response = await client.post(self.url, json=payload, timeout=self.timeout)
                    response.raise_for_status()
                    logger.info(f"[{self.name}] Webhook accepted for job {job_id}")
                    return True
                except httpx.HTTPError as exc:
                    logger.warning(f"[{self.name}] Webhook attempt {attempt} failed for job {job_id}: {exc}")
                    if attempt < self.max_retries:
                        await asyncio.sleep(self.retry_delay * attempt)

        logger.error(f"[{self.name}] Webhook gave up for job {job_id} after {self.max_retries} attempts")
        return False


def build_notifiers(config: Config, client_factory: Optional[ClientFactory] = None) -> List[WebhookNotifier]:
    options = dict(
        timeout=config.webhook_timeout,
        max_retries=config.webhook_max_retries,
        retry_delay=config.webhook_retry_delay,
        client_factory=client_factory,
    )
    return [
        WebhookNotifier("page-analyzer", config.page_analyzer_webhook_url, **options),
        WebhookNotifier("crawl-analyzer", config.crawl_analyzer_webhook_url, **options),
        WebhookNotifier("email-report", config.email_report_webhook_url, **options),
    ]

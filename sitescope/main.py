import asyncio
import signal
from loguru import logger

# -------------------------------
# UVLOOP (اگر نصب بود فعال می‌کنیم)
# -------------------------------
try:
    import uvloop
    uvloop.install()
except ImportError:
    logger.warning("uvloop not available, using default asyncio loop.")

# -------------------------------
# INTERNAL IMPORTS
# -------------------------------
from tortoise import Tortoise

from sitescope.monitoring.metrics_server import start_metrics_server
from sitescope.notifications import build_notifiers
from sitescope.processor import CrawlProcessor
from sitescope.scheduler import Scheduler
from sitescope.storage.crawl_store import CrawlStore
from sitescope.storage.postgres.postgres_init import init_postgres
from sitescope.utils.config_loader import load_config
from sitescope.utils.logger import setup_logger


# -------------------------------
# MAIN APPLICATION
# -------------------------------
async def main() -> None:
    config = load_config()
    setup_logger(config.log_level, config.log_path)

    logger.info("Starting SiteScope crawl engine...")

    # ---- PostgreSQL ----
    await init_postgres(config.database_url)

    store = CrawlStore(
        max_retries=config.db_max_retries,
        retry_delay=config.db_retry_delay,
    )
    processor = CrawlProcessor(store, config, notifiers=build_notifiers(config))
    scheduler = Scheduler(processor, interval_seconds=config.poll_interval_seconds)

    # ---- Metrics Server ----
    metrics_runner, _ = await start_metrics_server(port=config.metrics_port)

    scheduler_task = asyncio.create_task(scheduler.run())

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    logger.info(
        f"Crawl engine started (engine={config.render_engine}, poll every {config.poll_interval_seconds}s)."
    )

    try:
        await shutdown_event.wait()
    except asyncio.CancelledError:
        pass
    finally:
        logger.info("Shutting down...")
        # an in-flight job is not preempted; it is picked up again on the next start
        await scheduler.stop(timeout=5)
        scheduler_task.cancel()
        await asyncio.gather(scheduler_task, return_exceptions=True)
        await processor.wait_for_notifications()

        await metrics_runner.shutdown()
        await metrics_runner.cleanup()

        await Tortoise.close_connections()


# -------------------------------
# ENTRYPOINT
# -------------------------------
if __name__ == "__main__":
    asyncio.run(main())

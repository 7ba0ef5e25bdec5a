from loguru import logger
from tortoise import Tortoise, connections


MODEL_MODULES = [
    "sitescope.storage.models.crawl_job_model",
    "sitescope.storage.models.page_model",
    "sitescope.storage.models.inlink_model",
    "sitescope.storage.models.external_link_model",
    "sitescope.storage.models.sitemap_model",
]


def to_asyncpg_dsn(url: str) -> str:
    """Convert a PostgreSQL DSN to the ``asyncpg://`` scheme for Tortoise.

    SQLAlchemy-style driver suffixes (``postgresql+psycopg2://``) are dropped.
    Other schemes, such as ``sqlite://`` in tests, pass through unchanged.
    """

    if url.startswith("postgresql+"):
        url = "postgresql://" + url.split("://", 1)[1]
    if url.startswith("postgresql://"):
        return "asyncpg://" + url[len("postgresql://") :]
    if url.startswith("postgres://"):
        return "asyncpg://" + url[len("postgres://") :]
    return url


async def init_postgres(db_url: str, *, generate_schemas: bool = True) -> None:
    """
    Connect the ORM and create or verify the tables.
    """
    logger.info("Initializing PostgreSQL and ORM models...")

    await Tortoise.init(
        db_url=to_asyncpg_dsn(db_url),
        modules={"models": MODEL_MODULES},
    )

    if generate_schemas:
        await Tortoise.generate_schemas(safe=True)
        logger.info("PostgreSQL tables created or verified.")


async def reconnect() -> None:
    """Drop pooled connections; the next query opens a fresh one."""
    logger.warning("Reconnecting to the database...")
    await connections.close_all(discard=False)

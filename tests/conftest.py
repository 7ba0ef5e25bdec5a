import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from tortoise import Tortoise

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sitescope.storage.postgres.postgres_init import init_postgres
from sitescope.utils.config_loader import Config, load_environment


@pytest.fixture(autouse=True)
def load_dotenv_defaults(monkeypatch):
    """Ensure .env defaults are available for every test."""

    # Clear key variables so tests always use the .env baseline unless they
    # explicitly override values via monkeypatch or a custom env file.
    postgres_parts = ["POSTGRES_USER", "POSTGRES_PASSWORD", "POSTGRES_HOST", "POSTGRES_PORT", "POSTGRES_DB"]
    for key in postgres_parts + [name.upper() for name in Config.model_fields]:
        monkeypatch.delenv(key, raising=False)

    load_environment(override=True)

    yield

    # Clean up to avoid leaking state between tests.
    for key in list(os.environ.keys()):
        if key.startswith("TEST_"):
            monkeypatch.delenv(key, raising=False)


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory SQLite schema per test."""
    await init_postgres("sqlite://:memory:")
    yield
    await Tortoise._drop_databases()

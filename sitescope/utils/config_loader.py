from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


DEFAULT_USER_AGENT = "SiteScope-Bot/1.0"
CONFIG_PATH = Path(__file__).resolve().parents[1] / "config" / "config.yaml"

PathLike = Union[str, Path]


class Config(BaseSettings):
    """Runtime settings.

    Environment variables (and ``.env``) are read before constructor values,
    so a value loaded from ``config.yaml`` only applies when the matching
    variable is unset.
    """

    database_url: str
    crawler_user_agent: str = DEFAULT_USER_AGENT

    poll_interval_seconds: float = 10
    robots_timeout: float = 10
    sitemap_timeout: float = 15
    max_sitemaps: int = 50
    max_sitemap_urls: int = 2000
    sample_quota: int = 3

    render_engine: str = "http"
    render_concurrency: int = 4
    navigation_timeout: float = 30
    request_handler_timeout: float = 60
    max_crawl_delay: float = 10
    screenshot_dir: str = "storage/screenshots"

    db_max_retries: int = 3
    db_retry_delay: float = 1.0

    page_analyzer_webhook_url: Optional[str] = None
    crawl_analyzer_webhook_url: Optional[str] = None
    email_report_webhook_url: Optional[str] = None
    webhook_timeout: float = 30
    webhook_max_retries: int = 3
    webhook_retry_delay: float = 5

    metrics_port: int = 8000
    log_level: str = "INFO"
    log_path: str = "/data/logs/sitescope.log"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", env_ignore_empty=True)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Precedence: env -> .env -> config file -> default
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_environment(dotenv_path: PathLike | None = None, *, override: bool = False) -> bool:
    """Load environment variables from a .env file.

    Args:
        dotenv_path: Explicit path to the .env file. If omitted, the first
            discoverable .env in the current working directory tree is used.
        override: Whether to overwrite existing environment variables.

    Returns:
        True if an env file was found and loaded, otherwise False.
    """

    path = dotenv_path
    if path is None:
        path = find_dotenv(usecwd=True)

    if not path or not Path(path).exists():
        return False

    return load_dotenv(dotenv_path=path, override=override)


def _load_yaml_config(path: Path = CONFIG_PATH) -> Dict[str, Any]:
    if not path.exists():
        return {}

    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _database_url_from_env() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    user = os.getenv("POSTGRES_USER", "sitescope")
    password = os.getenv("POSTGRES_PASSWORD", "postgres")
    host = os.getenv("POSTGRES_HOST", "postgres")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "sitescope")
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


# keys in the ``crawler:`` YAML section that do not match a field name
_YAML_ALIASES = {"user_agent": "crawler_user_agent"}


def load_config(config_path: Path = CONFIG_PATH) -> Config:
    load_environment()
    file_data = _load_yaml_config(config_path)
    crawler_settings: Dict[str, Any] = file_data.get("crawler") or {}

    values: Dict[str, Any] = {
        _YAML_ALIASES.get(key, key): value for key, value in crawler_settings.items()
    }
    values.update({k: v for k, v in file_data.items() if k != "crawler"})

    values["database_url"] = _database_url_from_env()

    return Config(**{k: v for k, v in values.items() if k in Config.model_fields})

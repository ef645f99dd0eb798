"""Pydantic settings loaded from .env, with conf.json overlay."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent

# ---------------------------------------------------------------------------
# conf.json: relay runtime config (separate from .env secrets)
# ---------------------------------------------------------------------------


def get_relay_dir() -> Path:
    """Resolve the relay data directory. RELAY_DIR env var or ~/.config/llm-relay."""
    d = os.environ.get("RELAY_DIR", "")
    return Path(d).expanduser() if d else Path.home() / ".config" / "llm-relay"


class RelayConfig(BaseModel):
    database_url: str = ""
    redis_url: str = ""
    log_level: str = ""
    log_file: str = ""
    cors_allow_all_origins: bool | None = None  # None = use Settings default
    zombie_query_threshold_seconds: int | None = None
    budget_limit_usd: float | None = None
    ollama_base_url: str = ""
    lmstudio_base_url: str = ""


_logger = logging.getLogger(__name__)


def load_conf() -> RelayConfig:
    """Load conf.json from the relay data directory."""
    conf_path = get_relay_dir() / "conf.json"
    if conf_path.exists():
        try:
            return RelayConfig.model_validate_json(conf_path.read_text())
        except Exception:
            _logger.warning("Failed to parse %s, using defaults", conf_path, exc_info=True)
    return RelayConfig()


def save_conf(config: RelayConfig) -> None:
    """Save conf.json to the relay data directory."""
    relay_dir = get_relay_dir()
    relay_dir.mkdir(parents=True, exist_ok=True)
    (relay_dir / "conf.json").write_text(config.model_dump_json(indent=2))


# ---------------------------------------------------------------------------
# Bootstrap: load .env, load conf.json
# ---------------------------------------------------------------------------

_env_file = BASE_DIR.parent / ".env"
load_dotenv(_env_file)
_conf = load_conf()

# ---------------------------------------------------------------------------
# Settings (pydantic-settings): .env / env vars override conf.json defaults
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    DEBUG: bool = False

    DATABASE_URL: str = _conf.database_url or f"sqlite:///{BASE_DIR / 'db.sqlite3'}"
    REDIS_URL: str = _conf.redis_url or "redis://localhost:6379/0"

    CORS_ALLOW_ALL_ORIGINS: bool = (
        _conf.cors_allow_all_origins if _conf.cors_allow_all_origins is not None else True
    )

    LOG_LEVEL: str = _conf.log_level or "INFO"
    LOG_FILE: str = _conf.log_file or ""
    LOG_MAX_BYTES: int = 10_485_760
    LOG_BACKUP_COUNT: int = 5

    # Providers
    ANTHROPIC_API_KEY: str = ""
    CLAUDE_DEFAULT_MODEL: str = "claude-3-5-sonnet-20241022"
    OLLAMA_BASE_URL: str = _conf.ollama_base_url or "http://127.0.0.1:11434"
    OLLAMA_DEFAULT_MODEL: str = "llama3.2"
    LMSTUDIO_BASE_URL: str = _conf.lmstudio_base_url or "http://127.0.0.1:1234/v1"
    LMSTUDIO_DEFAULT_MODEL: str = "local-model"
    LOCAL_COMMAND: str = "claude"
    LOCAL_COMMAND_WORKING_DIR: str = ""  # default: home directory (resolved at runtime)

    # Job timeouts (seconds)
    DEFAULT_JOB_TIMEOUT: int = 300
    OLLAMA_JOB_TIMEOUT: int = 600  # local inference is slower
    LOCAL_JOB_TIMEOUT: int = 900
    JOB_TIMEOUT_OVERHEAD: int = 30

    # Must stay above the longest job timeout, or live jobs get reaped
    ZOMBIE_QUERY_THRESHOLD_SECONDS: int = (
        _conf.zombie_query_threshold_seconds if _conf.zombie_query_threshold_seconds is not None else 1800
    )

    # Cost tracking
    COST_TRACKING_ENABLED: bool = True
    BUDGET_LIMIT_USD: float | None = _conf.budget_limit_usd

    # Provider health gate on dispatch
    PROVIDER_HEALTH_CHECK_ENABLED: bool = False
    PROVIDER_HEALTH_CACHE_SECONDS: int = 60

    model_config = ConfigDict(
        env_file=str(BASE_DIR.parent / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()

# src/gateway_conf/config.py
from __future__ import annotations

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv


def _find_repo_root(start: Path) -> Path:
    """
    Best-effort repository root discovery.
    - Prefer the closest ancestor containing `pyproject.toml`.
    - Fallback to filesystem root if not found.
    """
    cur = start.resolve()
    for _ in range(20):
        if (cur / "pyproject.toml").exists():
            return cur
        if cur.parent == cur:
            break
        cur = cur.parent
    return start.resolve()


PACKAGE_ROOT = Path(__file__).resolve().parent
REPO_ROOT = _find_repo_root(PACKAGE_ROOT)

# Load .env into process environment early so the engine can read DATABASE_URL.
load_dotenv(str(REPO_ROOT / ".env"), override=False)

LOCAL_ROOT = REPO_ROOT / ".Local"


class Settings(BaseSettings):
    DEBUG: bool = False

    # Empty means: fall back to DATABASE_URL, then a repo-local sqlite file.
    GATEWAY_CONF_DATABASE_URL: str = ""
    GATEWAY_CONF_SQL_ECHO: bool = False

    # Per-operation deadline for ConfStore calls; None disables it.
    GATEWAY_CONF_OP_TIMEOUT_S: float | None = float(10)
    GATEWAY_CONF_BUMP_MAX_RETRIES: int = int(32)

    GATEWAY_CONF_LOG_LEVEL: str = "INFO"

    @property
    def local_db_path(self) -> Path:
        return LOCAL_ROOT / "gateway_conf.db"

    model_config = SettingsConfigDict(
        env_file=str(REPO_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()

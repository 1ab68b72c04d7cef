"""Application settings -- reads from environment and ``.env`` file.

All configuration is consolidated here. The ``.env`` file wins over the
process environment so values written by operators persist across restarts.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import ClassVar

from ..util.env_file import EnvFile
from ..util.singletons import register_singleton

CONTEXT_STORE_KINDS: frozenset[str] = frozenset({"json", "memory"})

DEFAULT_SAMPLE_FILE_URL = (
    "https://drive.google.com/uc?export=download&id=1VI4I4pYVVdMnB6YOQuSejVcrSwN0cotd"
)

DEFAULT_DEMO_DATA_URL = "https://randomuser.me/api/"


class Settings:
    """Runtime configuration sourced from environment variables and ``.env``."""

    _DATA_DIR_ENV: ClassVar[str] = "XLSBOT_DATA_DIR"

    def __init__(self) -> None:
        # Resolve .env path: explicit DOTENV_PATH > data_dir/.env > CWD/.env
        dotenv = os.getenv("DOTENV_PATH")
        if not dotenv:
            data_dir = os.getenv(self._DATA_DIR_ENV)
            dotenv = str(Path(data_dir) / ".env") if data_dir else ".env"
        self.env = EnvFile(dotenv)
        self.reload()

    def reload(self) -> None:
        """Re-read the ``.env`` file and environment variables."""
        e = self._read

        self.bot_app_id: str = e("BOT_APP_ID")
        self.bot_app_password: str = e("BOT_APP_PASSWORD")
        self.bot_app_tenant_id: str = e("BOT_APP_TENANT_ID")
        self.bot_port: int = int(e("BOT_PORT") or "3978")

        store_kind = (e("CONTEXT_STORE") or "json").lower()
        if store_kind not in CONTEXT_STORE_KINDS:
            raise ValueError(
                f"Invalid CONTEXT_STORE {store_kind!r}; expected one of {sorted(CONTEXT_STORE_KINDS)}"
            )
        self.context_store: str = store_kind

        self.max_attachment_bytes: int = int(e("MAX_ATTACHMENT_BYTES") or str(10 * 1024 * 1024))
        self.fetch_timeout_seconds: float = float(e("FETCH_TIMEOUT_SECONDS") or "30")
        self.max_retrigger_depth: int = int(e("MAX_RETRIGGER_DEPTH") or "5")

        self.sample_file_url: str = e("SAMPLE_FILE_URL") or DEFAULT_SAMPLE_FILE_URL
        self.sample_file_path: str = e("SAMPLE_FILE_PATH")
        self.demo_data_url: str = e("DEMO_DATA_URL") or DEFAULT_DEMO_DATA_URL

        self.log_level: str = (e("LOG_LEVEL") or "INFO").upper()

    # -- derived paths -----------------------------------------------------

    @property
    def data_dir(self) -> Path:
        return Path(os.getenv(self._DATA_DIR_ENV, str(Path.home() / ".xlsbot")))

    @property
    def contexts_path(self) -> Path:
        return self.data_dir / "contexts.json"

    @property
    def cli_history_path(self) -> Path:
        return self.data_dir / ".cli_history"

    # -- helpers -----------------------------------------------------------

    def _read(self, key: str) -> str:
        return self.env.read(key) or os.getenv(key, "")

    def ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def write_env(self, **kwargs: str) -> None:
        self.env.write(**kwargs)
        self.reload()


# Module-level singleton
cfg = Settings()


def _reset_cfg() -> None:
    global cfg
    cfg = Settings()


register_singleton("settings", _reset_cfg)

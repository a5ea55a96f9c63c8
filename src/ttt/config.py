"""
ttt Configuration

This module manages CLI and daemon configuration via environment variables and
the ~/.ttt/.env file.

Configuration is loaded from:
1. Environment variables (prefixed with TTT_)
2. ~/.ttt/.env file

Key settings:
- TTT_SERVER_URL: Remote store server (default: https://worker.tinytalkingtodos.com)
- TTT_DAEMON_ENABLED: Route commands through the background daemon (default: true)
- TTT_CONFIG_DIR: Directory holding credentials, daemon files and undo history

Credentials themselves live in config.json (see ttt.credentials), not here.
"""

import logging
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".ttt"


class Settings(BaseSettings):
    """ttt configuration settings."""

    app_name: str = "Tiny Talking Todos CLI"

    config_dir: Path = DEFAULT_CONFIG_DIR

    # Remote store. The hosted default speaks WebSocket sync, not the NDJSON stream
    server_url: str = "https://worker.tinytalkingtodos.com"
    connect_timeout: float = 10.0
    # Best-effort readiness: wait for the lists table to fill, then a grace period
    initial_sync_timeout: float = 8.0
    sync_grace_period: float = 0.5
    reconnect_delay: float = 2.0

    # Daemon client
    daemon_enabled: bool = True
    socket_connect_timeout: float = 3.0
    request_timeout: float = 10.0
    spawn_timeout: float = 15.0
    restart_delay: float = 0.3

    # Daemon process
    shutdown_flush_delay: float = 0.1
    idle_timeout: float = 30 * 60
    idle_check_interval: float = 60.0

    # Undo history
    undo_max_entries: int = 50

    model_config = SettingsConfigDict(
        env_prefix="TTT_",
        env_file=DEFAULT_CONFIG_DIR / ".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def socket_path(self) -> Path:
        return self.config_dir / "daemon.sock"

    @property
    def pid_path(self) -> Path:
        return self.config_dir / "daemon.pid"

    @property
    def version_path(self) -> Path:
        return self.config_dir / "daemon.version"

    @property
    def log_path(self) -> Path:
        return self.config_dir / "daemon.log"

    @property
    def credentials_path(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def history_path(self) -> Path:
        return self.config_dir / "undo-history.json"

    def ensure_config_dir(self) -> None:
        """Ensure the config directory exists."""
        self.config_dir.mkdir(parents=True, exist_ok=True)


settings = Settings()

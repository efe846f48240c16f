"""Configuration helpers for the diagnostics service.

The settings default to values that work in local development but can be
overridden via environment variables so the sampler and the debug archive
behave the same way they do next to the production server.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

SERVICE_VERSION = "0.1.0"


@dataclass
class ServiceSettings:
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False
    log_level: str = "info"
    api_key: str | None = None
    request_id_header: str = "x-request-id"
    data_dir: str = "data"
    database_file: str = "diag.db"
    sample_interval_seconds: int = 5
    history_size: int = 50
    usage_log_threshold: int = 5
    performance_logging: bool = True
    prune_stale_threads: bool = False

    @classmethod
    def defaults(cls) -> "ServiceSettings":
        return cls()

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        """Load settings from environment variables with safe defaults."""

        def as_bool(value: str, default: bool) -> bool:
            truthy = {"1", "true", "t", "yes", "y"}
            falsy = {"0", "false", "f", "no", "n"}
            if value.lower() in truthy:
                return True
            if value.lower() in falsy:
                return False
            return default

        def as_int(value: str | None, default: int) -> int:
            if value is None or not value.strip():
                return default
            return int(value)

        return cls(
            host=os.getenv("DIAG_SERVICES_HOST", cls.host),
            port=as_int(os.getenv("DIAG_SERVICES_PORT"), cls.port),
            reload=as_bool(os.getenv("DIAG_SERVICES_RELOAD", str(cls.reload)), cls.reload),
            log_level=os.getenv("DIAG_SERVICES_LOG_LEVEL", cls.log_level),
            api_key=os.getenv("DIAG_SERVICES_API_KEY") or None,
            request_id_header=os.getenv("DIAG_SERVICES_REQUEST_ID_HEADER", cls.request_id_header),
            data_dir=os.getenv("DIAG_SERVICES_DATA_DIR", cls.data_dir),
            database_file=os.getenv("DIAG_SERVICES_DATABASE_FILE", cls.database_file),
            sample_interval_seconds=as_int(
                os.getenv("DIAG_SERVICES_SAMPLE_INTERVAL_SECONDS"), cls.sample_interval_seconds
            ),
            history_size=as_int(os.getenv("DIAG_SERVICES_HISTORY_SIZE"), cls.history_size),
            usage_log_threshold=as_int(os.getenv("DIAG_SERVICES_USAGE_LOG_THRESHOLD"), cls.usage_log_threshold),
            performance_logging=as_bool(
                os.getenv("DIAG_SERVICES_PERFORMANCE_LOGGING", str(cls.performance_logging)),
                cls.performance_logging,
            ),
            prune_stale_threads=as_bool(
                os.getenv("DIAG_SERVICES_PRUNE_STALE_THREADS", str(cls.prune_stale_threads)),
                cls.prune_stale_threads,
            ),
        )

    @property
    def logs_dir(self) -> Path:
        return Path(self.data_dir) / "logs"

    @property
    def database_dir(self) -> Path:
        return Path(self.data_dir) / "database"

    @property
    def database_path(self) -> Path:
        return self.database_dir / self.database_file

    @property
    def log_file(self) -> Path:
        return self.logs_dir / "diag-services.log"


def configure_logging(level: str, log_file: Path | None = None) -> None:
    """Apply a simple logging configuration for the service.

    When ``log_file`` is given the same records are also written there so they
    can be bundled into the debug infos archive.
    """

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))

    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        handlers=handlers,
    )

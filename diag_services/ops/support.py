"""Debug infos archive for support requests.

The archive bundles anonymized logs and settings together with the database
trace file, GC and wrapper logs and JSON snapshots of the runtime metrics and
the CPU usage history. Before writing it, a summary of the host and runtime is
logged so that it ends up in the bundled log as well.
"""

from __future__ import annotations

import io
import json
import logging
import platform
import sys
import tempfile
import threading
import traceback
import zipfile
from dataclasses import asdict, fields
from datetime import datetime, timezone
from pathlib import Path

from diag_services.config import SERVICE_VERSION, ServiceSettings
from diag_services.ops.logs import LOG_FILE_NAME, LogAnonymizer, LogContentProvider
from diag_services.ops.metrics import RuntimeMetrics, format_sample
from diag_services.ops.sampler import CpuUsageSampler
from diag_services.storage.database import KNOWN_TABLES, Database

logger = logging.getLogger("diag_services.support")

SERV_LOG_NAME = "diag-services.serv.log"
PLAIN_LOG_NAMES = ["wrapper.log", "system.err.log", "system.out.log"]


def is_run_in_docker(marker: str | Path = "/.dockerenv") -> bool:
    return Path(marker).exists()


def thread_dump() -> str:
    """Return the current stack of every Python thread as text."""

    names = {thread.ident: thread for thread in threading.enumerate()}
    lines = []
    for ident, frame in sys._current_frames().items():
        thread = names.get(ident)
        name = thread.name if thread else f"thread-{ident}"
        daemon = " daemon" if thread is not None and thread.daemon else ""
        lines.append(f'"{name}" id={ident}{daemon}')
        lines.extend(line.rstrip("\n") for line in traceback.format_stack(frame))
        lines.append("")
    return "\n".join(lines)


def _serialize_settings(settings: ServiceSettings) -> dict:
    data = asdict(settings)
    if data.get("api_key"):
        data["api_key"] = "<HIDDEN>"
    return data


def _serialize_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def settings_changes(settings: ServiceSettings) -> list[str]:
    """Describe every setting that differs from its default."""

    defaults = ServiceSettings.defaults()
    changes = []
    for field in fields(ServiceSettings):
        default = getattr(defaults, field.name)
        current = getattr(settings, field.name)
        if current == default:
            continue
        if field.name == "api_key":
            current = "<HIDDEN>"
        changes.append(f"{field.name}: {default!r} -> {current!r}")
    return changes


def log_system_info(settings: ServiceSettings, runtime: RuntimeMetrics, database: Database) -> dict[str, float]:
    """Log host, database and settings details; return the metrics snapshot."""

    logger.info("diag-services version: %s", SERVICE_VERSION)
    logger.info("Python command line: %s", " ".join(sys.argv))
    logger.info("Python runtime: %s %s", platform.python_implementation(), platform.python_version())
    logger.info("OS name: %s", platform.system())
    logger.info("OS architecture: %s", platform.machine())
    logger.info("File encoding: %s", sys.getfilesystemencoding())
    logger.info("Database URL: %s", database.url)

    for table in KNOWN_TABLES:
        try:
            logger.info("Number of rows in table %s: %s", table, database.count_rows(table))
        except Exception:
            logger.error("Unable to get number of rows in table %s", table, exc_info=True)

    folder_size = database.folder_size()
    if folder_size is None:
        logger.warning("Database folder not found")
    else:
        logger.info("Size of database folder: %sMB", folder_size // (1024 * 1024))

    if is_run_in_docker():
        logger.info("Apparently run in docker")
    else:
        logger.info("Apparently not run in docker")

    changes = settings_changes(settings)
    logger.info("Difference in settings:\n%s", "\n".join(changes) if changes else "none")

    metrics = runtime.snapshot()
    logger.info("Metrics:")
    for name, value in sorted(metrics.items()):
        logger.info("%s: %s", name, format_sample(name, value))
    return metrics


def build_debug_infos(
    *,
    settings: ServiceSettings,
    runtime: RuntimeMetrics,
    sampler: CpuUsageSampler,
    database: Database,
    logs: LogContentProvider,
    anonymizer: LogAnonymizer | None = None,
) -> bytes:
    """Return a ZIP payload containing the debug infos."""

    logger.info("Creating debug infos")
    anonymizer = anonymizer or LogAnonymizer()
    metrics = log_system_info(settings, runtime, database)

    anonymized_log = anonymizer.anonymize(logs.get_log())
    anonymized_settings = anonymizer.anonymize(json.dumps(_serialize_settings(settings), indent=2, sort_keys=True))
    logs_dir = logs.logs_dir()

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("timestamp.txt", _serialize_timestamp())
        archive.writestr(LOG_FILE_NAME, anonymized_log)
        archive.writestr("diag-services-settings.json", anonymized_settings)
        archive.writestr("metrics.json", json.dumps(metrics, indent=2, sort_keys=True))
        archive.writestr(
            "thread-cpu-usage.json",
            json.dumps([record.asdict() for record in sampler.history()], indent=2),
        )

        trace_file = database.path.parent / f"{database.path.stem}.trace.db"
        if trace_file.exists():
            archive.write(trace_file, trace_file.name)

        if logs_dir.exists():
            for gclog in sorted(logs_dir.glob("gclog*")):
                archive.write(gclog, gclog.name)
            for name in PLAIN_LOG_NAMES:
                path = logs_dir / name
                if path.exists():
                    archive.write(path, name)
            serv_log = logs_dir / SERV_LOG_NAME
            if serv_log.exists():
                archive.writestr(
                    SERV_LOG_NAME,
                    anonymizer.anonymize(serv_log.read_text(encoding="utf-8", errors="replace")),
                )

    logger.debug("Finished creating debug infos ZIP")
    return buffer.getvalue()


def write_debug_infos_file(**kwargs) -> Path:
    """Write the debug infos archive to a temporary file and return its path."""

    payload = build_debug_infos(**kwargs)
    with tempfile.NamedTemporaryFile(prefix="diagdebuginfos", suffix=".zip", delete=False) as handle:
        handle.write(payload)
    return Path(handle.name)

import io
import json
import logging
import zipfile
from datetime import datetime, timezone

from diag_services.config import ServiceSettings
from diag_services.ops.logs import LogContentProvider
from diag_services.ops.metrics import ThreadInfo
from diag_services.ops.sampler import CpuUsageSampler
from diag_services.ops.support import (
    build_debug_infos,
    is_run_in_docker,
    settings_changes,
    thread_dump,
    write_debug_infos_file,
)
from diag_services.storage.database import Database


class StaticRuntime:
    def __init__(self):
        self.uptime = 0.0

    def uptime_millis(self):
        self.uptime += 5000
        return self.uptime

    def cpu_count(self):
        return 2

    def list_threads(self):
        return [ThreadInfo(name="MainThread", id=1, cpu_time_nanos=int(self.uptime) * 1000)]

    def snapshot(self):
        return {"process.cpu.usage": 0.5, "process.memory.used": 2 * 1024 * 1024}


def prepare(tmp_path, **overrides):
    settings = ServiceSettings(data_dir=str(tmp_path), **overrides)
    settings.logs_dir.mkdir(parents=True)
    settings.log_file.write_text("started by admin@example.com from 10.0.0.1\n")
    (settings.logs_dir / "gclog.0").write_text("gc")
    (settings.logs_dir / "wrapper.log").write_text("wrapper")
    (settings.logs_dir / "diag-services.serv.log").write_text("service at 10.0.0.2\n")

    database = Database(settings.database_path)
    database.execute_sql_update("create table SEARCH (id integer primary key)")
    (settings.database_dir / "diag.trace.db").write_text("trace")

    runtime = StaticRuntime()
    sampler = CpuUsageSampler(runtime, clock=lambda: datetime(2024, 1, 1, tzinfo=timezone.utc))
    sampler.tick()
    sampler.tick()
    return dict(
        settings=settings,
        runtime=runtime,
        sampler=sampler,
        database=database,
        logs=LogContentProvider(settings.data_dir),
    )


def test_debug_infos_archive_contents(tmp_path):
    payload = build_debug_infos(**prepare(tmp_path, api_key="secret"))

    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        names = set(archive.namelist())
        assert {
            "timestamp.txt",
            "diag-services.log",
            "diag-services-settings.json",
            "metrics.json",
            "thread-cpu-usage.json",
            "diag.trace.db",
            "gclog.0",
            "wrapper.log",
            "diag-services.serv.log",
        } <= names
        assert "system.err.log" not in names

        log = archive.read("diag-services.log").decode()
        assert "10.0.0.1" not in log
        assert "admin@example.com" not in log
        assert "10.0.0.2" not in archive.read("diag-services.serv.log").decode()

        settings = json.loads(archive.read("diag-services-settings.json"))
        assert settings["api_key"] == "<HIDDEN>"

        history = json.loads(archive.read("thread-cpu-usage.json"))
        assert len(history) == 2
        assert history[1]["threadCpuUsages"][0]["threadName"] == "MainThread"

        metrics = json.loads(archive.read("metrics.json"))
        assert metrics["process.cpu.usage"] == 0.5


def test_debug_infos_logs_system_summary(tmp_path, caplog):
    kwargs = prepare(tmp_path)

    with caplog.at_level(logging.INFO, logger="diag_services.support"):
        build_debug_infos(**kwargs)

    assert "Creating debug infos" in caplog.text
    assert "Number of rows in table SEARCH: 0" in caplog.text
    assert "Unable to get number of rows in table SEARCHRESULT" in caplog.text
    assert "process.memory.used: 2MB" in caplog.text
    assert "process.cpu.usage: 50%" in caplog.text
    assert f"data_dir: 'data' -> '{tmp_path}'" in caplog.text


def test_write_debug_infos_file(tmp_path):
    path = write_debug_infos_file(**prepare(tmp_path))
    try:
        assert zipfile.is_zipfile(path)
    finally:
        path.unlink()


def test_settings_changes_hide_api_key():
    changes = settings_changes(ServiceSettings(api_key="secret", port=9000))

    assert "port: 8000 -> 9000" in changes
    assert "api_key: None -> '<HIDDEN>'" in changes
    assert not any("secret" in change for change in changes)


def test_is_run_in_docker_checks_marker(tmp_path):
    marker = tmp_path / ".dockerenv"
    assert is_run_in_docker(marker) is False

    marker.touch()
    assert is_run_in_docker(marker) is True


def test_thread_dump_lists_current_thread():
    dump = thread_dump()

    assert '"MainThread"' in dump
    assert "test_thread_dump_lists_current_thread" in dump

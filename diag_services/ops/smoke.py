"""Lightweight smoke test harness for the diagnostics service.

Runs an end-to-end flow against the in-process FastAPI app: SQL passthrough,
one CPU sample and the debug infos download, without starting a server
process or the background sampler.
"""
from __future__ import annotations

import importlib
import io
import json
import os
import tempfile
import zipfile
from contextlib import contextmanager
from typing import Dict, Tuple
from unittest.mock import patch

from fastapi.testclient import TestClient


@contextmanager
def _patched_env(data_dir: str, api_key: str | None):
    env_updates: Dict[str, str] = {
        "DIAG_SERVICES_DATA_DIR": data_dir,
        "DIAG_SERVICES_API_KEY": api_key or "",
        # Ticks are driven explicitly below.
        "DIAG_SERVICES_SAMPLE_INTERVAL_SECONDS": "0",
    }

    with patch.dict(os.environ, env_updates, clear=False):
        yield


def _load_server():
    # Reload to ensure settings reflect patched environment variables.
    return importlib.reload(importlib.import_module("diag_services.api.server"))


def run_smoke(data_dir: str | None = None, api_key: str | None = None) -> Tuple[str, Dict[str, object]]:
    """Execute an in-process smoke test and return a human-friendly summary."""

    with tempfile.TemporaryDirectory() as default_dir, _patched_env(data_dir or default_dir, api_key):
        server = _load_server()
        client = TestClient(server.app)

        headers = {}
        if api_key:
            headers["x-api-key"] = api_key

        client.post(
            "/debuginfos/executesqlupdate",
            headers=headers,
            json={"sql": "create table if not exists SEARCH (id integer primary key, query text)"},
        )
        inserted = client.post(
            "/debuginfos/executesqlupdate",
            headers=headers,
            json={"sql": "insert into SEARCH (query) values ('ubuntu'), ('debian')"},
        )
        queried = client.post("/debuginfos/executesqlquery", headers=headers, json={"sql": "select * from SEARCH"})

        server.sampler.tick()
        server.sampler.tick()
        chart = client.get("/debuginfos/threadCpuUsageChartData", headers=headers)
        bundle = client.get("/debuginfos/createAndProvideZipAsBytes", headers=headers)

        with zipfile.ZipFile(io.BytesIO(bundle.content)) as archive:
            entries = sorted(archive.namelist())

        report = {
            "inserted": inserted.json()["affected_rows"],
            "csv": queried.text,
            "cpu_samples": len(chart.json()),
            "bundle_entries": entries,
        }

        return "ok", report


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Run an in-process smoke test against the diagnostics API")
    parser.add_argument("--api-key", dest="api_key", default=None, help="API key to include on requests if enforcement is on")
    parser.add_argument("--data-dir", dest="data_dir", default=None, help="Directory holding logs/ and database/")

    args = parser.parse_args()
    status, report = run_smoke(data_dir=args.data_dir, api_key=args.api_key)
    print(json.dumps({"status": status, "report": report}, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()

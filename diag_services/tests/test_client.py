import io
import zipfile
from importlib import reload

import pytest
from fastapi.testclient import TestClient

from diag_services.client import DiagnosticsClient, ServiceError


@pytest.fixture
def client(tmp_path, monkeypatch):
    import diag_services.api.server as server

    monkeypatch.setenv("DIAG_SERVICES_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("DIAG_SERVICES_API_KEY", "secret")
    reload(server)
    return DiagnosticsClient("", api_key="secret", http_client=TestClient(server.app)), server


def test_client_flow_round_trip(client):
    client, server = client

    assert client.health()["status"] == "ok"
    assert client.execute_sql_update("create table SEARCH (id integer primary key, query text)") == 0
    assert client.execute_sql_update("insert into SEARCH (query) values ('linux')") == 1
    assert client.execute_sql_query("select query from SEARCH") == "query\nlinux\n"

    server.sampler.tick()
    assert len(client.thread_cpu_usage()) == 1

    payload = client.download_debug_infos()
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        assert "metrics.json" in archive.namelist()

    assert "MainThread" in client.thread_dump()
    assert client.metrics()["counters"]["debuginfos.sql.update"] == 2


def test_client_raises_on_error(client):
    client, _ = client

    with pytest.raises(ServiceError) as excinfo:
        client.execute_sql_query("select * from MISSING")
    assert "400" in str(excinfo.value)


def test_client_without_key_is_rejected(client):
    _, server = client
    anonymous = DiagnosticsClient("", http_client=TestClient(server.app))

    with pytest.raises(ServiceError) as excinfo:
        anonymous.thread_cpu_usage()
    assert "401" in str(excinfo.value)

"""Lightweight HTTP client for the diagnostics service.

The client defaults to the standard library for HTTP requests, while allowing
a drop-in HTTP client (such as ``fastapi.testclient.TestClient``) to be
supplied for in-process testing. Support tooling can use it to pull CPU usage
history, download debug infos or run SQL without reimplementing request
plumbing.
"""
from __future__ import annotations

import json
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, List


class ServiceError(RuntimeError):
    """Raised when the service returns a non-success response."""


@dataclass
class _Response:
    status_code: int
    content: bytes

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")

    def json(self) -> Any:
        if not self.content:
            return {}
        return json.loads(self.text)


class _UrllibClient:
    """Simple HTTP client backed by urllib."""

    def request(self, method: str, url: str, *, headers: Dict[str, str] | None = None, json_body: Any = None) -> _Response:
        headers = headers or {}
        if json_body is not None:
            headers["content-type"] = "application/json"
            data = json.dumps(json_body).encode("utf-8")
        else:
            data = None

        req = urllib.request.Request(url, data=data, headers=headers, method=method.upper())
        try:
            with urllib.request.urlopen(req) as resp:
                return _Response(status_code=resp.getcode(), content=resp.read())
        except urllib.error.HTTPError as exc:  # pragma: no cover - exercised via client tests
            return _Response(status_code=exc.code, content=exc.read())


class DiagnosticsClient:
    """Convenience wrapper over the diagnostics REST API.

    Usage:
        client = DiagnosticsClient("http://localhost:8000", api_key="secret")
        history = client.thread_cpu_usage()
        Path("debuginfos.zip").write_bytes(client.download_debug_infos())
    """

    def __init__(self, base_url: str, api_key: str | None = None, http_client: Any | None = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.http = http_client or _UrllibClient()

    # Public API helpers -------------------------------------------------
    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/health").json()

    def metrics(self) -> Dict[str, Any]:
        return self._request("GET", "/metrics").json()

    def thread_cpu_usage(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/debuginfos/threadCpuUsageChartData").json()

    def download_debug_infos(self) -> bytes:
        return self._request("GET", "/debuginfos/createAndProvideZipAsBytes").content

    def execute_sql_query(self, sql: str) -> str:
        return self._request("POST", "/debuginfos/executesqlquery", json_body={"sql": sql}).text

    def execute_sql_update(self, sql: str) -> int:
        payload = self._request("POST", "/debuginfos/executesqlupdate", json_body={"sql": sql}).json()
        return int(payload["affected_rows"])

    def thread_dump(self) -> str:
        return self._request("GET", "/debuginfos/threaddump").text

    # Internal helpers ---------------------------------------------------
    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        return headers

    def _request(self, method: str, path: str, *, json_body: Any | None = None) -> _Response:
        url = f"{self.base_url}{path}"
        headers = self._headers()
        if isinstance(self.http, _UrllibClient):
            response = self.http.request(method, url, headers=headers, json_body=json_body)
        else:
            # Drop-in clients like requests or TestClient take a ``json`` kwarg.
            kwargs: Dict[str, Any] = {"headers": headers}
            if json_body is not None:
                kwargs["json"] = json_body
            response = self.http.request(method, url, **kwargs)

        content = getattr(response, "content", b"")
        if isinstance(content, str):
            content = content.encode("utf-8")
        normalized = _Response(status_code=getattr(response, "status_code", 0), content=content)
        if normalized.status_code >= 400:
            raise ServiceError(f"request failed ({normalized.status_code}): {normalized.text}")
        return normalized

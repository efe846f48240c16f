"""FastAPI wiring for the diagnostics service.

The CPU usage sampler runs for the lifetime of the app; the remaining
endpoints build the debug infos archive, run ad-hoc SQL against the embedded
database and dump the interpreter's threads for support.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from diag_services.config import ServiceSettings
from diag_services.ops.logs import LogAnonymizer, LogContentProvider
from diag_services.ops.metrics import MetricsRegistry, RuntimeMetrics
from diag_services.ops.sampler import CpuUsageSampler
from diag_services.ops.support import build_debug_infos, thread_dump
from diag_services.storage.database import Database, SqlExecutionError

settings = ServiceSettings.from_env()
logger = logging.getLogger("diag_services.api")

metrics = MetricsRegistry()
runtime = RuntimeMetrics()
sampler = CpuUsageSampler(
    runtime,
    interval_seconds=settings.sample_interval_seconds,
    history_size=settings.history_size,
    usage_log_threshold=settings.usage_log_threshold,
    prune_stale_threads=settings.prune_stale_threads,
    performance_logging=settings.performance_logging,
)
database = Database(settings.database_path)
logs = LogContentProvider(settings.data_dir)
anonymizer = LogAnonymizer()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.sample_interval_seconds > 0:
        sampler.start()
    try:
        yield
    finally:
        sampler.stop()


app = FastAPI(title="Diagnostics Services", lifespan=lifespan)


@app.middleware("http")
async def enforce_security(request: Request, call_next):
    request_id = request.headers.get(settings.request_id_header) or str(uuid.uuid4())

    if settings.api_key:
        provided = request.headers.get("x-api-key")
        if provided != settings.api_key:
            logger.warning("rejecting request: missing or invalid API key", extra={"path": request.url.path})
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "invalid api key"},
                headers={settings.request_id_header: request_id},
            )

    response = await call_next(request)
    response.headers[settings.request_id_header] = request_id
    return response


class SqlRequest(BaseModel):
    sql: str


def _require_sql(request: SqlRequest) -> str:
    sql = request.sql.strip()
    if not sql:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="sql is required")
    return sql


@app.get("/health")
def healthcheck():
    return {"status": "ok", "sampler_running": sampler.running}


@app.get("/metrics")
def metric_snapshot():
    """Expose request counters and process runtime metrics."""

    return {"counters": metrics.snapshot(), "runtime": runtime.snapshot()}


@app.get("/debuginfos/threadCpuUsageChartData")
def thread_cpu_usage_chart_data():
    metrics.counter("debuginfos.cpu_chart").inc()
    return [record.asdict() for record in sampler.history()]


@app.get("/debuginfos/createAndProvideZipAsBytes")
def download_debug_infos():
    payload = build_debug_infos(
        settings=settings,
        runtime=runtime,
        sampler=sampler,
        database=database,
        logs=logs,
        anonymizer=anonymizer,
    )
    metrics.counter("debuginfos.zip").inc()
    headers = {"Content-Disposition": 'attachment; filename="diag-services-debuginfo.zip"'}
    return Response(payload, media_type="application/zip", headers=headers)


@app.post("/debuginfos/executesqlquery")
def execute_sql_query(request: SqlRequest):
    sql = _require_sql(request)
    try:
        csv_body = database.execute_sql_query(sql)
    except SqlExecutionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    metrics.counter("debuginfos.sql.query").inc()
    return Response(csv_body, media_type="text/csv")


@app.post("/debuginfos/executesqlupdate")
def execute_sql_update(request: SqlRequest):
    sql = _require_sql(request)
    try:
        affected = database.execute_sql_update(sql)
    except SqlExecutionError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    metrics.counter("debuginfos.sql.update").inc()
    return {"affected_rows": affected}


@app.get("/debuginfos/threaddump")
def log_thread_dump():
    dump = thread_dump()
    logger.debug(dump)
    metrics.counter("debuginfos.threaddump").inc()
    return Response(dump, media_type="text/plain")

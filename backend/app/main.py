from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from psycopg import errors as pg_errors
import time
import uuid
from datetime import datetime, timezone
from .routers.pos import router as pos_router
from .routers.inventory import router as inventory_router
from .routers.reports import router as reports_router
from .config import settings
from .db import get_conn, close_pools
from .logs import json_log
from .pos.errors import PosError
from .pos.store import StoreConflict, StoreError

app = FastAPI(title="Coffee Shop POS API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)
SERVICE_NAME = "coffeepos-backend"


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _uses_postgres() -> bool:
    return settings.store_backend == "postgres"


# Typed order/inventory failures carry their own status code and body.
@app.exception_handler(PosError)
def _pos_error(_req: Request, exc: PosError):
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.detail()))


# Constraint and cast errors surfacing through a store call are the caller's fault, not an outage.
_DB_CLIENT_ERRORS = (
    (pg_errors.InvalidTextRepresentation, 400, "invalid value", "invalid_value"),
    (pg_errors.ForeignKeyViolation, 400, "invalid reference", "invalid_reference"),
    (pg_errors.UniqueViolation, 409, "conflict", "conflict"),
    (pg_errors.CheckViolation, 400, "constraint violation", "constraint_violation"),
)


def _client_error_for(exc: StoreError):
    cause = exc.__cause__
    for err_type, status_code, detail, code in _DB_CLIENT_ERRORS:
        if isinstance(cause, err_type):
            return status_code, detail, code
    if isinstance(exc, StoreConflict):
        return 409, "conflict", "conflict"
    return None


@app.exception_handler(StoreError)
def _store_error(req: Request, exc: StoreError):
    rid = _current_request_id(req)
    mapped = _client_error_for(exc)
    if mapped is not None:
        status_code, detail, code = mapped
        json_log("warning", "http.request.store_rejected", request_id=rid, path=req.url.path, code=code, error=str(exc))
        content = {"detail": detail, "code": code, "request_id": rid}
        if settings.env in {"local", "dev"}:
            content["error"] = str(exc)
        return JSONResponse(status_code=status_code, content=content)
    json_log("error", "http.request.store_error", request_id=rid, path=req.url.path, error=str(exc))
    content = {"detail": "storage unavailable", "code": "store_error", "request_id": rid}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=503, content=content)


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
        content["errors"] = jsonable_encoder(exc.errors())
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    content = {"detail": "internal error", "request_id": rid}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=dur_ms,
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if path != "/health":
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=dur_ms,
        )
    return response

# Dev CORS: the terminal UI runs on a different port during development.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(pos_router)
app.include_router(inventory_router)
app.include_router(reports_router)


def _db_health():
    if not _uses_postgres():
        return True, None
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, str(exc)


@app.on_event("startup")
def _startup():
    if not _uses_postgres():
        json_log("info", "startup.memory_store", env=settings.env, version=settings.api_version)
        return
    ok, err = _db_health()
    if ok:
        json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
    else:
        json_log("warning", "startup.db_probe_failed", env=settings.env, error=err)


@app.on_event("shutdown")
def _shutdown():
    close_pools()


@app.get("/health")
def health(req: Request):
    request_id = _current_request_id(req)
    ok, err = _db_health()
    content = {
        "env": settings.env,
        "store": settings.store_backend,
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": request_id,
    }
    if not ok:
        content.update({"status": "degraded", "db": "down"})
        if settings.env in {"local", "dev"}:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    content.update({"status": "ok", "db": "ok" if _uses_postgres() else "n/a"})
    return content


@app.get("/meta")
def meta():
    return {
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "env": settings.env,
        "currency": settings.currency,
        "tax_rate": str(settings.tax_rate),
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
        "started_at": STARTED_AT_UTC.isoformat(),
    }

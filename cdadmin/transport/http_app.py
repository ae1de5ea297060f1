# cdadmin/transport/http_app.py
"""
Admin HTTP application.

Thin transport layer: parse request → call service → return the
``{"success": ..., "data" | "message": ...}`` envelope.  All business
logic lives in DispatchService / UserService; ``AdminError`` subtypes
are mapped to their status codes by one exception handler.

Every /admin route requires the admin host (prod) and admin auth;
end-user identity comes from the gateway's X-User-Id / X-Org-Id /
X-Org-Name headers.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from cdadmin.admin.dispatch_service import DispatchService, get_dispatch_service
from cdadmin.admin.errors import AdminError, ValidationError
from cdadmin.admin.models import BindTokenRequest, CancelTaskRequest, ManualTaskRequest, RedeployRequest
from cdadmin.admin.user_service import UserService, get_user_service
from cdadmin.config import settings, validate_or_warn
from cdadmin.infra.db_async import close_pool, init_pool, ping
from cdadmin.infra.http_client import close_all_sessions
from cdadmin.infra.logging_config import setup_logging, get_logger
from cdadmin.infra.metrics import get_metrics_collector
from cdadmin.transport.middleware import (
    RequestIDMiddleware,
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware,
)
from cdadmin.transport.security import (
    Caller,
    get_caller,
    require_admin_auth,
    require_admin_host,
)

setup_logging(
    level=settings.log_level,
    use_json=settings.is_production
)

logger = get_logger(__name__)

ADMIN_DEPS = [Depends(require_admin_host), Depends(require_admin_auth)]


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""
    logger.info(f"Starting cd admin: env={settings.app_env}")

    validate_or_warn(settings)

    # Schema is managed separately: python -m cdadmin.infra.migrate
    await init_pool()
    logger.info("Database pool initialized")

    yield

    logger.info("Shutting down")
    await close_all_sessions()
    await close_pool()


app = FastAPI(
    title="cd admin",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None,
)

# Last added runs first: RequestID -> ErrorHandling -> CORS -> RequestLogging
app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["*"],
)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(RequestIDMiddleware)


# ============================================================================
# ENVELOPE
# ============================================================================

def ok(data: Any = None) -> dict:
    return {"success": True, "data": data}


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "code": status_code, "message": message},
    )


@app.exception_handler(AdminError)
async def admin_error_handler(request: Request, exc: AdminError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.detail}")
    return _error(exc.status_code, exc.detail)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _error(400, str(exc))


def _parse(model: type[BaseModel], payload: dict) -> Any:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(str(exc)) from exc


# ============================================================================
# HEALTH
# ============================================================================

@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/ready")
async def health_ready():
    try:
        db_ok = await ping()
    except Exception as exc:
        logger.warning(f"Readiness check failed: {exc}")
        db_ok = False
    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={"status": "ok" if db_ok else "unavailable", "database": db_ok},
    )


@app.get("/metrics", dependencies=ADMIN_DEPS)
def metrics():
    """Dispatch counters and Function Compute latency histograms."""
    return get_metrics_collector().get_metrics()


# ============================================================================
# DISPATCH
# ============================================================================

@app.post("/admin/dispatch/manual", dependencies=ADMIN_DEPS)
async def admin_manual_task(
    payload: dict,
    caller: Caller = Depends(get_caller),
    svc: DispatchService = Depends(get_dispatch_service),
):
    """Trigger a pipeline run for an application."""
    req = _parse(ManualTaskRequest, payload)
    result = await svc.manual_task(caller.org_id, caller.org_name, req)
    return ok(result.model_dump(by_alias=True))


@app.post("/admin/dispatch/redeploy", dependencies=ADMIN_DEPS)
async def admin_redeploy(
    payload: dict,
    caller: Caller = Depends(get_caller),
    svc: DispatchService = Depends(get_dispatch_service),
):
    """Re-run an earlier task under a new task id."""
    req = _parse(RedeployRequest, payload)
    result = await svc.redeploy(caller.org_id, req)
    return ok(result.model_dump(by_alias=True))


@app.post("/admin/dispatch/cancel", dependencies=ADMIN_DEPS)
async def admin_cancel_task(
    payload: dict,
    svc: DispatchService = Depends(get_dispatch_service),
):
    """Stop a running task."""
    req = _parse(CancelTaskRequest, payload)
    await svc.cancel_task(req)
    return ok()


# ============================================================================
# USER
# ============================================================================

@app.get("/admin/user/info", dependencies=ADMIN_DEPS)
async def admin_user_info(
    caller: Caller = Depends(get_caller),
    svc: UserService = Depends(get_user_service),
):
    """Caller's profile (no credentials) with their orgs."""
    view = await svc.user_info(caller.user_id)
    return ok(view.model_dump(by_alias=True))


@app.put("/admin/user/token", dependencies=ADMIN_DEPS)
async def admin_bind_token(
    payload: dict,
    caller: Caller = Depends(get_caller),
    svc: UserService = Depends(get_user_service),
):
    """
    Bind a git provider access token to the calling org owner.

    Console clients wrap the fields as ``{"data": {"provider", "token"}}``;
    a flat body is accepted too.
    """
    data = payload.get("data")
    req = _parse(BindTokenRequest, data if isinstance(data, dict) else payload)
    await svc.bind_provider_token(caller.user_id, caller.org_id, req)
    return ok()


@app.get("/admin/user/listOrgs", dependencies=ADMIN_DEPS)
async def admin_list_orgs(
    caller: Caller = Depends(get_caller),
    svc: UserService = Depends(get_user_service),
):
    """All orgs the caller belongs to."""
    orgs = await svc.list_orgs(caller.user_id)
    return ok([o.model_dump() for o in orgs])

"""HTTP surface (FastAPI).

Routes::

    POST /api/connect            enroll a tenant and start its connection
    GET  /api/users              registered tenants (seed not echoed)
    GET  /api/active             tenant ids with a live session
    POST /api/admin/delete       delete one tenant (shared secret)
    POST /api/admin/delete-all   delete every tenant (shared secret)
    GET  /                       service banner
    GET  /health                 liveness check

Errors are returned as :class:`~bothost._errors.ErrorPayload` JSON with
the status code carried by the exception class.  Request validation
failures are reported as 400.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from bothost._errors import BotHostError, StoreUnavailable, Unauthorized, build_error_payload
from bothost._service import TenantService, TenantView
from bothost._settings import Settings

logger = logging.getLogger(__name__)

OWNER_PATTERN = r"^\+\d{10,15}$"

type Lifespan = Callable[[FastAPI], AbstractAsyncContextManager[None]]


def get_service(request: Request) -> TenantService:
    """The running service, installed on ``app.state`` at startup."""
    service: TenantService | None = getattr(request.app.state, "service", None)
    if service is None:
        raise StoreUnavailable("Service is not running")
    return service


ServiceDep = Annotated[TenantService, Depends(get_service)]

# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class ConnectRequest(_Body):
    bot_name: str = Field(alias="botName", min_length=1, max_length=64)
    owner_number: str = Field(alias="ownerNumber", pattern=OWNER_PATTERN)
    session_id: str = Field(alias="sessionId", min_length=1)


class DeleteRequest(_Body):
    bot_name: str = Field(alias="botName", min_length=1)
    password: str


class DeleteAllRequest(_Body):
    password: str


def _user_json(view: TenantView) -> dict[str, Any]:
    record = view.record
    return {
        "botName": record.tenant_id,
        "ownerNumber": record.owner_id,
        "status": str(record.status),
        "lastActivityAt": record.last_activity_at.isoformat(),
        "live": view.live,
        "lastError": None if view.last_fault is None else view.last_fault.to_dict(),
    }


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_api(
    settings: Settings,
    *,
    service: TenantService | None = None,
    lifespan: Lifespan | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Routes resolve the :class:`TenantService` from ``app.state.service``;
    pass *service* directly or let *lifespan* install it at startup.
    Until then every route but ``/`` and ``/health`` answers 503.
    """
    app = FastAPI(title="bothost", lifespan=lifespan)
    app.state.service = service

    def check_secret(password: str) -> None:
        expected = settings.admin_secret
        if expected is None:
            raise Unauthorized("Admin endpoints are disabled")
        if not secrets.compare_digest(
            password.encode(), expected.get_secret_value().encode()
        ):
            raise Unauthorized("Unauthorized")

    router = APIRouter(prefix="/api")

    @router.post("/connect")
    async def connect(body: ConnectRequest, service: ServiceDep) -> dict[str, str]:
        await service.enroll(body.bot_name, body.owner_number, body.session_id)
        return {
            "message": f"Bot {body.bot_name} is being connected",
            "botName": body.bot_name,
        }

    @router.get("/users")
    async def users(service: ServiceDep) -> list[dict[str, Any]]:
        return [_user_json(view) for view in await service.list_tenants()]

    @router.get("/active")
    async def active(service: ServiceDep) -> dict[str, Any]:
        tenant_ids = service.active_tenants()
        return {"count": len(tenant_ids), "bots": tenant_ids}

    @router.post("/admin/delete")
    async def admin_delete(body: DeleteRequest, service: ServiceDep) -> dict[str, str]:
        check_secret(body.password)
        await service.delete(body.bot_name)
        return {"message": f"Bot {body.bot_name} deleted", "botName": body.bot_name}

    @router.post("/admin/delete-all")
    async def admin_delete_all(body: DeleteAllRequest, service: ServiceDep) -> dict[str, Any]:
        check_secret(body.password)
        deleted = await service.delete_all()
        return {"message": f"Deleted {len(deleted)} bot(s)", "deleted": deleted}

    app.include_router(router)

    @app.get("/")
    async def index() -> dict[str, str]:
        return {"service": "bothost", "status": "running"}

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        service: TenantService | None = request.app.state.service
        if service is None:
            return {"status": "starting", "active": 0}
        return {"status": "ok", "active": len(service.active_tenants())}

    _install_error_handlers(app)
    return app


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BotHostError)
    async def bothost_error(request: Request, exc: BotHostError) -> JSONResponse:
        if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        payload = build_error_payload(exc)
        return JSONResponse(payload.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
            for error in exc.errors()
        ]
        summary = "; ".join(f"{'.'.join(e['loc'])}: {e['msg']}" for e in errors)
        payload = build_error_payload(
            ValueError(f"Invalid request: {summary}"),
            error_type_map={ValueError: "invalid_request"},
            details={"errors": errors},
        )
        return JSONResponse(payload.to_dict(), status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(Exception)
    async def unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        payload = build_error_payload(RuntimeError("Internal server error"))
        return JSONResponse(
            payload.to_dict(),
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


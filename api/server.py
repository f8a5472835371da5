"""FastAPI service layer for the compliance scheduler."""

import logging
from contextlib import asynccontextmanager

import pydantic
from fastapi import FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.models import ErrorInfo, ErrorResponse, HealthResponse
from core.config import Settings
from core.errors import ServiceError
from core.logging_config import set_correlation_id
from core.services import build_services
from events.models import (
    EventHistoryRequest,
    EventHistoryResult,
    EventProcessorRequest,
    EventProcessorResponse,
    EventStatus,
)
from scheduler.models import (
    DeleteResult,
    Schedule,
    ScheduleListRequest,
    ScheduleListResult,
    ScheduleRequest,
    ScheduleStatus,
)

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-Id"

# ── Singletons ────────────────────────────────────────────────────────────────
# Built at import; ASGITransport does not run the lifespan.

_settings = Settings.from_env()
_services = build_services(_settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await _services.event_store.init()
    yield
    await _services.event_store.close()


app = FastAPI(
    title="Compliance Scheduler API",
    description="Cron schedules and event routing for compliance automation.",
    version="0.1.0",
    lifespan=lifespan,
)


# ── Errors ────────────────────────────────────────────────────────────────────

def _error(status: int, message: str, code: str, correlation_id: str, details=None) -> JSONResponse:
    body = ErrorResponse(
        error=ErrorInfo(message=message, code=code, correlationId=correlation_id, details=details)
    )
    return JSONResponse(status_code=status, content=body.body())


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or set_correlation_id()


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    cid = _correlation_id(request)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("Request failed", extra={"code": exc.code, "error": exc.message, "path": request.url.path})
    return _error(exc.status_code, exc.message, exc.code, cid, exc.details)


@app.exception_handler(RequestValidationError)
@app.exception_handler(pydantic.ValidationError)
async def validation_error_handler(request: Request, exc):
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return _error(400, "Request validation failed", "VALIDATION_ERROR", _correlation_id(request), errors)


@app.middleware("http")
async def correlation_and_cors(request: Request, call_next):
    cid = set_correlation_id(request.headers.get(CORRELATION_HEADER))
    request.state.correlation_id = cid
    try:
        response = await call_next(request)
    except Exception:
        # 5xx bodies carry no stack trace; the log line does
        logger.exception("Unhandled error", extra={"path": request.url.path})
        response = _error(500, "Internal server error", "INTERNAL_ERROR", cid)

    response.headers[CORRELATION_HEADER] = cid
    response.headers["Access-Control-Allow-Origin"] = _services.settings.allowed_origin
    response.headers["Access-Control-Allow-Headers"] = f"Content-Type,Authorization,{CORRELATION_HEADER}"
    response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
    return response


# ── Routes ────────────────────────────────────────────────────────────────────

@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse()


@app.options("/{path:path}")
async def preflight(path: str):
    """CORS preflight; headers are added by the middleware."""
    return Response(status_code=200)


@app.post("/schedules", response_model=Schedule, status_code=201)
async def create_schedule(req: ScheduleRequest):
    return await _services.registry.create(req)


@app.get("/schedules", response_model=ScheduleListResult)
async def list_schedules(
    tenant_id: str | None = Query(None, alias="tenantId"),
    schedule_type: str | None = Query(None, alias="scheduleType"),
    status: ScheduleStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=100),
    next_token: str | None = Query(None, alias="nextToken"),
):
    """List schedules, filtered by tenant, type and state."""
    request = ScheduleListRequest(
        tenant_id=tenant_id,
        schedule_type=schedule_type,
        status=status,
        limit=limit,
        next_token=next_token,
    )
    return await _services.registry.list(request)


@app.get("/schedules/{schedule_id}", response_model=Schedule)
async def get_schedule(schedule_id: str):
    return await _services.registry.get(schedule_id)


@app.put("/schedules/{schedule_id}", response_model=Schedule)
async def update_schedule(schedule_id: str, req: ScheduleRequest):
    """Replace a schedule's cron, target and state."""
    return await _services.registry.update(schedule_id, req)


@app.delete("/schedules/{schedule_id}", response_model=DeleteResult)
async def delete_schedule(schedule_id: str):
    return await _services.registry.delete(schedule_id)


@app.post("/events/trigger", response_model=EventProcessorResponse, status_code=202)
async def trigger_event(req: EventProcessorRequest, request: Request):
    """Publish a custom event; with processImmediately it is also routed before returning."""
    return await _services.router.trigger(req, _correlation_id(request))


@app.get("/events/history", response_model=EventHistoryResult)
async def event_history(
    tenant_id: str | None = Query(None, alias="tenantId"),
    event_type: str | None = Query(None, alias="eventType"),
    status: EventStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=100),
    next_token: str | None = Query(None, alias="nextToken"),
):
    request = EventHistoryRequest(
        tenant_id=tenant_id,
        event_type=event_type,
        status=status,
        limit=limit,
        next_token=next_token,
    )
    return await _services.router.history(request)

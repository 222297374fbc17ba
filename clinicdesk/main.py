"""FastAPI application factory."""

from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Literal, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel
from starlette.exceptions import HTTPException
from structlog.contextvars import bind_contextvars, unbind_contextvars

from clinicdesk import __version__
from clinicdesk.config import APP_NAME, Settings, get_settings
from clinicdesk.db.session import init_schema
from clinicdesk.errors import ClinicDeskError
from clinicdesk.observability import HTTP_LATENCY, HTTP_REQUESTS, configure_logging
from clinicdesk.routes import ROUTERS
from clinicdesk.services import Services, build_services


logger = structlog.get_logger(__name__)


class ErrorDetail(BaseModel):
    """Details describing an error response payload."""

    code: int | str | None = None
    message: str
    details: Any | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    success: Literal[False] = False
    error: ErrorDetail


def _build_error_response(message: str, code: int | str | None, details: Any = None) -> ErrorResponse:
    return ErrorResponse(error=ErrorDetail(code=code, message=message or "An error occurred", details=details))


def _error_json(status_code: int, payload: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=payload.model_dump(exclude_none=True))


def _validation_message(errors: list) -> str:
    rendered = []
    for item in errors:
        location = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
        rendered.append(f"{location}: {item.get('msg')}" if location else str(item.get("msg")))
    return "; ".join(rendered) or "Invalid request"


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


def _install_handlers(app: FastAPI) -> None:
    @app.exception_handler(ClinicDeskError)
    async def clinicdesk_error_handler(request: Request, exc: ClinicDeskError) -> JSONResponse:
        log = logger.warning if exc.status_code < 500 else logger.error
        log("request.domain_error", code=exc.code, status=exc.status_code, error=exc.message)
        return _error_json(exc.status_code, _build_error_response(exc.message, exc.code, exc.details))

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Convert ``HTTPException`` instances into the standard error envelope."""

        message = exc.detail if isinstance(exc.detail, str) else "An error occurred"
        details = None if isinstance(exc.detail, str) else exc.detail
        response = _error_json(exc.status_code, _build_error_response(message, exc.status_code, details))
        for key, value in (exc.headers or {}).items():
            response.headers[key] = value
        return response

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        return _error_json(
            400,
            _build_error_response(
                _validation_message(errors),
                "VALIDATION_ERROR",
                [{"loc": list(item.get("loc", ())), "msg": item.get("msg")} for item in errors],
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", path=request.url.path, error=str(exc))
        return _error_json(500, _build_error_response("Internal server error", 500))


def _install_middleware(app: FastAPI, settings: Settings) -> None:
    @app.middleware("http")
    async def track_http_metrics(request: Request, call_next):
        """Emit Prometheus counters and histograms for each request."""

        start = time.perf_counter()
        status = "500"
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            route = _route_template(request)
            HTTP_REQUESTS.labels(request.method, route, status).inc()
            HTTP_LATENCY.labels(request.method, route).observe(time.perf_counter() - start)

    @app.middleware("http")
    async def inject_trace_id(request: Request, call_next):
        """Attach or propagate a trace identifier for each request."""

        trace_id = request.headers.get("x-trace-id") or uuid.uuid4().hex
        bind_contextvars(trace_id=trace_id, path=request.url.path, method=request.method)
        request.state.trace_id = trace_id
        try:
            response = await call_next(request)
            response.headers["X-Trace-Id"] = trace_id
            return response
        finally:
            unbind_contextvars("trace_id", "path", "method")

    origins = list(settings.cors_origins)
    allow_all = any(origin in {"*", "wildcard"} for origin in origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else origins,
        allow_credentials=not allow_all,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Build the application; tests pass ``services`` wired with fake collaborators."""

    settings = settings or (services.settings if services else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        container: Services = app.state.services
        if container.engine is not None:
            init_schema(container.engine)
        logger.info("lifespan_startup", version=__version__)
        start_ts = time.time()
        try:
            yield
        finally:
            await container.jobs.drain()
            if container.engine is not None:
                container.engine.dispose()
            logger.info("lifespan_shutdown_complete", uptime=time.time() - start_ts)

    app = FastAPI(title=APP_NAME, version=__version__, lifespan=lifespan)
    app.state.services = services or build_services(settings)

    _install_handlers(app)
    _install_middleware(app, settings)
    for router in ROUTERS:
        app.include_router(router)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        container: Services = app.state.services
        return {"status": "ok", "version": __version__, "jobsInFlight": container.jobs.in_flight}

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


__all__ = ["create_app"]

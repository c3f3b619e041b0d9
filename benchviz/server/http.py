"""HTTP server exposing session storage and run comparisons via FastAPI.

Endpoints implement a thin HTTP transport over :class:`BenchmarkService`.
Authentication (bearer token on mutating endpoints) and CORS are
configurable via environment variables.
Session, upload and analysis routes are served both at the root and under
``/api``, the prefix the dashboard frontend uses.
"""

from __future__ import annotations

import importlib
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict, List, Optional

import psutil
from pydantic import BaseModel, Field
from starlette.datastructures import UploadFile
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .. import __session_schema_version__, __version__
from ..config.models import EnvSettings, StorageConfig
from ..domain.ingest import (
    UploadParseError,
    parse_cpu_data,
    parse_csv_points,
    parse_json_upload,
)
from ..domain.models import Session
from ..observability import setup_logging
from ..storage import SessionNotFoundError, StorageError
from ..storage.mongo import mask_uri
from ..utils.correlation import (
    CORRELATION_HEADER,
    get_request_id,
    reset_request_id,
    set_request_id,
)
from .app import BenchmarkService

logger = logging.getLogger(__name__)

# Export helper functions so dead-code linters recognize runtime usage.
# FastAPI registers these via decorators; static analysis alone may not see
# direct references otherwise.
__all__ = [
    "create_app",
    "_load_fastapi",
    "_build_app",
    "_apply_cors",
    "_make_auth_dependency",
    "_register_health",
    "_register_capabilities",
    "_register_sessions",
    "_register_uploads",
    "_register_analysis",
]

ENDPOINTS = [
    "POST /sessions",
    "GET /sessions",
    "GET /sessions/{session_id}",
    "DELETE /sessions/{session_id}",
    "POST /upload",
    "POST /upload/csv",
    "POST /upload/cpu",
    "GET /sessions/{session_id}/plots/{plot_id}/statistics",
    "GET /sessions/{session_id}/runs/{run_id}/summary",
]

# The dashboard frontend addresses the same routes under this prefix.
API_PREFIX = "/api"


class RequestLoggingMiddleware(
    BaseHTTPMiddleware
):  # pylint: disable=too-few-public-methods
    """Assign a correlation id to every request and log its outcome.

    The id comes from the ``x-correlation-id`` header when present, otherwise
    a fresh uuid4. It is echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next):
        """Log request completion with status and timing."""
        start_time = time.time()
        req_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        token = set_request_id(req_id)
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "http.request.failed",
                extra={
                    "req_id": req_id,
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "duration_ms": int((time.time() - start_time) * 1000),
                },
                exc_info=True,
            )
            raise
        finally:
            reset_request_id(token)
        response.headers[CORRELATION_HEADER] = req_id
        logger.info(
            "http.request.completed",
            extra={
                "req_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": int((time.time() - start_time) * 1000),
            },
        )
        return response


class HealthResponse(BaseModel):
    """Simple health/readiness response model."""

    status: str


class ErrorResponse(BaseModel):
    """Structured JSON error response for HTTP endpoints.

    Fields
    ------
    detail: str
        Human-readable explanation of the error.
    error_type: str
        Machine-readable error classification.
    available_options: list[str] | None
        Optional list of valid options when the error is about an invalid
        input value (e.g., unknown plot id).
    """

    detail: str = Field(..., description="Human-readable error detail")
    error_type: str = Field(..., description="Machine-readable error type")
    available_options: List[str] | None = Field(
        default=None, description="Optional list of valid alternative options"
    )


class CapabilitiesResponse(BaseModel):
    """Server capabilities summary for diagnostics and clients."""

    version: str
    session_schema_version: str
    http_auth: str
    cors_origins: List[str]
    backends: List[str]
    endpoints: List[str]
    api_prefix: str = Field(
        API_PREFIX, description="Prefix under which every endpoint is also served"
    )


class SuccessResponse(BaseModel):
    """Acknowledgement for operations without a payload."""

    success: bool = True


def _load_fastapi():
    """Dynamically import FastAPI pieces."""
    fastapi_mod = importlib.import_module("fastapi")
    cors_mod = importlib.import_module("fastapi.middleware.cors")
    exc_mod = importlib.import_module("fastapi.exceptions")
    resp_mod = importlib.import_module("fastapi.responses")
    st_exc_mod = importlib.import_module("starlette.exceptions")
    return {
        "fastapi_cls": getattr(fastapi_mod, "FastAPI"),
        "api_router": getattr(fastapi_mod, "APIRouter"),
        "depends": getattr(fastapi_mod, "Depends"),
        "header": getattr(fastapi_mod, "Header"),
        "http_exc": getattr(fastapi_mod, "HTTPException"),
        "status": getattr(fastapi_mod, "status"),
        "cors_mw": getattr(cors_mod, "CORSMiddleware"),
        "validation_exc": getattr(exc_mod, "RequestValidationError"),
        "json_response": getattr(resp_mod, "JSONResponse"),
        "starlette_http_exc": getattr(st_exc_mod, "HTTPException"),
    }


def _build_app(fastapi_cls: Any, lifespan: Any | None = None):
    """Create base FastAPI app (optionally with lifespan)."""
    if lifespan is not None:
        return fastapi_cls(
            title="Benchmark Dashboard Server", version=__version__, lifespan=lifespan
        )
    return fastapi_cls(title="Benchmark Dashboard Server", version=__version__)


def _apply_cors(app: Any, cors_middleware_cls: Any, origins: List[str]) -> None:
    """Enable CORS for ``origins`` (no-op when empty)."""
    if origins:
        app.add_middleware(
            cors_middleware_cls,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )


def _make_auth_dependency(
    header: Any, http_exc: Any, status_mod: Any, expected: Optional[str]
):
    """Return a dependency function that enforces optional bearer token."""

    def _auth_dependency(authorization: str | None = header(default=None)) -> None:
        if expected is None:
            return
        if not authorization or not authorization.startswith("Bearer "):
            raise http_exc(status_code=status_mod.HTTP_401_UNAUTHORIZED)
        token = authorization.split(" ", 1)[1]
        if token != expected:
            raise http_exc(status_code=status_mod.HTTP_403_FORBIDDEN)

    return _auth_dependency


def _not_found(http_exc: Any, detail: str, options: List[str] | None = None):
    err = ErrorResponse(
        detail=detail, error_type="not_found", available_options=options
    )
    return http_exc(status_code=404, detail=err.model_dump())


def _register_health(app: Any, service: BenchmarkService) -> None:
    """Register health and readiness endpoints."""

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Liveness probe",
    )
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get(
        "/ready",
        response_model=HealthResponse,
        summary="Readiness probe",
    )
    async def ready() -> HealthResponse:
        return HealthResponse(status="ready" if service.started else "starting")


def _register_capabilities(
    app: Any, service: BenchmarkService, settings: EnvSettings
) -> None:
    """Register server capabilities endpoint."""

    @app.get(
        "/capabilities",
        response_model=CapabilitiesResponse,
        summary="Server capabilities summary",
    )
    async def capabilities() -> CapabilitiesResponse:  # noqa: D401
        return CapabilitiesResponse(
            version=__version__,
            session_schema_version=__session_schema_version__,
            http_auth=("enabled" if settings.HTTP_TOKEN else "disabled"),
            cors_origins=settings.cors_origins(),
            backends=service.coordinator.backend_names,
            endpoints=ENDPOINTS,
            api_prefix=API_PREFIX,
        )


def _register_sessions(
    router: Any,
    service: BenchmarkService,
    depends: Any,
    http_exc: Any,
    auth_dep: Any,
) -> None:
    """Register session CRUD endpoints."""
    error_responses = {
        400: {"model": ErrorResponse},
        401: {"description": "Unauthorized"},
        403: {"description": "Forbidden"},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    }

    @router.post(
        "/sessions",
        dependencies=[depends(auth_dep)],
        summary="Create or replace a session",
        description=(
            "Upsert by session id. The whole document is overwritten in every "
            "enabled backend. updatedAt is set to the current time when the "
            "request omits it."
        ),
        responses=error_responses,
    )
    async def save_session(session: Session) -> Dict[str, Any]:
        touch = "updated_at" not in session.model_fields_set
        result = await service.save_session(session, touch=touch)
        if not result.success:
            err = ErrorResponse(
                detail="Failed to save session to any storage backend",
                error_type="storage_error",
            )
            raise http_exc(status_code=500, detail=err.model_dump())
        return {"success": True, "session": result.session.to_document()}

    @router.get(
        "/sessions",
        summary="List sessions",
        description="Mapping of session id to session, from the primary backend.",
        responses={500: {"model": ErrorResponse}},
    )
    async def list_sessions() -> Dict[str, Any]:
        sessions = await service.list_sessions()
        return {sid: s.to_document() for sid, s in sessions.items()}

    @router.get(
        "/sessions/{session_id}",
        summary="Load a session",
        responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    async def get_session(session_id: str) -> Dict[str, Any]:
        session = await service.get_session(session_id)
        return session.to_document()

    @router.delete(
        "/sessions/{session_id}",
        response_model=SuccessResponse,
        dependencies=[depends(auth_dep)],
        summary="Delete a session from every backend",
        responses=error_responses,
    )
    async def delete_session(session_id: str) -> SuccessResponse:
        result = await service.delete_session(session_id)
        if result.success:
            return SuccessResponse()
        if result.error == "Session not found":
            raise _not_found(http_exc, f"Session not found: {session_id}")
        err = ErrorResponse(
            detail=result.error or "Delete failed", error_type="storage_error"
        )
        raise http_exc(status_code=500, detail=err.model_dump())

    _ = (save_session, list_sessions, get_session, delete_session)


async def _read_upload(request: Request, http_exc: Any) -> bytes:
    """Return the bytes of the multipart ``file`` field or raise 400."""
    form = await request.form()
    upload = form.get("file")
    if not isinstance(upload, UploadFile):
        err = ErrorResponse(detail="No file uploaded", error_type="validation_error")
        raise http_exc(status_code=400, detail=err.model_dump())
    try:
        return await upload.read()
    finally:
        await upload.close()


def _register_uploads(router: Any, http_exc: Any) -> None:
    """Register file upload/parse endpoints."""

    def _bad_upload(exc: UploadParseError):
        err = ErrorResponse(
            detail=f"{exc.reason}: {exc.details}", error_type="parse_error"
        )
        return http_exc(status_code=400, detail=err.model_dump())

    @router.post(
        "/upload",
        summary="Parse an uploaded JSON document",
        description="Multipart field 'file'. Returns the parsed document as-is.",
        responses={400: {"model": ErrorResponse}},
    )
    async def upload_json(request: Request) -> Dict[str, Any]:
        content = await _read_upload(request, http_exc)
        try:
            data = parse_json_upload(content)
        except UploadParseError as exc:
            raise _bad_upload(exc) from exc
        logger.info(
            "http.upload.json",
            extra={"req_id": get_request_id(), "bytes": len(content)},
        )
        return {"success": True, "data": data}

    @router.post(
        "/upload/csv",
        summary="Parse an uploaded benchmark CSV",
        description="Multipart field 'file'. Returns one test point per row.",
        responses={400: {"model": ErrorResponse}},
    )
    async def upload_csv(request: Request) -> Dict[str, Any]:
        content = await _read_upload(request, http_exc)
        try:
            points = parse_csv_points(content.decode("utf-8-sig"))
        except UnicodeDecodeError as exc:
            raise _bad_upload(UploadParseError("Invalid CSV file", str(exc))) from exc
        except UploadParseError as exc:
            raise _bad_upload(exc) from exc
        logger.info(
            "http.upload.csv",
            extra={"req_id": get_request_id(), "rows": len(points)},
        )
        return {"success": True, "data": [p.to_document() for p in points]}

    @router.post(
        "/upload/cpu",
        summary="Parse and validate an uploaded CPU document",
        description=(
            "Multipart field 'file'. The document must have the CPU data shape "
            "(tests, pmu_data, metadata); it is returned normalized."
        ),
        responses={400: {"model": ErrorResponse}},
    )
    async def upload_cpu(request: Request) -> Dict[str, Any]:
        content = await _read_upload(request, http_exc)
        try:
            cpu_data = parse_cpu_data(content)
        except UploadParseError as exc:
            raise _bad_upload(exc) from exc
        logger.info(
            "http.upload.cpu",
            extra={"req_id": get_request_id(), "tests": len(cpu_data.tests)},
        )
        return {"success": True, "data": cpu_data.to_document()}

    _ = (upload_json, upload_csv, upload_cpu)


def _register_analysis(
    router: Any, service: BenchmarkService, http_exc: Any
) -> None:
    """Register plot statistics and run summary endpoints."""

    @router.get(
        "/sessions/{session_id}/plots/{plot_id}/statistics",
        summary="Comparison statistics for a custom plot",
        description=(
            "Compares every selected run against the first selected run (in "
            "session order). Points are matched by nearest throughput within "
            "1 Mbps; relative differences are in percent."
        ),
        responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    async def plot_statistics(session_id: str, plot_id: int) -> Dict[str, Any]:
        try:
            stats = await service.plot_statistics(session_id, plot_id)
        except SessionNotFoundError:
            raise
        except KeyError as exc:
            session = await service.get_session(session_id)
            raise _not_found(
                http_exc,
                f"Plot not found: {plot_id}",
                [str(p.id) for p in session.custom_plots],
            ) from exc
        payload = asdict(stats)
        payload["plot_type"] = stats.plot_type.value
        return payload

    @router.get(
        "/sessions/{session_id}/runs/{run_id}/summary",
        summary="Summary and table rows for one run",
        responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    )
    async def run_summary(session_id: str, run_id: int) -> Dict[str, Any]:
        try:
            report = await service.run_report(session_id, run_id)
        except SessionNotFoundError:
            raise
        except KeyError as exc:
            session = await service.get_session(session_id)
            raise _not_found(
                http_exc,
                f"Run not found: {run_id}",
                [str(r.id) for r in session.runs],
            ) from exc
        return {
            "summary": asdict(report.summary),
            "protection_domains": [asdict(pd) for pd in report.protection_domains],
            "rows": [
                {
                    **asdict(row),
                    "protection_domains": [
                        pd.to_document() for pd in row.protection_domains
                    ],
                }
                for row in report.rows
            ],
        }

    _ = (plot_statistics, run_summary)


def _log_startup_resources() -> None:
    """Log process memory and, when visible, the container memory limit."""
    process = psutil.Process()
    mem_info = process.memory_info()
    logger.info(
        "http.startup.memory",
        extra={
            "rss_mb": round(mem_info.rss / 1024 / 1024, 1),
            "vms_mb": round(mem_info.vms / 1024 / 1024, 1),
        },
    )
    for path in (
        "/sys/fs/cgroup/memory.max",
        "/sys/fs/cgroup/memory/memory.limit_in_bytes",
    ):
        try:
            with open(path, encoding="utf-8") as f:
                raw = f.read().strip()
        except (FileNotFoundError, PermissionError):
            continue
        if raw == "max":
            return
        try:
            limit = int(raw)
        except ValueError:
            continue
        if limit < (1 << 60):  # "unlimited" on cgroups v1
            logger.info(
                "http.startup.container_memory_limit",
                extra={"limit_mb": round(limit / 1024 / 1024, 1)},
            )
        return


def create_app(
    storage_config: Optional[StorageConfig] = None,
    *,
    service: Optional[BenchmarkService] = None,
    settings: Optional[EnvSettings] = None,
):
    """Create and configure the FastAPI application.

    Parameters
    ----------
    storage_config: StorageConfig, optional
        Backends to use. Defaults to the config derived from the environment.
    service: BenchmarkService, optional
        Pre-built service (tests inject one over fake stores). Takes
        precedence over ``storage_config``.
    settings: EnvSettings, optional
        Environment settings; read from the process environment when omitted.

    Raises
    ------
    StorageConfigError
        If the resulting configuration enables no storage backend.
    """
    settings = settings or EnvSettings()
    # Respect prior logging configuration from CLI; otherwise use env setting
    if not logging.getLogger().hasHandlers():
        setup_logging(settings.log_level)
    parts = _load_fastapi()
    config = (
        storage_config if storage_config is not None else settings.storage_config()
    )
    if service is None:
        service = BenchmarkService.from_config(config)

    @asynccontextmanager
    async def lifespan(_app: Any):
        logger.info("http.startup")
        try:
            _log_startup_resources()
        except (OSError, psutil.Error):  # pragma: no cover
            pass
        await service.start()
        try:
            yield
        finally:
            logger.info("http.shutdown")
            await service.stop()

    app = _build_app(parts["fastapi_cls"], lifespan=lifespan)
    app.state.service = service
    # Global exception handlers to ensure structured error responses
    request_validation_error_cls = parts["validation_exc"]
    jr = parts["json_response"]
    starlette_http_exception_cls = parts["starlette_http_exc"]

    @app.exception_handler(request_validation_error_cls)
    async def validation_exception_handler(_request: Any, exc: Exception):  # noqa: D401
        err = ErrorResponse(
            detail=str(exc), error_type="validation_error", available_options=None
        )
        return jr(status_code=400, content={"detail": err.model_dump()})

    @app.exception_handler(starlette_http_exception_cls)
    async def http_exception_handler(_request: Any, exc: Any):  # noqa: D401
        # Pass through existing HTTP errors but ensure structured payload
        detail = getattr(exc, "detail", "")
        if isinstance(detail, dict) and {"detail", "error_type"} <= detail.keys():
            payload = {"detail": detail}
        else:
            payload = ErrorResponse(
                detail=str(detail) or "HTTP error",
                error_type="http_error",
                available_options=None,
            ).model_dump()
            payload = {"detail": payload}
        return jr(status_code=exc.status_code, content=payload)

    @app.exception_handler(SessionNotFoundError)
    async def not_found_handler(_request: Any, exc: Exception):  # noqa: D401
        err = ErrorResponse(detail=str(exc), error_type="not_found")
        return jr(status_code=404, content={"detail": err.model_dump()})

    @app.exception_handler(StorageError)
    async def storage_error_handler(_request: Any, exc: Exception):  # noqa: D401
        logger.error(
            "http.storage_error",
            extra={
                "req_id": get_request_id(),
                "backend": getattr(exc, "backend", ""),
                "error": str(exc),
            },
        )
        err = ErrorResponse(detail=str(exc), error_type="storage_error")
        return jr(status_code=500, content={"detail": err.model_dump()})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Any, exc: Exception):  # noqa: D401
        # Avoid leaking internals; log server-side, return generic error
        logger.error("http.unhandled_exception", exc_info=exc)
        err = ErrorResponse(
            detail="Internal error. See server logs for request id.",
            error_type="internal_server_error",
            available_options=None,
        )
        return jr(status_code=500, content={"detail": err.model_dump()})

    # Mark handlers as intentionally used (registered via decorators)
    _ = (
        validation_exception_handler,
        http_exception_handler,
        not_found_handler,
        storage_error_handler,
        unhandled_exception_handler,
    )

    app.add_middleware(RequestLoggingMiddleware)
    _apply_cors(app, parts["cors_mw"], settings.cors_origins())
    auth_dep = _make_auth_dependency(
        parts["header"],
        parts["http_exc"],
        parts["status"],
        settings.HTTP_TOKEN or None,
    )
    _register_health(app, service)
    _register_capabilities(app, service, settings)
    router = parts["api_router"]()
    _register_sessions(router, service, parts["depends"], parts["http_exc"], auth_dep)
    _register_uploads(router, parts["http_exc"])
    _register_analysis(router, service, parts["http_exc"])
    app.include_router(router)
    app.include_router(router, prefix=API_PREFIX, include_in_schema=False)

    logger.info(
        "http.startup.settings",
        extra={
            "log_level": settings.log_level,
            "cors_origins": settings.cors_origins(),
            "http_auth": "enabled" if settings.HTTP_TOKEN else "disabled",
            "backends": service.coordinator.backend_names,
            "data_dir": str(config.data_dir) if config.enable_file else None,
            "mongo_uri": mask_uri(config.mongo_uri) if config.enable_mongo else None,
        },
    )
    return app

"""
Dumpy API Server
FastAPI application exposing the connection manager to the desktop front-end.

Routes:
- GET  /api/health
- GET  /api/connections
- POST /api/connections/test
- POST /api/{dbType}/test-connection
- POST /api/{dbType}/connect
- POST /api/{dbType}/query
- POST /api/{dbType}/disconnect
"""

import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Union

import structlog
from bson import ObjectId
from fastapi import Body, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, ValidationError
from starlette.middleware.cors import CORSMiddleware

from ..core.config import ServerConfig
from ..core.connection_manager import ConnectionManager
from ..core.errors import (
    ConnectionEstablishmentError,
    ConnectionNotFoundError,
    ErrorKind,
    NormalizedError,
    QueryExecutionError,
)
from ..core.logging_config import AuditLogger, redact
from ..core.models import ConnectionDescriptor, EngineKind

logger = structlog.get_logger(__name__)

# Failures the caller can fix by changing the request map to 400; the
# server being unreachable maps to 503.
_STATUS_BY_KIND = {
    ErrorKind.AUTH_FAILED: 400,
    ErrorKind.DATABASE_NOT_FOUND: 400,
    ErrorKind.SSL_REQUIRED: 400,
    ErrorKind.INVALID_CONFIG: 400,
    ErrorKind.CONNECTION_REFUSED: 503,
    ErrorKind.TIMEOUT: 503,
}


class InvalidEngineTypeError(Exception):
    """The ``dbType`` path segment names no supported engine."""

    def __init__(self, value: str):
        super().__init__(f"Invalid database type: {value}")
        self.value = value


class ConnectionRef(BaseModel):
    """The front-end sends the whole connection object; only ``id`` is used."""

    model_config = ConfigDict(extra="allow")

    id: str


class QueryRequest(BaseModel):
    connection: Union[ConnectionRef, str]
    query: str
    params: Optional[List[Any]] = None

    @property
    def connection_id(self) -> str:
        if isinstance(self.connection, str):
            return self.connection
        return self.connection.id


class DisconnectRequest(BaseModel):
    connection: Union[ConnectionRef, str]

    @property
    def connection_id(self) -> str:
        if isinstance(self.connection, str):
            return self.connection
        return self.connection.id


def engine_kind(dbType: str) -> EngineKind:
    """Path dependency resolving ``dbType`` to an EngineKind."""
    try:
        return EngineKind(dbType)
    except ValueError:
        raise InvalidEngineTypeError(dbType) from None


def get_manager(request: Request) -> ConnectionManager:
    return request.app.state.manager


def _elapsed_ms(start_time: float) -> int:
    return int((time.perf_counter() - start_time) * 1000)


def _descriptor_from_body(
    body: Dict[str, Any],
    engine: Optional[EngineKind] = None
) -> ConnectionDescriptor:
    """Build a descriptor from a request body, generating an id for one-off tests."""
    data = dict(body)
    if engine is not None:
        data["type"] = engine.value
    if not data.get("id"):
        data["id"] = f"test-{uuid.uuid4()}"
    return ConnectionDescriptor.model_validate(data)


def _invalid_body_error(e: ValidationError) -> NormalizedError:
    messages = []
    for err in e.errors():
        loc = ".".join(str(part) for part in err.get("loc", []))
        messages.append(f"{loc}: {err.get('msg', 'Invalid value')}" if loc else err.get("msg", ""))
    return NormalizedError(
        error_kind=ErrorKind.INVALID_CONFIG,
        vendor_message=f"Invalid configuration: {'; '.join(messages)}",
    )


def _error_response(error: NormalizedError, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=_STATUS_BY_KIND.get(error.error_kind, 500),
        content={
            "success": False,
            "error": error.error_kind.value,
            "message": error.vendor_message,
            **extra,
        },
    )


def _encode_rows(rows: List[Dict[str, Any]]) -> Any:
    return jsonable_encoder(rows, custom_encoder={ObjectId: str, bytes: lambda b: b.hex()})


def create_app(
    config: Optional[ServerConfig] = None,
    manager: Optional[ConnectionManager] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Server configuration; defaults are used when omitted
        manager: Pre-built connection manager (tests inject one with fake adapters)

    Returns:
        The configured application. The manager's reaper runs for the
        lifetime of the app.
    """
    config = config or ServerConfig()
    if manager is None:
        manager = ConnectionManager(
            reaper_interval_seconds=config.reaper_interval_seconds,
            connect_timeout=config.connect_timeout_seconds,
            audit=AuditLogger(config.audit_file, enabled=config.audit_connections),
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await app.state.manager.start()
        try:
            yield
        finally:
            await app.state.manager.shutdown()

    app = FastAPI(
        title=config.server_name,
        description="Database connection management API",
        docs_url="/api/docs",
        lifespan=lifespan,
    )
    app.state.manager = manager
    app.state.config = config
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "Request handled",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=_elapsed_ms(start_time),
        )
        return response

    @app.exception_handler(InvalidEngineTypeError)
    async def invalid_engine_handler(request: Request, exc: InvalidEngineTypeError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": "Invalid database type",
                "validTypes": EngineKind.values(),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        messages = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", []) if part != "body")
            msg = err.get("msg", "Invalid value")
            messages.append(f"{loc}: {msg}" if loc else msg)
        return JSONResponse(
            status_code=422,
            content={"success": False, "error": "Invalid request", "message": "; ".join(messages)},
        )

    @app.get("/api/health")
    async def health(request: Request) -> Dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - request.app.state.started_at, 3),
        }

    @app.get("/api/connections")
    async def list_connections(
        manager: ConnectionManager = Depends(get_manager)
    ) -> Dict[str, Any]:
        return {
            "success": True,
            "stats": manager.stats,
            "connections": manager.list_connections(),
        }

    @app.post("/api/connections/test")
    async def test_any_connection(
        body: Dict[str, Any] = Body(...),
        manager: ConnectionManager = Depends(get_manager)
    ):
        engine = engine_kind(str(body.get("type", "")))
        start_time = time.perf_counter()
        try:
            descriptor = _descriptor_from_body(body, engine)
        except ValidationError as e:
            return _error_response(_invalid_body_error(e), duration=_elapsed_ms(start_time))

        logger.info("Testing connection", **redact(descriptor.redacted()))
        try:
            error = await manager.probe(descriptor)
        except Exception as e:
            logger.exception("Unexpected error testing connection", connection_id=descriptor.id)
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": "Internal Server Error", "message": str(e)},
            )

        duration = _elapsed_ms(start_time)
        if error is not None:
            return _error_response(error, duration=duration)
        return {"success": True, "duration": duration}

    @app.post("/api/{dbType}/test-connection")
    async def test_connection(
        body: Dict[str, Any] = Body(...),
        engine: EngineKind = Depends(engine_kind),
        manager: ConnectionManager = Depends(get_manager)
    ) -> Dict[str, Any]:
        start_time = time.perf_counter()
        try:
            descriptor = _descriptor_from_body(body, engine)
        except ValidationError as e:
            error: Optional[NormalizedError] = _invalid_body_error(e)
        else:
            logger.info("Testing connection", **redact(descriptor.redacted()))
            error = await manager.probe(descriptor)

        duration = _elapsed_ms(start_time)
        if error is None:
            logger.info("Connection successful", engine=engine.value, duration_ms=duration)
            return {"success": True, "duration": duration}

        logger.warning(
            "Connection failed",
            engine=engine.value,
            error_kind=error.error_kind.value,
            duration_ms=duration
        )
        return {
            "success": False,
            "duration": duration,
            "error": error.error_kind.value,
            "message": error.vendor_message,
        }

    @app.post("/api/{dbType}/connect")
    async def connect(
        body: Dict[str, Any] = Body(...),
        engine: EngineKind = Depends(engine_kind),
        manager: ConnectionManager = Depends(get_manager)
    ):
        start_time = time.perf_counter()
        if not body.get("id"):
            error = NormalizedError(
                error_kind=ErrorKind.INVALID_CONFIG,
                vendor_message="Invalid configuration: Connection id is required",
            )
            return _error_response(error, duration=_elapsed_ms(start_time))
        try:
            descriptor = _descriptor_from_body(body, engine)
        except ValidationError as e:
            return _error_response(_invalid_body_error(e), duration=_elapsed_ms(start_time))

        try:
            await manager.create_connection(descriptor)
        except ConnectionEstablishmentError as e:
            return _error_response(e.error, duration=_elapsed_ms(start_time))

        return {"success": True, "id": descriptor.id, "duration": _elapsed_ms(start_time)}

    @app.post("/api/{dbType}/query")
    async def execute_query(
        request_body: QueryRequest,
        engine: EngineKind = Depends(engine_kind),
        manager: ConnectionManager = Depends(get_manager)
    ):
        start_time = time.perf_counter()
        connection_id = request_body.connection_id
        log = logger.bind(connection_id=connection_id, engine=engine.value)

        entry = manager.get_connection(connection_id)
        if entry is not None and entry.engine_kind is not engine:
            log.warning("Query sent to the wrong engine", registered=entry.engine_kind.value)
            return JSONResponse(
                status_code=400,
                content={
                    "success": False,
                    "error": "Database type mismatch",
                    "message": (
                        f"Connection {connection_id} is a {entry.engine_kind.value} "
                        f"connection, not {engine.value}"
                    ),
                    "duration": _elapsed_ms(start_time),
                },
            )

        try:
            result = await manager.execute_query(
                connection_id, request_body.query, request_body.params
            )
        except ConnectionNotFoundError as e:
            log.warning("Query on unknown connection")
            return JSONResponse(
                status_code=404,
                content={"success": False, "error": str(e), "duration": _elapsed_ms(start_time)},
            )
        except QueryExecutionError as e:
            log.warning("Query failed", error=str(e))
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": str(e), "duration": _elapsed_ms(start_time)},
            )

        duration = _elapsed_ms(start_time)
        log.info("Query executed", rows=result.row_count, duration_ms=duration)
        return JSONResponse(content={
            "success": True,
            "rows": _encode_rows(result.rows),
            "duration": duration,
        })

    @app.post("/api/{dbType}/disconnect")
    async def disconnect(
        request_body: DisconnectRequest,
        engine: EngineKind = Depends(engine_kind),
        manager: ConnectionManager = Depends(get_manager)
    ) -> Dict[str, Any]:
        await manager.close_connection(request_body.connection_id)
        logger.info("Disconnected", connection_id=request_body.connection_id, engine=engine.value)
        return {"success": True}

    return app

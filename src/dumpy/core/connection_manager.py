"""
Connection Manager
Registry of pooled database connections keyed by caller-assigned id.

- Validates descriptors before any network call
- Opens pools through the engine adapter for the descriptor's type
- Reuses a live pool when the same descriptor is opened twice
- Closes pools left idle beyond their idle timeout on a fixed interval
- Serializes close against in-flight queries on the same id
"""

import asyncio
import time
import weakref
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

import structlog

from .errors import (
    ConnectionEstablishmentError,
    ConnectionNotFoundError,
    InvalidConfigError,
    NormalizedError,
    QueryExecutionError,
    UnsupportedEngineError,
    normalize,
)
from .logging_config import AuditLogger, QueryMetrics
from .models import (
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    ConnectionDescriptor,
    ConnectionState,
    EngineKind,
    PooledConnection,
    PoolHandle,
    QueryResult,
)
from .validation import validate

if TYPE_CHECKING:
    from ..adapters.base import EngineAdapter

DEFAULT_REAPER_INTERVAL_SECONDS = 60.0


class ConnectionManager:
    """
    Owns every live connection pool of the process.

    Usage:
        async with ConnectionManager() as manager:
            await manager.create_connection(descriptor)
            result = await manager.execute_query(descriptor.id, "SELECT 1")
    """

    def __init__(
        self,
        adapters: Optional[Mapping[EngineKind, "EngineAdapter"]] = None,
        reaper_interval_seconds: float = DEFAULT_REAPER_INTERVAL_SECONDS,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        audit: Optional[AuditLogger] = None
    ):
        if adapters is None:
            from ..adapters import default_adapters

            adapters = default_adapters(connect_timeout)
        self._adapters: Dict[EngineKind, "EngineAdapter"] = dict(adapters)
        self._connections: Dict[str, PooledConnection] = {}
        self._creation_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._reaper_task: Optional[asyncio.Task] = None
        self.reaper_interval_seconds = reaper_interval_seconds
        self.audit = audit or AuditLogger()
        self.metrics = QueryMetrics()
        self.logger = structlog.get_logger(__name__)

    async def __aenter__(self) -> "ConnectionManager":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the idle reaper."""
        if self.is_running:
            return
        self._reaper_task = asyncio.create_task(self._reaper_loop())
        self.logger.info(
            "Connection manager started",
            reaper_interval_seconds=self.reaper_interval_seconds
        )

    async def shutdown(self) -> None:
        """Stop the idle reaper and close every remaining connection."""
        if self._reaper_task:
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
            self._reaper_task = None

        for connection_id in list(self._connections):
            await self.close_connection(connection_id)

        self.logger.info("Connection manager stopped")

    @property
    def is_running(self) -> bool:
        return self._reaper_task is not None and not self._reaper_task.done()

    def adapter_for(self, engine_kind: EngineKind) -> "EngineAdapter":
        try:
            return self._adapters[engine_kind]
        except KeyError:
            raise UnsupportedEngineError(getattr(engine_kind, "value", str(engine_kind))) from None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_connection(self, descriptor: ConnectionDescriptor) -> PoolHandle:
        """
        Open (or reuse) the pool registered under ``descriptor.id``.

        A live pool is reused only when it was opened with the same
        descriptor; otherwise it is closed and replaced.

        Raises:
            InvalidConfigError: the descriptor failed validation
            ConnectionEstablishmentError: the driver could not open the pool
        """
        log = self.logger.bind(connection_id=descriptor.id, engine=descriptor.engine_kind.value)
        self._validate(descriptor, log)

        async with self._creation_lock(descriptor.id):
            existing = self._connections.get(descriptor.id)
            if existing is not None and existing.state is ConnectionState.CONNECTED:
                if existing.descriptor == descriptor:
                    existing.touch()
                    log.debug("Reusing connection pool")
                    return existing.handle
                log.info("Connection settings changed, replacing pool")
                await self.close_connection(descriptor.id)

            entry = PooledConnection(descriptor=descriptor)
            entry.handle = await self._open_handle(descriptor, log)
            entry.state = ConnectionState.CONNECTED
            entry.touch()
            self._connections[descriptor.id] = entry

        self.audit.log_connection_event(
            "connect",
            descriptor.id,
            engine=descriptor.engine_kind.value,
            host=descriptor.host,
            database=descriptor.database_name
        )
        return entry.handle

    async def probe(self, descriptor: ConnectionDescriptor) -> Optional[NormalizedError]:
        """
        Open a private pool for *descriptor*, health-check it and close it.

        The registry is never consulted, so a live connection with the same
        id is neither borrowed nor closed.

        Returns:
            None on success, otherwise the classified failure
        """
        log = self.logger.bind(connection_id=descriptor.id, engine=descriptor.engine_kind.value)
        handle: Optional[PoolHandle] = None

        try:
            self._validate(descriptor, log)
            handle = await self._open_handle(descriptor, log)
            await self.adapter_for(descriptor.engine_kind).health_check(handle)
        except ConnectionEstablishmentError as e:
            log.warning("Connection test failed", error_kind=e.error_kind.value, error=str(e))
            return e.error
        except Exception as e:
            error = normalize(e)
            log.warning(
                "Connection test failed",
                error_kind=error.error_kind.value,
                error=error.vendor_message
            )
            self.audit.log_connection_event(
                "health_check",
                descriptor.id,
                engine=descriptor.engine_kind.value,
                success=False,
                error=error.error_kind.value
            )
            return error
        finally:
            if handle is not None:
                await self._close_handle(descriptor, handle)

        self.audit.log_connection_event(
            "health_check", descriptor.id, engine=descriptor.engine_kind.value
        )
        log.info("Connection test successful")
        return None

    async def test_connection(self, descriptor: ConnectionDescriptor) -> bool:
        """Return True if the database is reachable with *descriptor*. Never raises."""
        return await self.probe(descriptor) is None

    async def execute_query(
        self,
        connection_id: str,
        text: str,
        params: Optional[Sequence[Any]] = None
    ) -> QueryResult:
        """
        Run a query on a registered connection.

        Raises:
            ConnectionNotFoundError: no live connection for the id
            QueryExecutionError: the driver rejected the query
        """
        entry = self._connections.get(connection_id)
        if entry is None:
            raise ConnectionNotFoundError(connection_id)

        adapter = self.adapter_for(entry.engine_kind)
        engine = entry.engine_kind.value
        start_time = time.perf_counter()

        async with self._in_use(entry) as handle:
            try:
                rows = await adapter.query(handle, text, list(params or []))
            except Exception as e:
                execution_time = (time.perf_counter() - start_time) * 1000
                self.metrics.record_query(engine, execution_time, success=False)
                self.audit.log_query(
                    connection_id, engine, text, execution_time, success=False, error=str(e)
                )
                self.logger.error(
                    "Query execution failed",
                    connection_id=connection_id,
                    engine=engine,
                    error=str(e)
                )
                raise QueryExecutionError(str(e)) from e

        execution_time = (time.perf_counter() - start_time) * 1000
        self.metrics.record_query(engine, execution_time, rows=len(rows))
        self.audit.log_query(connection_id, engine, text, execution_time, rows=len(rows))

        return QueryResult(rows=rows, row_count=len(rows), execution_time_ms=execution_time)

    async def close_connection(self, connection_id: str) -> None:
        """
        Close and forget a connection. Unknown ids are ignored.

        In-flight queries get up to the pool's acquire timeout to finish;
        the pool is closed underneath them after that.
        """
        entry = self._connections.get(connection_id)
        if entry is None:
            return

        async with entry.condition:
            if entry.state is not ConnectionState.CONNECTED:
                return
            entry.state = ConnectionState.DISCONNECTING
            try:
                await asyncio.wait_for(
                    entry.condition.wait_for(lambda: entry.in_flight == 0),
                    timeout=entry.handle.acquire_timeout
                )
            except asyncio.TimeoutError:
                self.logger.warning(
                    "Closing connection with queries still running",
                    connection_id=connection_id,
                    in_flight=entry.in_flight
                )

        engine = entry.engine_kind.value
        try:
            await self.adapter_for(entry.engine_kind).close(entry.handle)
            entry.state = ConnectionState.DISCONNECTED
            self.audit.log_connection_event("disconnect", connection_id, engine=engine)
        except Exception as e:
            entry.state = ConnectionState.ERROR
            self.logger.error(
                "Error closing connection",
                connection_id=connection_id,
                engine=engine,
                error=str(e)
            )
            self.audit.log_connection_event(
                "disconnect", connection_id, engine=engine, success=False, error=str(e)
            )
        finally:
            if self._connections.get(connection_id) is entry:
                del self._connections[connection_id]

    async def reap_idle_connections(self) -> List[str]:
        """Close every connection idle beyond its timeout. Returns the ids closed."""
        now = time.monotonic()
        expired = [
            connection_id
            for connection_id, entry in list(self._connections.items())
            if entry.state is ConnectionState.CONNECTED
            and entry.in_flight == 0
            and entry.idle_seconds(now) > entry.idle_timeout_seconds
        ]

        for connection_id in expired:
            entry = self._connections.get(connection_id)
            if entry is None:
                continue
            self.logger.info(
                "Closing idle connection",
                connection_id=connection_id,
                idle_seconds=round(entry.idle_seconds(now), 3)
            )
            self.audit.log_connection_event(
                "reap", connection_id, engine=entry.engine_kind.value
            )
            await self.close_connection(connection_id)

        return expired

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get_connection(self, connection_id: str) -> Optional[PooledConnection]:
        return self._connections.get(connection_id)

    def list_connections(self) -> List[Dict[str, Any]]:
        return [entry.describe() for entry in self._connections.values()]

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    @property
    def stats(self) -> Dict[str, Any]:
        """Registry and query statistics."""
        by_state: Dict[str, int] = {}
        by_engine: Dict[str, int] = {}
        for entry in self._connections.values():
            by_state[entry.state.value] = by_state.get(entry.state.value, 0) + 1
            by_engine[entry.engine_kind.value] = by_engine.get(entry.engine_kind.value, 0) + 1

        return {
            "connections": len(self._connections),
            "by_state": by_state,
            "by_engine": by_engine,
            "reaper_running": self.is_running,
            "reaper_interval_seconds": self.reaper_interval_seconds,
            "queries": self.metrics.get_metrics(),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _creation_lock(self, connection_id: str) -> asyncio.Lock:
        lock = self._creation_locks.get(connection_id)
        if lock is None:
            lock = asyncio.Lock()
            self._creation_locks[connection_id] = lock
        return lock

    def _validate(self, descriptor: ConnectionDescriptor, log: Any) -> None:
        validation = validate(descriptor)
        if not validation.is_valid:
            log.warning("Invalid connection configuration", fields=validation.error_fields)
            raise InvalidConfigError(descriptor.engine_kind, validation)

    async def _open_handle(self, descriptor: ConnectionDescriptor, log: Any) -> PoolHandle:
        """Open a pool for a validated descriptor; driver failures are classified."""
        adapter = self.adapter_for(descriptor.engine_kind)
        log.info(
            "Opening connection pool",
            host=descriptor.host,
            port=descriptor.port,
            database=descriptor.database_name
        )
        try:
            return await adapter.open(descriptor)
        except Exception as e:
            error = normalize(e)
            log.error(
                "Failed to open connection pool",
                error_kind=error.error_kind.value,
                error=error.vendor_message,
                code=error.vendor_code
            )
            self.audit.log_connection_event(
                "connect",
                descriptor.id,
                engine=descriptor.engine_kind.value,
                success=False,
                error=error.error_kind.value
            )
            raise ConnectionEstablishmentError(descriptor.engine_kind, error) from e

    async def _close_handle(self, descriptor: ConnectionDescriptor, handle: PoolHandle) -> None:
        """Close a pool that was never registered."""
        try:
            await self.adapter_for(descriptor.engine_kind).close(handle)
        except Exception as e:
            self.logger.warning(
                "Error closing test pool",
                connection_id=descriptor.id,
                engine=descriptor.engine_kind.value,
                error=str(e)
            )

    @asynccontextmanager
    async def _in_use(self, entry: PooledConnection) -> AsyncIterator[PoolHandle]:
        """Mark a query in flight so a concurrent close waits for it."""
        async with entry.condition:
            if entry.state is not ConnectionState.CONNECTED:
                raise ConnectionNotFoundError(entry.connection_id)
            entry.in_flight += 1
            entry.touch()
        try:
            yield entry.handle
        finally:
            async with entry.condition:
                entry.in_flight -= 1
                entry.touch()
                entry.condition.notify_all()

    async def _reaper_loop(self) -> None:
        """Background task closing idle connections."""
        while True:
            try:
                await asyncio.sleep(self.reaper_interval_seconds)
                reaped = await self.reap_idle_connections()
                self.logger.debug(
                    "Idle reaper pass completed",
                    reaped=len(reaped),
                    remaining=len(self._connections)
                )
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Idle reaper error", error=str(e))

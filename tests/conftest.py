"""Shared fixtures: an in-memory engine adapter and a descriptor factory."""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytest

from dumpy.adapters.base import EngineAdapter
from dumpy.core.connection_manager import ConnectionManager
from dumpy.core.logging_config import AuditLogger
from dumpy.core.models import ConnectionDescriptor, EngineKind, PoolHandle, PoolOptions


class FakePool:
    def __init__(self, descriptor: ConnectionDescriptor, pool_options: PoolOptions):
        self.descriptor = descriptor
        self.pool_options = pool_options
        self.closed = False


class FakeAdapter(EngineAdapter):
    """Adapter whose pools live in memory; failures are injected per attribute."""

    default_port = 9999

    def __init__(self, engine_kind: EngineKind = EngineKind.MYSQL):
        super().__init__(connect_timeout=1.0)
        self.engine_kind = engine_kind
        self.open_error: Optional[BaseException] = None
        self.health_error: Optional[BaseException] = None
        self.query_error: Optional[BaseException] = None
        self.close_error: Optional[BaseException] = None
        self.rows: List[Dict[str, Any]] = [{"n": 1}]
        self.query_gate: Optional[asyncio.Event] = None
        self.query_started = asyncio.Event()
        self.opened: List[FakePool] = []
        self.closed: List[FakePool] = []
        self.queries: List[tuple] = []

    async def _open_pool(self, descriptor: ConnectionDescriptor, pool_options: PoolOptions) -> FakePool:
        # Yield once so concurrent callers can interleave.
        await asyncio.sleep(0)
        if self.open_error is not None:
            raise self.open_error
        pool = FakePool(descriptor, pool_options)
        self.opened.append(pool)
        return pool

    async def _close_pool(self, pool: FakePool) -> None:
        if self.close_error is not None:
            raise self.close_error
        pool.closed = True
        self.closed.append(pool)

    async def health_check(self, handle: PoolHandle) -> None:
        if self.health_error is not None:
            raise self.health_error

    async def query(
        self,
        handle: PoolHandle,
        text: str,
        params: Optional[Sequence[Any]] = None
    ) -> List[Dict[str, Any]]:
        self.queries.append((text, list(params or [])))
        self.query_started.set()
        if self.query_gate is not None:
            await self.query_gate.wait()
        if self.query_error is not None:
            raise self.query_error
        return list(self.rows)


@pytest.fixture
def make_descriptor() -> Callable[..., ConnectionDescriptor]:
    def _make(**overrides: Any) -> ConnectionDescriptor:
        data: Dict[str, Any] = {
            "id": "conn-1",
            "name": "Local MySQL",
            "type": "mysql",
            "host": "localhost",
            "port": 3306,
            "database": "app",
            "username": "root",
            "password": "secret",
        }
        data.update(overrides)
        return ConnectionDescriptor.model_validate(data)

    return _make


@pytest.fixture
def adapters() -> Dict[EngineKind, FakeAdapter]:
    return {kind: FakeAdapter(kind) for kind in EngineKind}


@pytest.fixture
def fake_mysql(adapters: Dict[EngineKind, FakeAdapter]) -> FakeAdapter:
    return adapters[EngineKind.MYSQL]


@pytest.fixture
def manager(adapters: Dict[EngineKind, FakeAdapter]) -> ConnectionManager:
    return ConnectionManager(
        adapters=adapters,
        reaper_interval_seconds=3600,
        audit=AuditLogger(enabled=False),
    )

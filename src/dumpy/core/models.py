"""
Connection Data Model
Shared types for connection descriptors, pool handles and registry entries.

Descriptors arrive from the front-end with its field names (``type``,
``database``, ``ssl``, ``pooling``), so the pydantic models accept those
aliases as well as the Python field names.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class EngineKind(str, Enum):
    """Database engines supported by the adapter set."""

    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    MONGODB = "mongodb"
    SQLSERVER = "sqlserver"
    ORACLE = "oracle"

    @classmethod
    def values(cls) -> List[str]:
        return [kind.value for kind in cls]


class ConnectionState(str, Enum):
    """Lifecycle of a registry entry."""

    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    DISCONNECTING = "DISCONNECTING"
    DISCONNECTED = "DISCONNECTED"
    ERROR = "ERROR"


DEFAULT_POOL_MAX = 10
DEFAULT_POOL_MIN = 1
DEFAULT_IDLE_TIMEOUT_MS = 60000
DEFAULT_ACQUIRE_TIMEOUT_MS = 30000
DEFAULT_CONNECT_TIMEOUT_SECONDS = 5.0


class PoolOptions(BaseModel):
    """Optional pool bounds supplied with a descriptor."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_size: Optional[int] = Field(default=None, alias="max")
    min_size: Optional[int] = Field(default=None, alias="min")
    idle_timeout_ms: Optional[int] = Field(default=None, alias="idle")
    acquire_timeout_ms: Optional[int] = Field(default=None, alias="acquire")

    def resolved(self) -> "PoolOptions":
        """Return a copy with every absent value replaced by its default."""
        return PoolOptions(
            max_size=DEFAULT_POOL_MAX if self.max_size is None else self.max_size,
            min_size=DEFAULT_POOL_MIN if self.min_size is None else self.min_size,
            idle_timeout_ms=(
                DEFAULT_IDLE_TIMEOUT_MS if self.idle_timeout_ms is None else self.idle_timeout_ms
            ),
            acquire_timeout_ms=(
                DEFAULT_ACQUIRE_TIMEOUT_MS
                if self.acquire_timeout_ms is None
                else self.acquire_timeout_ms
            ),
        )


class ConnectionDescriptor(BaseModel):
    """
    Caller-supplied connection parameters.

    Construction is deliberately lax: missing or malformed values are
    reported by ``dumpy.core.validation.validate`` rather than raised here.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., description="Registry key, assigned by the caller")
    name: Optional[str] = Field(default=None, description="Display name")
    engine_kind: EngineKind = Field(..., alias="type")
    host: str = ""
    port: Optional[Union[int, str]] = None
    database_name: str = Field(default="", alias="database")
    username: str = ""
    password: str = ""
    use_tls: bool = Field(default=False, alias="ssl")
    pool_options: Optional[PoolOptions] = Field(default=None, alias="pooling")

    @property
    def port_number(self) -> int:
        """Port as an integer. Only meaningful on a validated descriptor."""
        return int(str(self.port).strip())

    @property
    def resolved_pool_options(self) -> PoolOptions:
        return (self.pool_options or PoolOptions()).resolved()

    def redacted(self) -> Dict[str, Any]:
        """Descriptor fields safe to log or return to a client."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.engine_kind.value,
            "host": self.host,
            "port": self.port,
            "database": self.database_name,
            "username": self.username,
            "ssl": self.use_tls,
        }


class ValidationIssue(BaseModel):
    """A single validation problem."""

    field: str
    message: str


class ValidationResult(BaseModel):
    """Outcome of validating a descriptor."""

    is_valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)

    @property
    def error_fields(self) -> List[str]:
        return [issue.field for issue in self.errors]

    def summary(self) -> str:
        return ", ".join(issue.message for issue in self.errors)


class QueryResult(BaseModel):
    """Rows returned by ``ConnectionManager.execute_query``."""

    rows: List[Dict[str, Any]]
    row_count: int
    execution_time_ms: float


@dataclass
class PoolHandle:
    """Vendor pool tagged with the engine that created it."""

    engine_kind: EngineKind
    pool: Any
    database_name: str = ""
    acquire_timeout: float = DEFAULT_ACQUIRE_TIMEOUT_MS / 1000.0
    closed: bool = False


@dataclass
class PooledConnection:
    """Registry entry for one connection id."""

    descriptor: ConnectionDescriptor
    handle: Optional[PoolHandle] = None
    state: ConnectionState = ConnectionState.CONNECTING
    created_at: float = field(default_factory=time.monotonic)
    last_used_at: float = field(default_factory=time.monotonic)
    in_flight: int = 0
    condition: asyncio.Condition = field(default_factory=asyncio.Condition)

    @property
    def connection_id(self) -> str:
        return self.descriptor.id

    @property
    def engine_kind(self) -> EngineKind:
        return self.descriptor.engine_kind

    @property
    def idle_timeout_seconds(self) -> float:
        return self.descriptor.resolved_pool_options.idle_timeout_ms / 1000.0

    def touch(self) -> None:
        self.last_used_at = time.monotonic()

    def idle_seconds(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_used_at

    def describe(self) -> Dict[str, Any]:
        """Diagnostic view of the entry, without credentials."""
        return {
            "id": self.connection_id,
            "type": self.engine_kind.value,
            "state": self.state.value,
            "host": self.descriptor.host,
            "database": self.descriptor.database_name,
            "idle_seconds": round(self.idle_seconds(), 3),
            "in_flight": self.in_flight,
        }

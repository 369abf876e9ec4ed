"""
Core connection-management components.
"""

from .config import ServerConfig, load_config
from .connection_manager import ConnectionManager
from .errors import (
    ConnectionEstablishmentError,
    ConnectionNotFoundError,
    DumpyError,
    ErrorKind,
    InvalidConfigError,
    NormalizedError,
    QueryExecutionError,
    UnsupportedEngineError,
    classify,
    normalize,
)
from .logging_config import AuditLogger, setup_logging
from .models import (
    ConnectionDescriptor,
    ConnectionState,
    EngineKind,
    PoolHandle,
    PoolOptions,
    PooledConnection,
    QueryResult,
    ValidationResult,
)
from .validation import validate

__all__ = [
    "AuditLogger",
    "ConnectionDescriptor",
    "ConnectionEstablishmentError",
    "ConnectionManager",
    "ConnectionNotFoundError",
    "ConnectionState",
    "DumpyError",
    "EngineKind",
    "ErrorKind",
    "InvalidConfigError",
    "NormalizedError",
    "PoolHandle",
    "PoolOptions",
    "PooledConnection",
    "QueryExecutionError",
    "QueryResult",
    "ServerConfig",
    "UnsupportedEngineError",
    "ValidationResult",
    "classify",
    "load_config",
    "normalize",
    "setup_logging",
    "validate",
]

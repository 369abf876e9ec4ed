"""
Error Classification
Maps vendor driver exceptions onto a small set of normalized error kinds
and defines the exceptions raised by the connection manager.

Classification checks, per kind and in a fixed priority order:
- the vendor error code (SQLSTATE, MySQL errno, MongoDB code, ORA- code)
- the Python exception type (refused, timeout, SSL)
- phrases in the error message

Message phrases are a heuristic. Driver wording changes across versions
and locales, which is why vendor codes are consulted first.
"""

import asyncio
import re
import ssl
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple, Type

from .models import EngineKind, ValidationResult


class ErrorKind(str, Enum):
    """Normalized connection-establishment error kinds."""

    AUTH_FAILED = "AUTH_FAILED"
    CONNECTION_REFUSED = "CONN_REFUSED"
    DATABASE_NOT_FOUND = "DB_NOT_FOUND"
    TIMEOUT = "TIMEOUT"
    SSL_REQUIRED = "SSL_REQUIRED"
    INVALID_CONFIG = "INVALID_CONFIG"


@dataclass(frozen=True)
class NormalizedError:
    """Classified view of a raw vendor exception."""

    error_kind: ErrorKind
    vendor_message: str
    vendor_code: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "error": self.error_kind.value,
            "message": self.vendor_message,
            "code": self.vendor_code,
        }


# Vendor codes per kind. Keys are compared as upper-case strings.
_VENDOR_CODES = {
    ErrorKind.AUTH_FAILED: {
        "28P01", "28000",          # PostgreSQL / ODBC invalid authorization
        "1045", "1044",            # MySQL access denied
        "18",                      # MongoDB AuthenticationFailed
        "18456",                   # SQL Server login failed
        "ORA-01017", "ORA-28000",  # Oracle invalid credentials / locked account
    },
    ErrorKind.CONNECTION_REFUSED: {
        "ECONNREFUSED",
        "2003",                    # MySQL can't connect to server
        "08001",                   # ODBC unable to establish connection
        "ORA-12541",               # Oracle no listener
        "DPY-6005",                # python-oracledb cannot connect
    },
    ErrorKind.DATABASE_NOT_FOUND: {
        "3D000",                   # PostgreSQL invalid catalog name
        "1049",                    # MySQL unknown database
        "4060",                    # SQL Server cannot open database
        "ORA-12514",               # Oracle unknown service
        "DPY-6001",
    },
    ErrorKind.TIMEOUT: {
        "ETIMEDOUT",
        "HYT00",                   # ODBC timeout expired
        "50",                      # MongoDB MaxTimeMSExpired
        "ORA-12170",               # Oracle connect timeout
    },
    ErrorKind.SSL_REQUIRED: {
        "08P01",                   # PostgreSQL protocol violation (SSL off)
        "3159",                    # MySQL secure transport required
    },
}

_EXCEPTION_TYPES: dict = {
    ErrorKind.CONNECTION_REFUSED: (ConnectionRefusedError,),
    ErrorKind.TIMEOUT: (TimeoutError, asyncio.TimeoutError),
    ErrorKind.SSL_REQUIRED: (ssl.SSLError,),
}

_PRIORITY: Tuple[ErrorKind, ...] = (
    ErrorKind.AUTH_FAILED,
    ErrorKind.CONNECTION_REFUSED,
    ErrorKind.DATABASE_NOT_FOUND,
    ErrorKind.TIMEOUT,
    ErrorKind.SSL_REQUIRED,
)

_SQLSTATE_RE = re.compile(r"^[0-9A-Z]{5}$")


def _message_of(raw: BaseException) -> str:
    message = str(raw)
    if not message and raw.args:
        message = " ".join(str(arg) for arg in raw.args)
    return message or raw.__class__.__name__


def vendor_code(raw: BaseException) -> Optional[str]:
    """Extract the driver's error code from *raw*, if it carries one."""
    # asyncpg / psycopg
    sqlstate = getattr(raw, "sqlstate", None)
    if sqlstate:
        return str(sqlstate)

    # python-oracledb wraps an _Error object with full_code ("ORA-01017")
    if raw.args:
        full_code = getattr(raw.args[0], "full_code", None)
        if full_code:
            return str(full_code)

    # pymongo OperationFailure, node-style code attributes
    code = getattr(raw, "code", None)
    if isinstance(code, (int, str)) and code != "":
        return str(code)

    # pymysql / aiomysql: args = (errno, message); pyodbc: args = (sqlstate, message)
    if raw.args and len(raw.args) > 1:
        first = raw.args[0]
        if isinstance(first, int) and not isinstance(first, bool):
            return str(first)
        if isinstance(first, str) and _SQLSTATE_RE.match(first):
            return first

    errno = getattr(raw, "errno", None)
    if errno is not None:
        return str(errno)
    return None


def _matches_phrases(kind: ErrorKind, message: str) -> bool:
    lowered = message.lower()
    if kind is ErrorKind.AUTH_FAILED:
        return any(
            phrase in lowered
            for phrase in ("access denied", "authentication failed", "login failed")
        )
    if kind is ErrorKind.CONNECTION_REFUSED:
        return "econnrefused" in lowered or "connection refused" in lowered
    if kind is ErrorKind.DATABASE_NOT_FOUND:
        return "unknown database" in lowered or (
            "database" in lowered
            and ("not found" in lowered or "does not exist" in lowered)
        )
    if kind is ErrorKind.TIMEOUT:
        return "timeout" in lowered or "timed out" in lowered
    if kind is ErrorKind.SSL_REQUIRED:
        return "ssl" in lowered
    return False


def classify(raw: BaseException, code: Optional[str] = None) -> ErrorKind:
    """Map a raw driver exception onto an ``ErrorKind``."""
    message = _message_of(raw)
    code = (code if code is not None else vendor_code(raw)) or ""
    code = code.upper()

    for kind in _PRIORITY:
        if code and code in _VENDOR_CODES.get(kind, ()):
            return kind
        types: Iterable[Type[BaseException]] = _EXCEPTION_TYPES.get(kind, ())
        if types and isinstance(raw, tuple(types)):
            return kind
        if _matches_phrases(kind, message):
            return kind

    return ErrorKind.INVALID_CONFIG


def normalize(raw: BaseException) -> NormalizedError:
    """Build a ``NormalizedError`` from a raw driver exception."""
    code = vendor_code(raw)
    return NormalizedError(
        error_kind=classify(raw, code),
        vendor_message=_message_of(raw),
        vendor_code=code,
    )


class DumpyError(Exception):
    """Base class for connection manager errors."""


class UnsupportedEngineError(DumpyError):
    """No adapter is registered for the requested engine."""

    def __init__(self, engine: str):
        super().__init__(f"Unsupported database type: {engine}")
        self.engine = engine


class ConnectionEstablishmentError(DumpyError):
    """Opening a pool failed; carries the classified error."""

    def __init__(
        self,
        engine: EngineKind,
        error: NormalizedError,
        message: Optional[str] = None
    ):
        super().__init__(
            message
            or f"Failed to create {engine.value} connection: "
            f"{error.vendor_message} ({error.error_kind.value})"
        )
        self.engine = engine
        self.error = error

    @property
    def error_kind(self) -> ErrorKind:
        return self.error.error_kind


class InvalidConfigError(ConnectionEstablishmentError):
    """The descriptor failed validation; no network call was made."""

    def __init__(self, engine: EngineKind, validation: ValidationResult):
        self.validation = validation
        error = NormalizedError(
            error_kind=ErrorKind.INVALID_CONFIG,
            vendor_message=f"Invalid configuration: {validation.summary()}",
        )
        super().__init__(engine, error, error.vendor_message)


class ConnectionNotFoundError(DumpyError):
    """No live registry entry exists for the id."""

    def __init__(self, connection_id: str):
        super().__init__("Connection not found")
        self.connection_id = connection_id


class QueryExecutionError(DumpyError):
    """The driver rejected a query; wraps its message."""

    def __init__(self, message: str):
        super().__init__(f"Query execution failed: {message}")

"""Unit tests for core.errors classification."""

import asyncio
import ssl

import pytest

from dumpy.core.errors import (
    ConnectionEstablishmentError,
    ErrorKind,
    NormalizedError,
    classify,
    normalize,
    vendor_code,
)
from dumpy.core.models import EngineKind


class DriverError(Exception):
    """Shape of pymysql / pyodbc errors: args = (code, message)."""

    def __str__(self) -> str:
        return str(self.args[1])


class SQLStateError(Exception):
    """Shape of asyncpg errors: the SQLSTATE lives on ``sqlstate``."""

    def __init__(self, message: str, sqlstate: str):
        super().__init__(message)
        self.sqlstate = sqlstate


class CodedError(Exception):
    """Shape of pymongo OperationFailure: numeric ``code`` attribute."""

    def __init__(self, message: str, code: int):
        super().__init__(message)
        self.code = code


class _OracleErrorObject:
    def __init__(self, full_code: str, message: str):
        self.full_code = full_code
        self.message = message

    def __str__(self) -> str:
        return f"{self.full_code}: {self.message}"


@pytest.mark.parametrize(
    "message,expected",
    [
        ("connect ECONNREFUSED 127.0.0.1:3306", ErrorKind.CONNECTION_REFUSED),
        ("Connection refused (os error 111)", ErrorKind.CONNECTION_REFUSED),
        ('password authentication failed for user "app"', ErrorKind.AUTH_FAILED),
        ("Access denied for user 'root'@'172.17.0.1'", ErrorKind.AUTH_FAILED),
        ("Login failed for user 'sa'.", ErrorKind.AUTH_FAILED),
        ("Unknown database 'inventory'", ErrorKind.DATABASE_NOT_FOUND),
        ('database "inventory" does not exist', ErrorKind.DATABASE_NOT_FOUND),
        ("Operation timed out after 5000ms", ErrorKind.TIMEOUT),
        ("The server does not support SSL connections", ErrorKind.SSL_REQUIRED),
        ("getaddrinfo ENOTFOUND db.internal", ErrorKind.INVALID_CONFIG),
    ],
)
def test_classify_by_message(message: str, expected: ErrorKind) -> None:
    assert classify(Exception(message)) is expected


def test_classify_is_case_insensitive() -> None:
    assert classify(Exception("CONNECTION REFUSED")) is ErrorKind.CONNECTION_REFUSED
    assert classify(Exception("Authentication Failed")) is ErrorKind.AUTH_FAILED


def test_auth_outranks_other_phrases() -> None:
    # Both phrases present: authentication wins by priority.
    err = Exception("access denied after connection refused retry")
    assert classify(err) is ErrorKind.AUTH_FAILED


def test_database_needs_not_found_phrase() -> None:
    assert classify(Exception("database is read-only")) is ErrorKind.INVALID_CONFIG
    assert classify(Exception("Database 'x' not found")) is ErrorKind.DATABASE_NOT_FOUND


def test_classify_by_exception_type() -> None:
    assert classify(asyncio.TimeoutError()) is ErrorKind.TIMEOUT
    assert classify(ConnectionRefusedError(111, "Connect call failed")) is (
        ErrorKind.CONNECTION_REFUSED
    )
    assert classify(ssl.SSLError(1, "[SSL: WRONG_VERSION_NUMBER]")) is ErrorKind.SSL_REQUIRED


def test_mysql_errno_is_used_before_message() -> None:
    err = DriverError(1045, "Something unexpected happened")
    assert vendor_code(err) == "1045"
    assert classify(err) is ErrorKind.AUTH_FAILED

    assert classify(DriverError(1049, "no such schema")) is ErrorKind.DATABASE_NOT_FOUND
    assert classify(DriverError(2003, "Can't connect")) is ErrorKind.CONNECTION_REFUSED


def test_postgres_sqlstate() -> None:
    err = SQLStateError("invalid catalog", "3D000")
    assert vendor_code(err) == "3D000"
    assert classify(err) is ErrorKind.DATABASE_NOT_FOUND
    assert classify(SQLStateError("bad password", "28P01")) is ErrorKind.AUTH_FAILED


def test_odbc_sqlstate_in_args() -> None:
    err = DriverError("28000", "[Microsoft][ODBC Driver 18 for SQL Server]Invalid credentials")
    assert vendor_code(err) == "28000"
    assert classify(err) is ErrorKind.AUTH_FAILED

    err = DriverError("HYT00", "[Microsoft][ODBC Driver 18 for SQL Server]Query expired")
    assert classify(err) is ErrorKind.TIMEOUT


def test_mongodb_code() -> None:
    err = CodedError("bad auth : authentication failed", 18)
    assert vendor_code(err) == "18"
    assert classify(err) is ErrorKind.AUTH_FAILED


def test_oracle_full_code() -> None:
    err = Exception(_OracleErrorObject("ORA-01017", "invalid username/password; logon denied"))
    assert vendor_code(err) == "ORA-01017"
    assert classify(err) is ErrorKind.AUTH_FAILED

    err = Exception(_OracleErrorObject("ORA-12541", "TNS:no listener"))
    assert classify(err) is ErrorKind.CONNECTION_REFUSED


def test_unknown_code_falls_back_to_message() -> None:
    err = DriverError(9999, "connection refused by proxy")
    assert classify(err) is ErrorKind.CONNECTION_REFUSED


def test_normalize_keeps_vendor_detail() -> None:
    error = normalize(SQLStateError('role "ghost" does not exist', "28000"))

    assert error == NormalizedError(
        error_kind=ErrorKind.AUTH_FAILED,
        vendor_message='role "ghost" does not exist',
        vendor_code="28000",
    )
    assert error.to_dict() == {
        "error": "AUTH_FAILED",
        "message": 'role "ghost" does not exist',
        "code": "28000",
    }


def test_normalize_empty_message_uses_class_name() -> None:
    error = normalize(asyncio.TimeoutError())
    assert error.vendor_message == "TimeoutError"


def test_connection_establishment_error_message() -> None:
    error = NormalizedError(ErrorKind.CONNECTION_REFUSED, "connect ECONNREFUSED")
    exc = ConnectionEstablishmentError(EngineKind.POSTGRESQL, error)

    assert str(exc) == "Failed to create postgresql connection: connect ECONNREFUSED (CONN_REFUSED)"
    assert exc.error_kind is ErrorKind.CONNECTION_REFUSED

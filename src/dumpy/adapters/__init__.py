"""
Database Adapters.

One adapter per engine, each exposing the same open / health_check /
query / close surface to the ConnectionManager.
"""

from typing import Dict

from ..core.models import EngineKind
from .base import DEFAULT_CONNECT_TIMEOUT_SECONDS, EngineAdapter
from .mongodb import MongoDBAdapter
from .mysql import MySQLAdapter
from .oracle import OracleAdapter
from .postgresql import PostgreSQLAdapter
from .sqlserver import SQLServerAdapter


def default_adapters(
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS
) -> Dict[EngineKind, EngineAdapter]:
    """Build the adapter table for every supported engine."""
    adapters = [
        MySQLAdapter(connect_timeout),
        PostgreSQLAdapter(connect_timeout),
        MongoDBAdapter(connect_timeout),
        SQLServerAdapter(connect_timeout),
        OracleAdapter(connect_timeout),
    ]
    return {adapter.engine_kind: adapter for adapter in adapters}


__all__ = [
    "EngineAdapter",
    "MySQLAdapter",
    "PostgreSQLAdapter",
    "MongoDBAdapter",
    "SQLServerAdapter",
    "OracleAdapter",
    "default_adapters",
]

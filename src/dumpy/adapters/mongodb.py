"""
MongoDB Adapter
Pooled MongoDB access through motor.

MongoDB has no SQL, so the generic ``query`` operation takes a JSON
aggregation pipeline instead:

- a JSON array runs as a database-level aggregation
- ``{"collection": "orders", "pipeline": [...]}`` aggregates one collection

Callers holding Python data should use ``aggregate`` directly.
"""

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote_plus

from motor.motor_asyncio import AsyncIOMotorClient

from ..core.models import ConnectionDescriptor, EngineKind, PoolHandle, PoolOptions
from .base import EngineAdapter


def parse_pipeline(text: str) -> Tuple[Optional[str], List[Dict[str, Any]]]:
    """
    Decode query text into ``(collection, pipeline)``.

    Raises:
        ValueError: if the text is not a JSON pipeline
    """
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"MongoDB queries must be a JSON aggregation pipeline: {e}") from e

    if isinstance(payload, list):
        return None, payload
    if isinstance(payload, dict) and isinstance(payload.get("pipeline"), list):
        return payload.get("collection"), payload["pipeline"]
    raise ValueError(
        "MongoDB queries must be a JSON array of stages or "
        "an object with 'collection' and 'pipeline'"
    )


class MongoDBAdapter(EngineAdapter):
    """Adapter for MongoDB using ``AsyncIOMotorClient``."""

    engine_kind = EngineKind.MONGODB
    default_port = 27017

    def build_uri(self, descriptor: ConnectionDescriptor) -> str:
        credentials = ""
        if descriptor.username:
            credentials = (
                f"{quote_plus(descriptor.username)}:{quote_plus(descriptor.password)}@"
            )
        return (
            f"mongodb://{credentials}{descriptor.host}:{self.port_for(descriptor)}"
            f"/{descriptor.database_name}"
        )

    async def _open_pool(
        self,
        descriptor: ConnectionDescriptor,
        pool_options: PoolOptions
    ) -> AsyncIOMotorClient:
        """Create the client and ping once; motor connects lazily otherwise."""
        timeout_ms = int(self.connect_timeout * 1000)
        tls_options: Dict[str, Any] = {}
        if descriptor.use_tls:
            tls_options = {"tls": True, "tlsAllowInvalidCertificates": True}

        client = AsyncIOMotorClient(
            self.build_uri(descriptor),
            maxPoolSize=pool_options.max_size,
            minPoolSize=pool_options.min_size,
            maxIdleTimeMS=pool_options.idle_timeout_ms,
            waitQueueTimeoutMS=pool_options.acquire_timeout_ms,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
            **tls_options,
        )
        try:
            await client.admin.command("ping")
        except Exception:
            client.close()
            raise
        return client

    async def _close_pool(self, pool: AsyncIOMotorClient) -> None:
        pool.close()

    async def health_check(self, handle: PoolHandle) -> None:
        await handle.pool.admin.command("ping")

    async def aggregate(
        self,
        handle: PoolHandle,
        pipeline: List[Dict[str, Any]],
        collection: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Run an aggregation pipeline against the database or one collection."""
        database = handle.pool[handle.database_name]
        target = database[collection] if collection else database
        cursor = target.aggregate(pipeline)
        return await cursor.to_list(length=None)

    async def query(
        self,
        handle: PoolHandle,
        text: str,
        params: Optional[Sequence[Any]] = None
    ) -> List[Dict[str, Any]]:
        collection, pipeline = parse_pipeline(text)
        return await self.aggregate(handle, pipeline, collection)

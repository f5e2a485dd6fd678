"""MongoDB connection management.

The store is an explicitly owned handle: the application lifespan creates it
and closes it, and repositories receive it through their constructors. The
underlying ``AsyncMongoClient`` is created lazily on first use.
"""

from typing import Any, Dict, Optional

import structlog
from pymongo import AsyncMongoClient
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import PyMongoError

from flowgen.infrastructure.config import MongoConfig

logger = structlog.get_logger(__name__)


class DocumentStore:
    """Lazily connected handle on the ``flowgen_db`` database."""

    def __init__(self, config: MongoConfig, client: Optional[AsyncMongoClient] = None):
        self._config = config
        self._client = client

    @property
    def client(self) -> AsyncMongoClient:
        """Get or create the MongoDB client."""
        if self._client is None:
            self._client = AsyncMongoClient(
                self._config.uri,
                serverSelectionTimeoutMS=self._config.server_selection_timeout_ms,
                tz_aware=True,
            )
            logger.info("MongoDB client created", database=self._config.database)
        return self._client

    @property
    def database(self) -> AsyncDatabase:
        return self.client[self._config.database]

    def collection(self, name: str) -> AsyncCollection:
        return self.database[name]

    async def ping(self) -> Dict[str, Any]:
        """Round-trip to the server.

        Raises:
            PyMongoError: If the server cannot be reached
        """
        return await self.client.admin.command("ping")

    async def is_healthy(self) -> bool:
        try:
            await self.ping()
        except PyMongoError as exc:
            logger.warning("MongoDB health check failed", error=str(exc))
            return False
        return True

    async def close(self) -> None:
        """Close the client. A later call to :attr:`client` reconnects."""
        client, self._client = self._client, None
        if client is not None:
            await client.close()
            logger.info("MongoDB client closed")

"""
mongod Administrative Service

Administrative commands issued against a special-mode mongod during a
binary restore. pymongo is synchronous, so every command runs in the
default executor.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from pymongo import MongoClient
from pymongo.errors import ConnectionFailure, PyMongoError

from ..exceptions import AdminOperationError, EngineShutdownError
from ..models.entities import Timestamp

logger = logging.getLogger(__name__)

OPLOG_TRUNCATE_AFTER_POINT_ID = "oplogTruncateAfterPoint"


class MongodAdminService:
    """
    Administrative session bound to one running mongod.

    Example:
        ```python
        admin = MongodAdminService(handle.uri)
        await admin.ping()
        await admin.fix_system_data_after_restore(sentinel.backup_last_ts)
        await admin.shutdown()
        ```
    """

    def __init__(
        self,
        uri: str,
        app_name: str = "mongo_ops restore",
        server_selection_timeout_ms: int = 5000,
        client: Optional[MongoClient] = None
    ):
        self.uri = uri
        self._client = client if client is not None else MongoClient(
            uri,
            appname=app_name,
            serverSelectionTimeoutMS=server_selection_timeout_ms
        )
        self._closed = False

    @classmethod
    def factory(
        cls,
        app_name: str = "mongo_ops restore",
        server_selection_timeout_ms: int = 5000
    ) -> Callable[[str], "MongodAdminService"]:
        """Build a ``uri -> MongodAdminService`` factory with fixed driver options."""
        def create(uri: str) -> "MongodAdminService":
            return cls(uri, app_name=app_name, server_selection_timeout_ms=server_selection_timeout_ms)
        return create

    async def _run(self, func: Callable[..., Any], *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def ping(self) -> None:
        """
        Raises:
            AdminOperationError: If the server does not answer
        """
        try:
            await self._run(self._client.admin.command, "ping")
        except PyMongoError as e:
            raise AdminOperationError(f"ping failed: {e}", operation="ping") from e

    def _fix_system_data(self, last_write_ts: Timestamp) -> None:
        bson_ts = last_write_ts.to_bson()
        local = self._client.local

        local["replset.election"].delete_many({})
        local["system.replset"].delete_many({})
        local["replset.minvalid"].update_one(
            {},
            {"$set": {"ts": bson_ts, "t": -1}},
            upsert=True
        )
        local["replset.oplogTruncateAfterPoint"].update_one(
            {"_id": OPLOG_TRUNCATE_AFTER_POINT_ID},
            {"$set": {"oplogTruncateAfterPoint": bson_ts}},
            upsert=True
        )
        self._client.config.drop_collection("system.sessions")

    async def fix_system_data_after_restore(self, last_write_ts: Timestamp) -> None:
        """
        Reconcile replication metadata with the backup's last write.

        Clears the election and replica set configuration documents, points
        ``minvalid`` and the oplog truncate-after point at ``last_write_ts``
        and drops the sessions collection. Running it twice leaves the same
        state as running it once.

        Raises:
            AdminOperationError: If any command fails
        """
        logger.info(f"Fixing system data after restore (last write {last_write_ts})")
        try:
            await self._run(self._fix_system_data, last_write_ts)
        except PyMongoError as e:
            raise AdminOperationError(
                f"fix_system_data_after_restore failed: {e}",
                operation="fix_system_data_after_restore"
            ) from e
        logger.debug("System data fixed")

    async def shutdown(self, force: bool = False) -> None:
        """
        Ask the server to shut down gracefully and close the session.

        The server drops the connection while shutting down; that connection
        loss is treated as success.

        Raises:
            EngineShutdownError: If the server rejects the request
        """
        logger.info(f"Requesting shutdown of {self.uri}")
        try:
            await self._run(lambda: self._client.admin.command("shutdown", force=force))
        except ConnectionFailure as e:
            logger.debug(f"Connection closed by shutdown: {e}")
        except PyMongoError as e:
            raise EngineShutdownError(f"shutdown request failed: {e}") from e
        finally:
            self.close()

    def close(self) -> None:
        if not self._closed:
            self._client.close()
            self._closed = True

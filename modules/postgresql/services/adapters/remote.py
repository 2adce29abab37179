"""
Network transport for remote PostgreSQL servers.

Uses a single asyncpg connection to the maintenance database, opened lazily on
first use and closed with the client. TLS material stored in the catalog is
turned into an SSL context when the instance requires it.
"""

import asyncio
import logging
import os
import ssl
import tempfile
from typing import Optional, Union

import asyncpg

from ..errors import EngineError
from .base import BaseClient

logger = logging.getLogger("uvicorn.error")

MAINTENANCE_DATABASE = "postgres"


class RemoteClient(BaseClient):
    """Administrative client talking to a remote server over the network."""

    transport = "network"

    def __init__(self, info):
        super().__init__(info)
        self._conn: Optional[asyncpg.Connection] = None

    def _ssl_context(self) -> Union[ssl.SSLContext, bool]:
        """Build the SSL context from stored PEM material, False when TLS is off."""
        if not self.info.ssl:
            return False

        context = ssl.create_default_context(cadata=self.info.root_cert or None)
        if self.info.skip_verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE

        if self.info.client_cert and self.info.client_key:
            # load_cert_chain only accepts paths; the files live just long enough to load
            paths = []
            try:
                for pem in (self.info.client_cert, self.info.client_key):
                    fd, path = tempfile.mkstemp(suffix=".pem")
                    paths.append(path)
                    with os.fdopen(fd, "w") as handle:
                        handle.write(pem)
                context.load_cert_chain(paths[0], paths[1])
            finally:
                for path in paths:
                    os.unlink(path)
        return context

    async def _connection(self) -> asyncpg.Connection:
        if self._conn is None:
            try:
                logger.info(
                    f"Connecting to PostgreSQL at {self.info.address}:{self.info.port} as {self.info.username}"
                )
                self._conn = await asyncpg.connect(
                    host=self.info.address,
                    port=self.info.port,
                    user=self.info.username,
                    password=self.info.password,
                    database=MAINTENANCE_DATABASE,
                    ssl=self._ssl_context(),
                    timeout=self.info.timeout,
                )
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
                logger.error(f"PostgreSQL connection to {self.info.address}:{self.info.port} failed: {e}")
                raise EngineError(
                    f"Failed to connect to PostgreSQL at {self.info.address}:{self.info.port}: {e}"
                ) from e
        return self._conn

    async def _execute(self, statements: list[str]) -> None:
        conn = await self._connection()
        for statement in statements:
            try:
                await conn.execute(statement)
            except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
                raise EngineError(str(e)) from e

    async def _fetch_value(self, query: str) -> str:
        conn = await self._connection()
        try:
            value = await conn.fetchval(query)
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise EngineError(str(e)) from e
        return "" if value is None else str(value)

    async def _read_file(self, path: str) -> str:
        conn = await self._connection()
        try:
            return await conn.fetchval("SELECT pg_read_file($1)", path) or ""
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise EngineError(f"Failed to read {path}: {e}") from e

    async def _write_file(self, path: str, content: str) -> None:
        # Large objects allow writing exact bytes with bound parameters
        conn = await self._connection()
        try:
            oid = await conn.fetchval("SELECT lo_from_bytea(0, $1::bytea)", content.encode("utf-8"))
            try:
                await conn.execute("SELECT lo_export($1::oid, $2::text)", oid, path)
            finally:
                await conn.execute("SELECT lo_unlink($1::oid)", oid)
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise EngineError(f"Failed to write {path}: {e}") from e

    async def _release(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            await conn.close(timeout=10)
        except (asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            logger.warning(f"Closing PostgreSQL connection failed, terminating: {e}")
            conn.terminate()

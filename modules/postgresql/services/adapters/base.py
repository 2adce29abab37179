"""
Base Administrative Client: abstract interface for PostgreSQL administration.

Every transport (in-container ``psql`` or a direct network connection) must
subclass BaseClient and implement the transport primitives. The version
agnostic operations (create, delete, change password, change access, status)
are implemented once here on top of those primitives, with version specific
statements coming from the selected syntax family.

Data classes define the connection context and the administrative intents.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ... import DEFAULT_TIMEOUT, ORIGIN_LOCAL
from ..errors import EngineError, EngineTimeoutError, InvalidParamsError
from ..validation import ensure_legal, validate_format
from .hba import parse_permission, render_rules, replace_managed_block
from .syntax import LegacySyntax, get_syntax

logger = logging.getLogger("uvicorn.error")


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class DBInfo:
    """Connection context for one engine instance."""
    database: str  # engine instance name
    origin: str = ORIGIN_LOCAL
    address: str = ""  # container name for local engines
    port: int = 5432
    username: str = ""
    password: str = ""
    ssl: bool = False
    skip_verify: bool = False
    root_cert: str = ""
    client_cert: str = ""
    client_key: str = ""
    version: str = ""
    timeout: float = DEFAULT_TIMEOUT

    def __repr__(self) -> str:
        return f"DBInfo({self.origin}:{self.username}@{self.address}:{self.port}/{self.database})"


@dataclass
class CreateInfo:
    name: str
    username: str
    password: str
    format: str = ""
    version: str = ""
    timeout: float = DEFAULT_TIMEOUT


@dataclass
class DeleteInfo:
    name: str
    username: str = ""
    permission: str = ""
    version: str = ""
    force: bool = False  # tolerate objects that no longer exist
    timeout: float = DEFAULT_TIMEOUT


@dataclass
class PasswordChangeInfo:
    username: str
    password: str
    name: str = ""
    version: str = ""
    timeout: float = DEFAULT_TIMEOUT


@dataclass
class AccessChangeInfo:
    username: str
    permission: str
    name: str = ""  # empty targets every database of the role
    password: str = ""
    version: str = ""
    timeout: float = DEFAULT_TIMEOUT


@dataclass
class PostgresqlStatus:
    """Server status snapshot. All zero values when the server could not be read."""
    uptime: str = ""
    version: str = ""
    max_connections: int = 0
    autovacuum: str = ""
    current_connections: int = 0
    hit_ratio: float = 0.0
    shared_buffers: str = ""
    buffers_clean: int = 0
    maxwritten_clean: int = 0
    buffers_backend_fsync: int = 0


@dataclass
class DatabaseInfo:
    """Database present on the engine."""
    name: str
    owner: str = ""
    encoding: str = ""


# =============================================================================
# Abstract Base Client
# =============================================================================

class BaseClient(ABC):
    """
    Abstract administrative client for one engine instance.

    A client is created per operation, used, and closed. It can be used as an
    async context manager, which guarantees ``close()`` on every exit path.

    Attributes:
        transport: Machine-readable transport identifier.
        info: Connection context the client was built from.
    """

    transport: str = ""

    def __init__(self, info: DBInfo):
        self.info = info
        self._syntax: Optional[LegacySyntax] = None
        self._closed = False

    async def __aenter__(self) -> "BaseClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ---- Transport Primitives ------------------------------------------------

    @abstractmethod
    async def _execute(self, statements: list[str]) -> None:
        """Run statements one by one, each in its own implicit transaction."""
        ...

    @abstractmethod
    async def _fetch_value(self, query: str) -> str:
        """Run a query and return the first column of the first row as text."""
        ...

    @abstractmethod
    async def _read_file(self, path: str) -> str:
        """Read a file on the server side."""
        ...

    @abstractmethod
    async def _write_file(self, path: str, content: str) -> None:
        """Replace a file on the server side."""
        ...

    @abstractmethod
    async def _release(self) -> None:
        """Release the underlying session or connection."""
        ...

    # ---- Helpers -------------------------------------------------------------

    async def _get_syntax(self, version: str = "") -> LegacySyntax:
        """
        Select the syntax family once.

        The server is asked when no version is recorded or the recorded one
        cannot be parsed.
        """
        if self._syntax is None:
            version = version or self.info.version
            if version:
                try:
                    self._syntax = get_syntax(version)
                except InvalidParamsError:
                    logger.warning(
                        f"Recorded version '{version}' of {self.info.database} is not recognized, asking the server"
                    )
            if self._syntax is None:
                self._syntax = get_syntax(await self._fetch_value(LegacySyntax().server_version_query()))
            logger.debug(f"Using PostgreSQL syntax family {self._syntax.family} for {self.info.database}")
        return self._syntax

    async def _bounded(self, operation: str, coro, timeout: float, secrets: tuple = ()):
        """Run one administrative operation under its timeout budget."""
        if self._closed:
            coro.close()
            raise EngineError(f"Client for {self.info.database} is already closed")
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"PostgreSQL {operation} on {self.info.database} timed out after {timeout}s")
            raise EngineTimeoutError(operation, timeout) from None
        except EngineTimeoutError:
            raise
        except EngineError as e:
            message = str(e)
            hidden = [secret for secret in secrets if secret and secret in message]
            if not hidden:
                raise
            for secret in hidden:
                message = message.replace(secret, "******")
            raise EngineError(message) from None

    # ---- Administrative Operations -------------------------------------------

    async def create(self, info: CreateInfo) -> None:
        """
        Create a login role and a database owned by it.

        Raises:
            CommandIllegalError: If any input carries illegal characters.
            InvalidParamsError: If name/username is missing or the format is unknown.
            EngineError: If the engine rejects the statements.
        """
        ensure_legal(info.name, info.username, info.password, info.format)
        if not info.name or not info.username:
            raise InvalidParamsError("Database name and username are required")
        if not validate_format(info.format):
            raise InvalidParamsError(f"Invalid database format '{info.format}'")
        await self._bounded("create", self._create(info), info.timeout, secrets=(info.password,))

    async def _create(self, info: CreateInfo) -> None:
        syntax = await self._get_syntax(info.version)
        await self._execute(syntax.create_role(info.username, info.password))
        try:
            await self._execute(syntax.create_database(info.name, info.username, info.format))
        except EngineError:
            try:
                await self._execute(syntax.drop_role(info.username, if_exists=True))
            except EngineError as cleanup_error:
                logger.warning(f"Could not drop role '{info.username}' after failed create: {cleanup_error}")
            raise

    async def delete(self, info: DeleteInfo) -> None:
        """
        Drop a database and its owning role.

        Missing objects are only tolerated when ``info.force`` is set.
        """
        if not info.name:
            raise InvalidParamsError("Database name is required")
        await self._bounded("delete", self._delete(info), info.timeout)

    async def _delete(self, info: DeleteInfo) -> None:
        syntax = await self._get_syntax(info.version)
        await self._execute(syntax.drop_database(info.name, if_exists=info.force))
        if info.username:
            await self._execute(syntax.drop_role(info.username, if_exists=info.force))

    async def change_password(self, info: PasswordChangeInfo) -> None:
        """Set a new password (plain text) on a role."""
        ensure_legal(info.username, info.password)
        if not info.username:
            raise InvalidParamsError("Username is required")
        await self._bounded("change password", self._change_password(info), info.timeout, secrets=(info.password,))

    async def _change_password(self, info: PasswordChangeInfo) -> None:
        syntax = await self._get_syntax(info.version)
        await self._execute(syntax.alter_password(info.username, info.password))

    async def change_access(self, info: AccessChangeInfo) -> None:
        """
        Restrict the hosts a role may connect from.

        The permission is validated before anything is sent to the server.
        """
        ensure_legal(info.name, info.username, info.permission)
        if not info.username:
            raise InvalidParamsError("Username is required")
        parse_permission(info.permission)
        await self._bounded("change access", self._change_access(info), info.timeout)

    async def _change_access(self, info: AccessChangeInfo) -> None:
        syntax = await self._get_syntax(info.version)
        database = info.name or None
        rules = render_rules(database, info.username, info.permission, syntax.host_auth_method)

        hba_path = await self._fetch_value(syntax.hba_file_query())
        if not hba_path:
            raise EngineError("Server did not report its hba_file location")
        content = await self._read_file(hba_path)
        updated = replace_managed_block(content, database, info.username, rules)
        if updated.strip() == content.strip():
            return
        await self._write_file(hba_path, updated)
        await self._fetch_value(syntax.reload_query())

    async def status(self) -> PostgresqlStatus:
        """Report server status. Never raises; returns zero values on failure."""
        try:
            return await self._bounded("status", self._status(), self.info.timeout)
        except Exception as e:
            logger.warning(f"Failed to load PostgreSQL status for {self.info.database}: {e}")
            return PostgresqlStatus()

    async def _status(self) -> PostgresqlStatus:
        syntax = await self._get_syntax()
        return self.parse_status_output(await self._fetch_value(syntax.status_query()))

    async def list_databases(self) -> list[DatabaseInfo]:
        """List the databases present on the engine."""
        return await self._bounded("list databases", self._list_databases(), self.info.timeout)

    async def _list_databases(self) -> list[DatabaseInfo]:
        syntax = await self._get_syntax()
        return self.parse_list_output(await self._fetch_value(syntax.list_databases_query()))

    async def close(self) -> None:
        """Release the underlying session. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._release()

    # ---- Output Parsing ------------------------------------------------------

    @staticmethod
    def parse_status_output(stdout: str) -> PostgresqlStatus:
        """Parse the JSON status report."""
        try:
            data = json.loads(stdout.strip())
            return PostgresqlStatus(
                uptime=str(data.get("uptime") or ""),
                version=str(data.get("version") or ""),
                max_connections=int(data.get("max_connections") or 0),
                autovacuum=str(data.get("autovacuum") or ""),
                current_connections=int(data.get("current_connections") or 0),
                hit_ratio=float(data.get("hit_ratio") or 0.0),
                shared_buffers=str(data.get("shared_buffers") or ""),
                buffers_clean=int(data.get("buffers_clean") or 0),
                maxwritten_clean=int(data.get("maxwritten_clean") or 0),
                buffers_backend_fsync=int(data.get("buffers_backend_fsync") or 0),
            )
        except (json.JSONDecodeError, ValueError, TypeError, AttributeError):
            return PostgresqlStatus()

    @staticmethod
    def parse_list_output(stdout: str) -> list[DatabaseInfo]:
        """Parse the JSON database listing."""
        try:
            items = json.loads(stdout.strip() or "[]") or []
        except json.JSONDecodeError as e:
            raise EngineError(f"Unexpected database listing output: {stdout[:200]}") from e
        return [
            DatabaseInfo(
                name=item["name"],
                owner=item.get("owner") or "",
                encoding=item.get("encoding") or "",
            )
            for item in items
        ]

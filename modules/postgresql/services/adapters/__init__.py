"""
Client Registry: maps an engine origin to its administrative client variant.

Usage:
    from .adapters import new_client
    client = new_client(DBInfo(database="pg-main", origin="local", ...))
"""

from ... import ORIGIN_LOCAL
from .base import (
    BaseClient,
    DBInfo,
    CreateInfo,
    DeleteInfo,
    PasswordChangeInfo,
    AccessChangeInfo,
    PostgresqlStatus,
    DatabaseInfo,
)
from .syntax import get_syntax, parse_major_version, quote_ident, quote_literal
from .local import LocalClient
from .remote import RemoteClient

# =============================================================================
# Client Registry
# =============================================================================

_CLIENTS: dict[str, type[BaseClient]] = {
    LocalClient.transport: LocalClient,
    RemoteClient.transport: RemoteClient,
}


def get_client_class(origin: str) -> type[BaseClient]:
    """Local engines are administered inside their container, everything else over the network."""
    if origin == ORIGIN_LOCAL:
        return _CLIENTS[LocalClient.transport]
    return _CLIENTS[RemoteClient.transport]


def new_client(info: DBInfo) -> BaseClient:
    """Build the client variant for a connection context. No connection is opened yet."""
    return get_client_class(info.origin)(info)


__all__ = [
    "BaseClient",
    "DBInfo",
    "CreateInfo",
    "DeleteInfo",
    "PasswordChangeInfo",
    "AccessChangeInfo",
    "PostgresqlStatus",
    "DatabaseInfo",
    "LocalClient",
    "RemoteClient",
    "get_syntax",
    "parse_major_version",
    "quote_ident",
    "quote_literal",
    "get_client_class",
    "new_client",
]

"""
PostgreSQL Module Services

Service layer for PostgreSQL administration: client resolution, version aware
administrative clients, catalog synchronization and credential propagation.
"""

from .adapters import new_client, get_syntax
from .container_orchestrator import ContainerOrchestrator
from .credential_propagator import CredentialPropagator
from .encryption import SecretBox, get_secret_box
from .postgresql_service import PostgresqlService
from .resolver import load_db_info, resolve_client

__all__ = [
    "new_client",
    "get_syntax",
    "ContainerOrchestrator",
    "CredentialPropagator",
    "SecretBox",
    "get_secret_box",
    "PostgresqlService",
    "load_db_info",
    "resolve_client",
]

"""
Backend resolution for PostgreSQL engine instances.

Maps an engine instance name to the administrative client able to reach it.
Credentials are read from the catalog on every call; nothing is cached.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from .. import DEFAULT_TIMEOUT, ORIGIN_LOCAL
from .adapters import BaseClient, DBInfo, new_client
from .encryption import SecretBox
from .errors import RecordNotFoundError
from .repositories import AppInstallRepo, InstanceRepo

logger = logging.getLogger("uvicorn.error")


async def load_db_info(db: AsyncSession, database: str, secret_box: SecretBox) -> DBInfo:
    """
    Assemble the connection context of an engine instance.

    Remote instances are reached with the address and credentials recorded on
    the instance; local ones through the container of their app install, with
    the version left empty so the client asks the server.

    Raises:
        RecordNotFoundError: If the instance or its app install is missing.
    """
    instance = await InstanceRepo.get(db, name=database)
    if not instance:
        raise RecordNotFoundError(f"Database instance '{database}' not found")

    info = DBInfo(database=database, origin=instance["origin"], timeout=DEFAULT_TIMEOUT)

    if instance["origin"] != ORIGIN_LOCAL:
        info.address = instance["address"]
        info.port = int(instance["port"])
        info.username = instance["username"]
        info.password = secret_box.decrypt(instance["password"])
        info.ssl = bool(instance["ssl"])
        info.skip_verify = bool(instance["skip_verify"])
        info.root_cert = instance["root_cert"] or ""
        info.client_cert = instance["client_cert"] or ""
        info.client_key = instance["client_key"] or ""
        info.version = instance["version"] or ""
    else:
        app = await AppInstallRepo.load_base_info(db, instance["type"], database)
        info.address = app["container_name"]
        info.port = int(app["port"])
        info.username = app["username"]
        info.password = secret_box.decrypt(app["password"])

    return info


async def resolve_client(db: AsyncSession, database: str, secret_box: SecretBox) -> tuple[BaseClient, str]:
    """
    Build the administrative client for an engine instance.

    The caller owns the returned client and must close it.

    Returns:
        (client, version); version is empty for local instances.
    """
    info = await load_db_info(db, database, secret_box)
    client = new_client(info)
    logger.debug(f"Resolved {info!r} to {client.transport} client")
    return client, info.version

"""
PostgreSQL Service for the PostgreSQL Module

Operation surface consumed by the host HTTP layer. Each mutating operation
resolves an administrative client for the engine instance, runs the intent
on the engine, and only then brings the catalog in line with the engine.

The catalog session, the secret box and the client resolver are injected so
that nothing here reaches for process-wide state.
"""

import logging
import shutil
from pathlib import Path
from typing import Awaitable, Callable

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import DEFAULT_PERMISSION, ORIGIN_LOCAL
from ..hooks import get_apps_dir, get_backups_dir, get_uploads_dir
from ..schemas import (
    ChangeDBInfo,
    DBBaseInfo,
    DeleteResult,
    OperationWithNameAndType,
    PostgresqlConfUpdateByFile,
    PostgresqlDBCreate,
    PostgresqlDBDelete,
    PostgresqlDBDeleteCheck,
    PostgresqlDBInfo,
    PostgresqlDBSearch,
    PostgresqlOption,
    UpdateDescription,
)
from .adapters import (
    AccessChangeInfo,
    BaseClient,
    CreateInfo,
    DeleteInfo,
    PasswordChangeInfo,
    PostgresqlStatus,
)
from .container_orchestrator import ContainerOrchestrator
from .credential_propagator import ROOT_PASSWORD_FIELD, USER_PASSWORD_FIELD, CredentialPropagator
from .encryption import SecretBox
from .errors import (
    EngineError,
    InvalidParamsError,
    PartialFailureError,
    PostgresqlError,
    RecordExistError,
    RecordNotFoundError,
    SecretError,
    StructTransformError,
)
from .repositories import AppInstallRepo, BackupRepo, InstanceRepo, PostgresqlRepo
from .resolver import resolve_client
from .validation import ensure_legal

logger = logging.getLogger("uvicorn.error")

Resolver = Callable[[AsyncSession, str, SecretBox], Awaitable[tuple[BaseClient, str]]]

CONF_FILE_TYPE = "postgresql-conf"

# Databases every server carries; never imported into the catalog
SYSTEM_DATABASES = frozenset({"postgres", "template0", "template1"})


def _safe_path(base: Path, *parts: str) -> Path:
    """Join request-supplied names below base, refusing anything that escapes it."""
    for part in parts:
        if not part or part in (".", "..") or "/" in part or "\\" in part:
            raise InvalidParamsError(f"Invalid path component '{part}'")
    return base.joinpath(*parts)


def _to_info(row: dict) -> PostgresqlDBInfo:
    try:
        return PostgresqlDBInfo.model_validate(row)
    except ValidationError as e:
        raise StructTransformError(f"Cannot map database record {row.get('id')}: {e}") from e


class PostgresqlService:
    """Database administration for one catalog session."""

    def __init__(self, db: AsyncSession, secret_box: SecretBox, resolver: Resolver = resolve_client):
        self.db = db
        self.secret_box = secret_box
        self.resolver = resolver
        self.propagator = CredentialPropagator(db, secret_box)

    # =========================================================================
    # Catalog Queries
    # =========================================================================

    async def search_with_page(self, search: PostgresqlDBSearch) -> tuple[int, list[PostgresqlDBInfo]]:
        total, rows = await PostgresqlRepo.page(
            self.db,
            search.page,
            search.page_size,
            postgresql_name=search.database,
            info=search.info,
            order_by=search.order_by,
            order=search.order,
        )
        return total, [_to_info(row) for row in rows]

    async def list_db_option(self) -> list[PostgresqlOption]:
        """Every logical database with the type of the engine it lives on."""
        engine_types = {instance["name"]: instance["type"] for instance in await InstanceRepo.find(self.db)}
        options = []
        for row in await PostgresqlRepo.find(self.db):
            try:
                options.append(PostgresqlOption(
                    id=row["id"],
                    origin=row["origin"],
                    type=engine_types.get(row["postgresql_name"], ""),
                    database=row["postgresql_name"],
                    name=row["name"],
                ))
            except ValidationError as e:
                raise StructTransformError(f"Cannot map database record {row['id']}: {e}") from e
        return options

    async def _get_record(self, record_id: int) -> dict:
        row = await PostgresqlRepo.get(self.db, id=record_id)
        if not row:
            raise RecordNotFoundError(f"Database record {record_id} not found")
        return row

    # =========================================================================
    # Create / Import
    # =========================================================================

    async def create(self, req: PostgresqlDBCreate) -> PostgresqlDBInfo:
        """
        Create a database and its owning role, then record it in the catalog.

        Raises:
            CommandIllegalError: Illegal characters in the request.
            RecordExistError: The engine already has this database in the catalog.
            InvalidParamsError: The username is the engine's administrative role.
            EngineError: The engine rejected the statements.
        """
        ensure_legal(req.name, req.username, req.password, req.format)

        existing = await PostgresqlRepo.get(
            self.db, name=req.name, postgresql_name=req.database, origin=req.origin
        )
        if existing:
            raise RecordExistError()

        client, version = await self.resolver(self.db, req.database, self.secret_box)
        async with client:
            if req.origin == ORIGIN_LOCAL and req.username == client.info.username:
                raise InvalidParamsError(f"Cannot use the administrative role '{req.username}' as database user")
            await client.create(CreateInfo(
                name=req.name,
                username=req.username,
                password=req.password,
                format=req.format,
                version=version,
                timeout=client.info.timeout,
            ))
        logger.info(f"Created database {req.name} on {req.database}")

        try:
            record_id = await PostgresqlRepo.create(self.db, {
                "name": req.name,
                "postgresql_name": req.database,
                "origin": req.origin,
                "format": req.format,
                "username": req.username,
                "password": self.secret_box.encrypt(req.password),
                "permission": DEFAULT_PERMISSION,
                "description": req.description,
            })
            await self.db.commit()
        except (SQLAlchemyError, SecretError) as e:
            await self.db.rollback()
            raise PartialFailureError(
                f"Database {req.name} was created on {req.database} but could not be recorded: {e}"
            ) from e

        return _to_info(await self._get_record(record_id))

    async def load_from_remote(self, database: str) -> int:
        """
        Record the databases present on an engine that the catalog does not know yet.

        Returns:
            Number of catalog rows added.
        """
        instance = await InstanceRepo.get(self.db, name=database)
        if not instance:
            raise RecordNotFoundError(f"Database instance '{database}' not found")

        client, _ = await self.resolver(self.db, database, self.secret_box)
        async with client:
            found = await client.list_databases()
            admin = client.info.username

        known = {row["name"] for row in await PostgresqlRepo.find(self.db, postgresql_name=database)}
        added = 0
        try:
            for item in found:
                if item.name in SYSTEM_DATABASES or item.name in known:
                    continue
                owner = item.owner
                if owner == admin:
                    # Admin-owned databases are recorded without a role of their own
                    logger.info(f"Importing {item.name} from {database} without owner role")
                    owner = ""
                await PostgresqlRepo.create(self.db, {
                    "name": item.name,
                    "postgresql_name": database,
                    "origin": instance["origin"],
                    "format": item.encoding,
                    "username": owner,
                    "password": "",
                    "permission": DEFAULT_PERMISSION,
                    "description": "",
                })
                added += 1
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        logger.info(f"Loaded {added} database(s) from {database}")
        return added

    async def update_description(self, req: UpdateDescription) -> None:
        updated = await PostgresqlRepo.update(self.db, req.id, {"description": req.description})
        if not updated:
            await self.db.rollback()
            raise RecordNotFoundError(f"Database record {req.id} not found")
        await self.db.commit()

    # =========================================================================
    # Delete
    # =========================================================================

    async def delete_check(self, req: PostgresqlDBDeleteCheck) -> list[str]:
        """Names of the app installs still using a database."""
        row = await self._get_record(req.id)
        installs = await self.propagator.find_linked_installs(row["id"], row["origin"], req.type, req.database)
        return [install["name"] for install in installs]

    async def delete(self, req: PostgresqlDBDelete) -> DeleteResult:
        """
        Drop a database on the engine and remove it from the catalog.

        With ``force_delete`` the catalog row is removed even when the engine
        side fails. With ``delete_backup`` uploads, local backups and their
        records are removed best-effort; failures end up in the warnings.
        """
        result = DeleteResult()

        row = await PostgresqlRepo.get(self.db, id=req.id)
        if not row:
            if not req.force_delete:
                raise RecordNotFoundError(f"Database record {req.id} not found")
            result.warnings.append(f"Database record {req.id} was already removed")
            return result

        backup_dirs = self._backup_dirs(req, row) if req.delete_backup else []

        try:
            client, version = await self.resolver(self.db, req.database, self.secret_box)
            async with client:
                await client.delete(DeleteInfo(
                    name=row["name"],
                    username=await self._owned_role(row, client.info.username),
                    version=version,
                    force=req.force_delete,
                    timeout=client.info.timeout,
                ))
        except PostgresqlError as e:
            if not req.force_delete:
                raise
            logger.warning(f"Engine delete of {row['name']} on {req.database} failed, forcing removal: {e}")
            result.warnings.append(f"Engine delete failed: {e}")

        if req.delete_backup:
            result.warnings.extend(await self._delete_backups(req, row, backup_dirs))

        try:
            await PostgresqlRepo.delete(self.db, id=row["id"])
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        logger.info(f"Deleted database {row['name']} from {req.database}")
        return result

    async def _owned_role(self, row: dict, admin: str) -> str:
        """Role to drop with a database; empty when the role is not owned by it alone."""
        username = row["username"]
        if not username or username == admin:
            return ""
        siblings = await PostgresqlRepo.find(self.db, postgresql_name=row["postgresql_name"])
        if any(other["id"] != row["id"] and other["username"] == username for other in siblings):
            logger.info(f"Keeping role {username} on {row['postgresql_name']}, other databases still use it")
            return ""
        return username

    @staticmethod
    def _backup_dirs(req: PostgresqlDBDelete, row: dict) -> list[Path]:
        """Upload and scheduled backup directories of a database."""
        return [
            _safe_path(get_uploads_dir(), "database", req.type, req.database, row["name"]),
            _safe_path(get_backups_dir(), "database", req.type, row["postgresql_name"], row["name"]),
        ]

    async def _delete_backups(self, req: PostgresqlDBDelete, row: dict, directories: list[Path]) -> list[str]:
        warnings = []
        for directory in directories:
            if not directory.exists():
                continue
            try:
                shutil.rmtree(directory)
            except OSError as e:
                logger.warning(f"Could not remove {directory}: {e}")
                warnings.append(f"Could not remove {directory}: {e}")

        try:
            async with self.db.begin_nested():
                await BackupRepo.delete_records(self.db, req.type, req.database, row["name"])
        except SQLAlchemyError as e:
            logger.warning(f"Could not delete backup records of {req.database}-{row['name']}: {e}")
            warnings.append(f"Could not delete backup records: {e}")

        logger.info(f"Deleted backups of {req.database}-{row['name']}")
        return warnings

    # =========================================================================
    # Credentials and Access
    # =========================================================================

    async def change_password(self, req: ChangeDBInfo) -> None:
        """
        Rotate the password of a database user, or of the engine admin when ``id`` is 0.

        Raises:
            PartialFailureError: The engine accepted the new password but a
                linked app or the catalog still holds the old one.
        """
        ensure_legal(req.value)
        row = await self._get_record(req.id) if req.id else None

        client, version = await self.resolver(self.db, req.database, self.secret_box)
        async with client:
            username = row["username"] if row else client.info.username
            if row and (not username or username == client.info.username):
                raise InvalidParamsError(
                    f"Database {row['name']} has no role of its own, change the admin password instead"
                )
            await client.change_password(PasswordChangeInfo(
                username=username,
                password=req.value,
                name=row["name"] if row else "",
                version=version,
                timeout=client.info.timeout,
            ))
        logger.info(f"Changed password of {username} on {req.database}")

        if row:
            await self._propagate_user_password(req, row)
        else:
            await self._store_admin_password(req)

    async def _propagate_user_password(self, req: ChangeDBInfo, row: dict) -> None:
        try:
            installs = await self.propagator.find_linked_installs(row["id"], row["origin"], req.type, req.database)
        except PostgresqlError as e:
            raise PartialFailureError(f"Password changed but linked apps could not be listed: {e}") from e

        applied = await self.propagator.propagate(installs, USER_PASSWORD_FIELD, req.value)

        try:
            await PostgresqlRepo.update(self.db, row["id"], {"password": self.secret_box.encrypt(req.value)})
            await self.db.commit()
        except (SQLAlchemyError, SecretError) as e:
            await self.db.rollback()
            raise PartialFailureError(
                f"Password changed but the catalog still holds the old one: {e}",
                applied=applied,
            ) from e

    async def _store_admin_password(self, req: ChangeDBInfo) -> None:
        instance = await InstanceRepo.get(self.db, name=req.database)
        if instance is None or instance["origin"] == ORIGIN_LOCAL:
            try:
                app = await AppInstallRepo.load_base_info(self.db, req.type, req.database)
            except RecordNotFoundError as e:
                raise PartialFailureError(f"Password changed but the engine app could not be found: {e}") from e
            await self.propagator.propagate([app], ROOT_PASSWORD_FIELD, req.value)
            return

        try:
            await InstanceRepo.update(self.db, instance["id"], {"password": self.secret_box.encrypt(req.value)})
            await self.db.commit()
        except (SQLAlchemyError, SecretError) as e:
            await self.db.rollback()
            raise PartialFailureError(
                f"Password changed but instance {req.database} still holds the old one: {e}"
            ) from e

    async def change_access(self, req: ChangeDBInfo) -> None:
        """
        Change the hosts a database user may connect from.

        With ``id`` 0 the rule applies to the engine's administrative role
        across all databases and nothing is recorded in the catalog.
        """
        ensure_legal(req.value)
        row = await self._get_record(req.id) if req.id else None

        client, version = await self.resolver(self.db, req.database, self.secret_box)
        async with client:
            if row:
                username = row["username"]
            else:
                username = client.info.username
                logger.warning(f"Changing engine-wide access of admin role {username} on {req.database} to {req.value}")
            await client.change_access(AccessChangeInfo(
                username=username,
                permission=req.value,
                name=row["name"] if row else "",
                version=version,
                timeout=client.info.timeout,
            ))

        if not row:
            return
        try:
            await PostgresqlRepo.update(self.db, row["id"], {"permission": req.value})
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PartialFailureError(f"Access changed but the catalog still holds the old permission: {e}") from e
        logger.info(f"Changed access of {username} on {req.database} to {req.value}")

    # =========================================================================
    # Engine Configuration and Status
    # =========================================================================

    async def update_conf_by_file(self, req: PostgresqlConfUpdateByFile) -> None:
        """Replace postgresql.conf of a local engine and restart its compose project."""
        app = await AppInstallRepo.load_base_info(self.db, req.type, req.database)
        app_dir = _safe_path(get_apps_dir(), req.type, app["name"])
        conf_path = app_dir / "data" / "postgresql.conf"
        if not conf_path.is_file():
            raise RecordNotFoundError(f"Configuration file {conf_path} not found")

        conf_path.write_text(req.file)
        logger.info(f"Updated {conf_path}")

        success, output = await ContainerOrchestrator.restart_compose(str(app_dir / "docker-compose.yml"))
        if not success:
            raise EngineError(f"Failed to restart {app['name']}: {output}")

    async def load_base_info(self, req: OperationWithNameAndType) -> DBBaseInfo:
        app = await AppInstallRepo.load_base_info(self.db, req.type, req.name)
        return DBBaseInfo(name=app["name"], container_name=app["container_name"], port=app["port"])

    async def load_status(self, req: OperationWithNameAndType) -> PostgresqlStatus:
        """Server status; zero values when the server cannot be read."""
        app = await AppInstallRepo.load_base_info(self.db, req.type, req.name)
        client, _ = await self.resolver(self.db, app["name"], self.secret_box)
        async with client:
            return await client.status()

    async def load_database_file(self, req: OperationWithNameAndType) -> str:
        if req.type != CONF_FILE_TYPE:
            raise InvalidParamsError(f"Unsupported file type '{req.type}'")
        conf_path = _safe_path(get_apps_dir(), "postgresql", req.name) / "data" / "postgresql.conf"
        if not conf_path.is_file():
            raise RecordNotFoundError(f"Configuration file {conf_path} not found")
        return conf_path.read_text()

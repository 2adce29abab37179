"""
Catalog repositories for the PostgreSQL module.

Thin static wrappers around ``text()`` statements on the module tables. Every
method receives the caller's AsyncSession; none of them commit, so the
calling service owns the transaction boundary.

Filters are passed as keyword arguments and combined with AND; only columns
listed for a table are accepted as filter, update or order keys.
"""

import json
import logging
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .. import (
    INSTANCES_TABLE,
    DATABASES_TABLE,
    APP_INSTALLS_TABLE,
    APP_INSTALL_RESOURCES_TABLE,
    BACKUP_RECORDS_TABLE,
)
from .errors import InvalidParamsError, RecordNotFoundError

logger = logging.getLogger("uvicorn.error")


def _check_columns(table: str, columns, allowed: frozenset) -> None:
    unknown = set(columns) - allowed
    if unknown:
        raise InvalidParamsError(f"Unknown column(s) for {table}: {', '.join(sorted(unknown))}")


def _where(table: str, filters: dict, allowed: frozenset) -> tuple[str, dict]:
    """Build an AND-ed WHERE clause from equality filters."""
    filters = {key: value for key, value in filters.items() if value is not None}
    if not filters:
        return "", {}
    _check_columns(table, filters, allowed)
    clause = " AND ".join(f"{column} = :w_{column}" for column in filters)
    params = {f"w_{column}": value for column, value in filters.items()}
    return f" WHERE {clause}", params


class _TableRepo:
    """Shared get/list/create/update/delete for one table."""

    table: str = ""
    columns: frozenset = frozenset()
    has_updated_at: bool = True

    @classmethod
    async def get(cls, db: AsyncSession, **filters) -> Optional[dict]:
        where, params = _where(cls.table, filters, cls.columns)
        result = await db.execute(
            text(f'SELECT * FROM "{cls.table}"{where} ORDER BY id LIMIT 1'),
            params
        )
        row = result.mappings().first()
        return dict(row) if row else None

    @classmethod
    async def find(cls, db: AsyncSession, **filters) -> list[dict]:
        where, params = _where(cls.table, filters, cls.columns)
        result = await db.execute(
            text(f'SELECT * FROM "{cls.table}"{where} ORDER BY id'),
            params
        )
        return [dict(row) for row in result.mappings().all()]

    @classmethod
    async def create(cls, db: AsyncSession, fields: dict[str, Any]) -> int:
        _check_columns(cls.table, fields, cls.columns - {"id"})
        columns = ", ".join(fields)
        values = ", ".join(f":{column}" for column in fields)
        result = await db.execute(
            text(f'INSERT INTO "{cls.table}" ({columns}) VALUES ({values}) RETURNING id'),
            fields
        )
        return result.scalar_one()

    @classmethod
    async def update(cls, db: AsyncSession, record_id: int, fields: dict[str, Any]) -> int:
        """Update columns of one row; returns the number of rows touched."""
        _check_columns(cls.table, fields, cls.columns - {"id"})
        assignments = [f"{column} = :{column}" for column in fields]
        if cls.has_updated_at:
            assignments.append("updated_at = CURRENT_TIMESTAMP")
        result = await db.execute(
            text(f'UPDATE "{cls.table}" SET {", ".join(assignments)} WHERE id = :id'),
            {**fields, "id": record_id}
        )
        return result.rowcount

    @classmethod
    async def delete(cls, db: AsyncSession, **filters) -> int:
        where, params = _where(cls.table, filters, cls.columns)
        if not where:
            raise InvalidParamsError(f"Refusing to delete every row of {cls.table}")
        result = await db.execute(text(f'DELETE FROM "{cls.table}"{where}'), params)
        return result.rowcount


class InstanceRepo(_TableRepo):
    """Engine instances (container-hosted or remote servers)."""

    table = INSTANCES_TABLE
    columns = frozenset({
        "id", "name", "type", "origin", "version", "address", "port", "username", "password",
        "ssl", "skip_verify", "root_cert", "client_cert", "client_key", "description",
    })


class PostgresqlRepo(_TableRepo):
    """Logical databases tracked in the catalog."""

    table = DATABASES_TABLE
    columns = frozenset({
        "id", "name", "postgresql_name", "origin", "format", "username", "password",
        "permission", "description",
    })
    order_columns = frozenset({"id", "name", "username", "created_at", "updated_at"})

    @classmethod
    async def page(
        cls,
        db: AsyncSession,
        page: int,
        page_size: int,
        postgresql_name: Optional[str] = None,
        info: Optional[str] = None,
        order_by: Optional[str] = None,
        order: Optional[str] = None,
    ) -> tuple[int, list[dict]]:
        """
        Paginated search.

        Args:
            page: 1-based page number
            page_size: Rows per page
            postgresql_name: Only databases of this engine instance
            info: Substring matched against the database name
            order_by: Sort column (defaults to created_at)
            order: "ascending"/"asc" or descending (default)

        Returns:
            (total, rows)
        """
        where, params = _where(cls.table, {"postgresql_name": postgresql_name or None}, cls.columns)
        if info:
            where += (" AND " if where else " WHERE ") + "name LIKE :info"
            params["info"] = f"%{info}%"

        column = order_by if order_by in cls.order_columns else "created_at"
        direction = "ASC" if (order or "").lower() in ("asc", "ascending") else "DESC"

        result = await db.execute(text(f'SELECT count(*) FROM "{cls.table}"{where}'), params)
        total = result.scalar_one()

        result = await db.execute(
            text(
                f'SELECT * FROM "{cls.table}"{where} '
                f'ORDER BY {column} {direction}, id {direction} LIMIT :limit OFFSET :offset'
            ),
            {**params, "limit": page_size, "offset": max(page - 1, 0) * page_size}
        )
        return total, [dict(row) for row in result.mappings().all()]


class AppInstallRepo(_TableRepo):
    """Installed apps: engine containers and the apps consuming their databases."""

    table = APP_INSTALLS_TABLE
    columns = frozenset({"id", "app_key", "name", "container_name", "port", "username", "password", "env"})

    @classmethod
    async def load_base_info(cls, db: AsyncSession, key: str, name: str = "") -> dict:
        """
        Resolve the app install of an engine by app key and (optional) name.

        Raises:
            RecordNotFoundError: If no such app is installed.
        """
        app = await cls.get(db, app_key=key, name=name or None)
        if not app:
            raise RecordNotFoundError(f"App '{key}' named '{name}' is not installed")
        return app

    @classmethod
    async def update_env(cls, db: AsyncSession, install_id: int, values: dict[str, str]) -> None:
        """Merge values into the JSON env of an app install."""
        app = await cls.get(db, id=install_id)
        if not app:
            raise RecordNotFoundError(f"App install {install_id} not found")
        try:
            env = json.loads(app["env"] or "{}")
        except json.JSONDecodeError:
            logger.warning(f"App install {install_id} has malformed env, rewriting it")
            env = {}
        env.update(values)
        await cls.update(db, install_id, {"env": json.dumps(env)})


class AppInstallResourceRepo(_TableRepo):
    """Links from app installs to the databases they use."""

    table = APP_INSTALL_RESOURCES_TABLE
    columns = frozenset({"id", "app_install_id", "link_id", "resource_id", "key", "origin"})
    has_updated_at = False

    @classmethod
    async def get_by(cls, db: AsyncSession, resource_id: int, link_id: Optional[int] = None) -> list[dict]:
        """Links to a resource, in insertion order."""
        return await cls.find(db, resource_id=resource_id, link_id=link_id)


class BackupRepo(_TableRepo):
    """Backup records (upload and scheduled backups)."""

    table = BACKUP_RECORDS_TABLE
    columns = frozenset({"id", "type", "name", "detail_name", "file_dir", "file_name"})
    has_updated_at = False

    @classmethod
    async def delete_records(cls, db: AsyncSession, backup_type: str, name: str, detail_name: str) -> int:
        return await cls.delete(db, type=backup_type, name=name, detail_name=detail_name)

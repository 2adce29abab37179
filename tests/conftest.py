"""
Pytest configuration and shared fixtures.

Provides an in-memory SQLite catalog, a secret box, catalog seeding helpers
and an in-memory PostgreSQL server reached through a real BaseClient subclass.
"""

import asyncio
import json
import logging

import pytest
import pytest_asyncio
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from modules.postgresql import (
    APP_INSTALLS_TABLE,
    APP_INSTALL_RESOURCES_TABLE,
    BACKUP_RECORDS_TABLE,
    INSTANCES_TABLE,
)
from modules.postgresql.schema import create_tables
from modules.postgresql.services.adapters import BaseClient, DBInfo
from modules.postgresql.services.encryption import SecretBox
from modules.postgresql.services.errors import EngineError
from modules.postgresql.services.postgresql_service import PostgresqlService
from modules.postgresql.services.resolver import load_db_info

HBA_PATH = "/var/lib/postgresql/data/pg_hba.conf"
DEFAULT_HBA = "local all all trust\nhost all all all scram-sha-256\n"


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(autouse=True)
def configure_test_logging(caplog):
    """Capture module logs at DEBUG for every test."""
    caplog.set_level(logging.DEBUG)
    yield


# ============================================================================
# Catalog
# ============================================================================


@pytest_asyncio.fixture
async def engine():
    """Async in-memory SQLite catalog with every module table."""
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Let SQLAlchemy own BEGIN so SAVEPOINTs nest properly
    @event.listens_for(eng.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with eng.begin() as conn:
        await create_tables(conn)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session(engine):
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as sess:
        yield sess


@pytest.fixture
def secret_box():
    return SecretBox(SecretBox.generate_key())


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Point the module data directory at a per-test temp dir."""
    monkeypatch.setenv("FLUX_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("FLUX_POSTGRESQL_BACKUP_DIR", raising=False)
    monkeypatch.setenv("FLUX_CONTAINER_RUNTIME", "podman")
    return tmp_path / "modules" / "postgresql"


# ============================================================================
# Seeding Helpers
# ============================================================================


async def insert_row(session: AsyncSession, table: str, fields: dict) -> int:
    columns = ", ".join(fields)
    values = ", ".join(f":{column}" for column in fields)
    result = await session.execute(
        text(f'INSERT INTO "{table}" ({columns}) VALUES ({values}) RETURNING id'),
        fields
    )
    record_id = result.scalar_one()
    await session.commit()
    return record_id


@pytest.fixture
def seed(session, secret_box):
    """Factories for catalog rows; passwords are stored encrypted."""

    class Seeder:
        async def local_engine(self, name="pgA", container="c1", version="15", admin="postgres", password="rootpw"):
            instance_id = await insert_row(session, INSTANCES_TABLE, {
                "name": name,
                "type": "postgresql",
                "origin": "local",
                "version": version,
                "address": container,
                "port": 5432,
                "username": admin,
                "password": secret_box.encrypt(password),
            })
            app_id = await insert_row(session, APP_INSTALLS_TABLE, {
                "app_key": "postgresql",
                "name": name,
                "container_name": container,
                "port": 5432,
                "username": admin,
                "password": secret_box.encrypt(password),
                "env": json.dumps({"PANEL_DB_ROOT_PASSWORD": secret_box.encrypt(password)}),
            })
            return {"instance_id": instance_id, "app_id": app_id}

        async def remote_engine(self, name="pgR", address="10.0.0.5", version="16.2", admin="admin", password="adminpw"):
            return await insert_row(session, INSTANCES_TABLE, {
                "name": name,
                "type": "postgresql",
                "origin": "remote",
                "version": version,
                "address": address,
                "port": 5433,
                "username": admin,
                "password": secret_box.encrypt(password),
            })

        async def app(self, name, app_key="wordpress"):
            return await insert_row(session, APP_INSTALLS_TABLE, {
                "app_key": app_key,
                "name": name,
                "container_name": f"{name}-1",
                "port": 8080,
                "env": json.dumps({"PANEL_DB_USER_PASSWORD": secret_box.encrypt("old")}),
            })

        async def link(self, app_install_id, resource_id, link_id=0, origin="local"):
            return await insert_row(session, APP_INSTALL_RESOURCES_TABLE, {
                "app_install_id": app_install_id,
                "link_id": link_id,
                "resource_id": resource_id,
                "key": "postgresql",
                "origin": origin,
            })

        async def backup(self, name, detail_name, backup_type="postgresql"):
            return await insert_row(session, BACKUP_RECORDS_TABLE, {
                "type": backup_type,
                "name": name,
                "detail_name": detail_name,
                "file_dir": f"database/{backup_type}/{name}/{detail_name}",
                "file_name": f"{detail_name}.sql.gz",
            })

    return Seeder()


# ============================================================================
# In-Memory PostgreSQL Server
# ============================================================================


class FakeServer:
    """State of one PostgreSQL server shared by every client connected to it."""

    def __init__(self, version: str = "150004"):
        self.version = version
        self.statements: list[str] = []
        self.files = {HBA_PATH: DEFAULT_HBA}
        self.reloads = 0
        self.fail_on = None
        self.hang = False
        self.timeout = 5.0
        self.clients: list["FakeClient"] = []
        self.status = {
            "uptime": "1 day 02:03:04",
            "version": "15.4",
            "max_connections": 100,
            "autovacuum": "on",
            "current_connections": 3,
            "hit_ratio": 99.5,
            "shared_buffers": "128MB",
            "buffers_clean": 10,
            "maxwritten_clean": 1,
            "buffers_backend_fsync": 0,
        }
        self.databases = [
            {"name": "shop", "owner": "shop_user", "encoding": "UTF8"},
            {"name": "postgres", "owner": "postgres", "encoding": "UTF8"},
        ]

    @property
    def hba(self) -> str:
        return self.files[HBA_PATH]


class FakeClient(BaseClient):
    """Administrative client answering from a FakeServer."""

    transport = "memory"

    def __init__(self, info, server: FakeServer):
        super().__init__(info)
        self.server = server
        self.released = False

    async def _check(self, sql: str) -> None:
        if self.server.hang:
            await asyncio.sleep(3600)
        if self.server.fail_on and self.server.fail_on in sql:
            raise EngineError(f"ERROR: statement failed: {sql}")

    async def _execute(self, statements):
        for statement in statements:
            await self._check(statement)
            self.server.statements.append(statement)

    async def _fetch_value(self, query):
        await self._check(query)
        if "server_version_num" in query:
            return self.server.version
        if "hba_file" in query:
            return HBA_PATH
        if "pg_reload_conf" in query:
            self.server.reloads += 1
            return "t"
        if "pg_stat_bgwriter" in query:
            return json.dumps(self.server.status)
        if "pg_database" in query:
            return json.dumps(self.server.databases)
        return ""

    async def _read_file(self, path):
        if path not in self.server.files:
            raise EngineError(f"could not open file \"{path}\"")
        return self.server.files[path]

    async def _write_file(self, path, content):
        self.server.files[path] = content

    async def _release(self):
        self.released = True


@pytest.fixture
def fake_server():
    return FakeServer()


@pytest.fixture
def resolver(fake_server):
    """Resolve through the real catalog lookup, connect to the fake server."""

    async def _resolve(db, database, secret_box):
        info = await load_db_info(db, database, secret_box)
        info.timeout = fake_server.timeout
        client = FakeClient(info, fake_server)
        fake_server.clients.append(client)
        return client, info.version

    return _resolve


@pytest.fixture
def service(session, secret_box, resolver):
    return PostgresqlService(session, secret_box, resolver=resolver)


@pytest.fixture
def fake_client(fake_server):
    """A standalone client for the local engine pgA (container c1)."""
    info = DBInfo(database="pgA", address="c1", username="postgres", password="rootpw", timeout=5.0)
    return FakeClient(info, fake_server)

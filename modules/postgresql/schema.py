"""
Catalog schema for the PostgreSQL module.

The DDL is kept portable between PostgreSQL (production) and SQLite so the
same statements can bootstrap a throwaway catalog.
"""

from sqlalchemy import text

from . import (
    INSTANCES_TABLE,
    DATABASES_TABLE,
    APP_INSTALLS_TABLE,
    APP_INSTALL_RESOURCES_TABLE,
    BACKUP_RECORDS_TABLE,
)

ID_COLUMNS = {
    "sqlite": "id INTEGER PRIMARY KEY AUTOINCREMENT",
    "postgresql": "id SERIAL PRIMARY KEY",
}

SCHEMA_STATEMENTS = [
    # Engine instances: the servers (container or remote) hosting databases
    f'''
    CREATE TABLE IF NOT EXISTS "{INSTANCES_TABLE}" (
        {{id_column}},
        name VARCHAR(128) NOT NULL UNIQUE,
        type VARCHAR(64) NOT NULL DEFAULT 'postgresql',
        origin VARCHAR(64) NOT NULL DEFAULT 'local',
        version VARCHAR(64) NOT NULL DEFAULT '',
        address VARCHAR(255) NOT NULL DEFAULT '',
        port INTEGER NOT NULL DEFAULT 5432,
        username VARCHAR(128) NOT NULL DEFAULT '',
        password TEXT NOT NULL DEFAULT '',
        ssl BOOLEAN NOT NULL DEFAULT FALSE,
        skip_verify BOOLEAN NOT NULL DEFAULT FALSE,
        root_cert TEXT NOT NULL DEFAULT '',
        client_cert TEXT NOT NULL DEFAULT '',
        client_key TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    # Logical databases tracked in the catalog
    f'''
    CREATE TABLE IF NOT EXISTS "{DATABASES_TABLE}" (
        {{id_column}},
        name VARCHAR(128) NOT NULL,
        postgresql_name VARCHAR(128) NOT NULL,
        origin VARCHAR(64) NOT NULL DEFAULT 'local',
        format VARCHAR(64) NOT NULL DEFAULT '',
        username VARCHAR(128) NOT NULL DEFAULT '',
        password TEXT NOT NULL DEFAULT '',
        permission VARCHAR(255) NOT NULL DEFAULT '%',
        description TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (postgresql_name, name, origin)
    )
    ''',
    # Installed apps (the engine containers themselves and the apps using them)
    f'''
    CREATE TABLE IF NOT EXISTS "{APP_INSTALLS_TABLE}" (
        {{id_column}},
        app_key VARCHAR(64) NOT NULL,
        name VARCHAR(128) NOT NULL,
        container_name VARCHAR(255) NOT NULL DEFAULT '',
        port INTEGER NOT NULL DEFAULT 0,
        username VARCHAR(128) NOT NULL DEFAULT '',
        password TEXT NOT NULL DEFAULT '',
        env TEXT NOT NULL DEFAULT '{{}}',
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    # Links between installed apps and the databases they consume
    f'''
    CREATE TABLE IF NOT EXISTS "{APP_INSTALL_RESOURCES_TABLE}" (
        {{id_column}},
        app_install_id INTEGER NOT NULL,
        link_id INTEGER NOT NULL DEFAULT 0,
        resource_id INTEGER NOT NULL,
        key VARCHAR(64) NOT NULL DEFAULT 'postgresql',
        origin VARCHAR(64) NOT NULL DEFAULT 'local',
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    f'''
    CREATE TABLE IF NOT EXISTS "{BACKUP_RECORDS_TABLE}" (
        {{id_column}},
        type VARCHAR(64) NOT NULL,
        name VARCHAR(128) NOT NULL,
        detail_name VARCHAR(128) NOT NULL DEFAULT '',
        file_dir TEXT NOT NULL DEFAULT '',
        file_name VARCHAR(255) NOT NULL DEFAULT '',
        created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    ''',
]


async def create_tables(conn) -> None:
    """Create every catalog table on an open (async) connection."""
    id_column = ID_COLUMNS.get(conn.dialect.name, ID_COLUMNS["postgresql"])
    for statement in SCHEMA_STATEMENTS:
        await conn.execute(text(statement.replace("{id_column}", id_column)))

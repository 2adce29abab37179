"""
PostgreSQL administrative syntax per version family.

Administrative statements are version dependent (forced drops, host auth
methods, bgwriter statistics). A syntax family is selected once per client
from the server major version; identifiers and literals always go through
``quote_ident`` / ``quote_literal``.
"""

import re

from ..errors import InvalidParamsError

_VERSION_PATTERN = re.compile(r'^\s*(?:PostgreSQL\s+)?(\d+)')


def quote_ident(name: str) -> str:
    """Quote an SQL identifier (database or role name)."""
    if not name or "\x00" in name:
        raise InvalidParamsError(f"Invalid identifier '{name}'")
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote an SQL string literal, independent of standard_conforming_strings."""
    if "\x00" in value:
        raise InvalidParamsError("Literal contains a NUL byte")
    escaped = value.replace("'", "''")
    if "\\" in escaped:
        return "E'" + escaped.replace("\\", "\\\\") + "'"
    return "'" + escaped + "'"


def parse_major_version(version: str) -> int:
    """
    Extract the major version from a version string.

    Accepts "15", "15.4", "9.6.24", "PostgreSQL 16.2 on x86_64..." and
    server_version_num values such as "150004".

    Raises:
        InvalidParamsError: If no version number can be found.
    """
    match = _VERSION_PATTERN.match(version or "")
    if not match:
        raise InvalidParamsError(f"Unrecognized PostgreSQL version '{version}'")
    major = int(match.group(1))
    if major >= 10000:
        # server_version_num: 90624 -> 9, 150004 -> 15
        major //= 10000
    return major


class LegacySyntax:
    """PostgreSQL 12 and older."""

    family = "legacy"
    min_major = 0
    host_auth_method = "md5"
    force_drop = False
    has_backend_fsync = True

    def __init__(self, major: int = 0):
        self.major = major

    # ---- Roles & Databases ---------------------------------------------------

    def create_role(self, username: str, password: str) -> list[str]:
        return [f"CREATE ROLE {quote_ident(username)} WITH LOGIN PASSWORD {quote_literal(password)};"]

    def create_database(self, name: str, owner: str, fmt: str = "") -> list[str]:
        statement = f"CREATE DATABASE {quote_ident(name)} OWNER {quote_ident(owner)}"
        if fmt:
            # Non-default encodings require a pristine template
            statement += f" ENCODING {quote_literal(fmt)} TEMPLATE template0"
        return [
            statement + ";",
            f"GRANT ALL PRIVILEGES ON DATABASE {quote_ident(name)} TO {quote_ident(owner)};",
        ]

    def drop_database(self, name: str, if_exists: bool = False) -> list[str]:
        exists = "IF EXISTS " if if_exists else ""
        if self.force_drop:
            return [f"DROP DATABASE {exists}{quote_ident(name)} WITH (FORCE);"]
        return [
            "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
            f"WHERE datname = {quote_literal(name)} AND pid <> pg_backend_pid();",
            f"DROP DATABASE {exists}{quote_ident(name)};",
        ]

    def drop_role(self, username: str, if_exists: bool = False) -> list[str]:
        exists = "IF EXISTS " if if_exists else ""
        return [f"DROP ROLE {exists}{quote_ident(username)};"]

    def alter_password(self, username: str, password: str) -> list[str]:
        return [f"ALTER ROLE {quote_ident(username)} WITH LOGIN PASSWORD {quote_literal(password)};"]

    # ---- Introspection -------------------------------------------------------

    def server_version_query(self) -> str:
        return "SHOW server_version_num;"

    def hba_file_query(self) -> str:
        return "SHOW hba_file;"

    def reload_query(self) -> str:
        return "SELECT pg_reload_conf();"

    def status_query(self) -> str:
        """Single-row JSON status report."""
        fsync = "(SELECT buffers_backend_fsync FROM pg_stat_bgwriter)" if self.has_backend_fsync else "0"
        return f"""
        SELECT json_build_object(
            'uptime', (SELECT date_trunc('second', now() - pg_postmaster_start_time())::text),
            'version', current_setting('server_version'),
            'max_connections', current_setting('max_connections')::integer,
            'autovacuum', current_setting('autovacuum'),
            'current_connections', (SELECT count(*) FROM pg_stat_activity),
            'hit_ratio', (
                SELECT CASE
                    WHEN sum(blks_hit + blks_read) > 0
                    THEN round(sum(blks_hit)::numeric / sum(blks_hit + blks_read) * 100, 2)
                    ELSE 0
                END
                FROM pg_stat_database
            ),
            'shared_buffers', current_setting('shared_buffers'),
            'buffers_clean', (SELECT buffers_clean FROM pg_stat_bgwriter),
            'maxwritten_clean', (SELECT maxwritten_clean FROM pg_stat_bgwriter),
            'buffers_backend_fsync', {fsync}
        );
        """

    def list_databases_query(self) -> str:
        """Non-template databases, excluding the maintenance database."""
        return """
        SELECT coalesce(json_agg(
            json_build_object(
                'name', datname,
                'owner', pg_catalog.pg_get_userbyid(datdba),
                'encoding', pg_encoding_to_char(encoding)
            ) ORDER BY datname
        ), '[]'::json)
        FROM pg_database
        WHERE datistemplate = false
        AND datname NOT IN ('postgres');
        """


class Postgres13Syntax(LegacySyntax):
    """PostgreSQL 13: DROP DATABASE ... WITH (FORCE) terminates sessions itself."""

    family = "13"
    min_major = 13
    force_drop = True


class Postgres14Syntax(Postgres13Syntax):
    """PostgreSQL 14-16: scram-sha-256 is the default password encryption."""

    family = "14"
    min_major = 14
    host_auth_method = "scram-sha-256"


class Postgres17Syntax(Postgres14Syntax):
    """PostgreSQL 17+: backend fsync counters moved out of pg_stat_bgwriter."""

    family = "17"
    min_major = 17
    has_backend_fsync = False


# Newest first
SYNTAX_FAMILIES = [Postgres17Syntax, Postgres14Syntax, Postgres13Syntax, LegacySyntax]


def get_syntax(version: str) -> LegacySyntax:
    """Select the syntax family for a server version string."""
    major = parse_major_version(version)
    for family in SYNTAX_FAMILIES:
        if major >= family.min_major:
            return family(major)
    return LegacySyntax(major)

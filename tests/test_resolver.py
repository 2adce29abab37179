"""Unit tests for engine instance resolution."""

import pytest

from modules.postgresql.services.adapters import LocalClient, RemoteClient
from modules.postgresql.services.errors import RecordNotFoundError
from modules.postgresql.services.resolver import load_db_info, resolve_client


class TestLoadDBInfo:
    @pytest.mark.asyncio
    async def test_local_engine_uses_app_install(self, session, secret_box, seed):
        await seed.local_engine(name="pgA", container="c1", version="15")

        info = await load_db_info(session, "pgA", secret_box)

        assert info.origin == "local"
        assert info.address == "c1"
        assert info.username == "postgres"
        assert info.password == "rootpw"
        assert info.version == ""
        assert info.timeout == 300

    @pytest.mark.asyncio
    async def test_remote_engine_uses_instance(self, session, secret_box, seed):
        await seed.remote_engine(name="pgR", address="10.0.0.5", version="16.2")

        info = await load_db_info(session, "pgR", secret_box)

        assert info.origin == "remote"
        assert (info.address, info.port) == ("10.0.0.5", 5433)
        assert info.username == "admin"
        assert info.password == "adminpw"
        assert info.version == "16.2"
        assert info.ssl is False

    @pytest.mark.asyncio
    async def test_password_hidden_from_repr(self, session, secret_box, seed):
        await seed.remote_engine()
        info = await load_db_info(session, "pgR", secret_box)
        assert "adminpw" not in repr(info)

    @pytest.mark.asyncio
    async def test_unknown_engine(self, session, secret_box):
        with pytest.raises(RecordNotFoundError):
            await load_db_info(session, "missing", secret_box)


class TestResolveClient:
    @pytest.mark.asyncio
    async def test_local(self, session, secret_box, seed):
        await seed.local_engine()
        client, version = await resolve_client(session, "pgA", secret_box)
        assert isinstance(client, LocalClient)
        assert version == ""
        await client.close()

    @pytest.mark.asyncio
    async def test_remote(self, session, secret_box, seed):
        await seed.remote_engine()
        client, version = await resolve_client(session, "pgR", secret_box)
        assert isinstance(client, RemoteClient)
        assert version == "16.2"
        await client.close()

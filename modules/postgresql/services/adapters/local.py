"""
Container transport for locally supervised PostgreSQL engines.

SQL is piped to ``psql`` running inside the engine container. The admin
password is handed over through the runtime's environment, never argv.
"""

import logging

from ..container_orchestrator import ContainerOrchestrator
from ..errors import EngineError
from .base import BaseClient

logger = logging.getLogger("uvicorn.error")


class LocalClient(BaseClient):
    """Administrative client executing inside the engine container."""

    transport = "container"

    def _psql_command(self, database: str = "postgres") -> list[str]:
        return [
            "psql",
            "-X",  # ignore ~/.psqlrc
            "-q",
            "-A",
            "-t",  # Tuples only (no headers)
            "-v", "ON_ERROR_STOP=1",
            "-U", self.info.username,
            "-d", database,
            "-f", "-",
        ]

    async def _exec(self, command: list[str], input_data=None, env=None) -> str:
        success, output = await ContainerOrchestrator.exec_command(
            self.info.address,
            command,
            timeout=self.info.timeout,
            input_data=input_data,
            env=env,
        )
        if not success:
            logger.error(f"Command in container {self.info.address} failed: {output[:200]}")
            raise EngineError(output or f"Command failed in container {self.info.address}")
        return output

    async def _psql(self, sql: str) -> str:
        return await self._exec(
            self._psql_command(),
            input_data=sql,
            env={"PGPASSWORD": self.info.password},
        )

    async def _execute(self, statements: list[str]) -> None:
        await self._psql("\n".join(statements) + "\n")

    async def _fetch_value(self, query: str) -> str:
        output = await self._psql(query.strip() + "\n")
        return output.strip()

    async def _read_file(self, path: str) -> str:
        return await self._exec(["cat", path])

    async def _write_file(self, path: str, content: str) -> None:
        # The path travels as a positional parameter, not inside the script
        await self._exec(["sh", "-c", 'cat > "$1"', "sh", path], input_data=content)

    async def _release(self) -> None:
        # Every command is a one-shot exec; there is no session to tear down
        logger.debug(f"Released container client for {self.info.address}")

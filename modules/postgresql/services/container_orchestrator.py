import asyncio
import logging
import os
from typing import Optional

from ..hooks import get_container_runtime
from .errors import EngineTimeoutError

logger = logging.getLogger("uvicorn.error")


class ContainerOrchestrator:
    """Container runtime helpers for locally supervised PostgreSQL engines."""

    @staticmethod
    async def _run_command(
        cmd: list[str],
        timeout: float = 30.0,
        check: bool = True,
        input_data: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
    ) -> tuple[bool, str, str]:
        """
        Run a command with asyncio subprocess.

        Extra ``env`` entries are layered on top of the current environment so
        secrets can be handed to the child without appearing in argv.

        Returns (success, stdout, stderr)

        Raises:
            EngineTimeoutError: If the command does not finish within ``timeout``.
        """
        child_env = None
        if env:
            child_env = {**os.environ, **env}

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE if input_data is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=child_env,
            )
        except OSError as e:
            logger.error(f"Command error: {' '.join(cmd)}\n{e}")
            return (False, "", str(e))

        payload = input_data.encode() if input_data is not None else None
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(payload),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.error(f"Command timeout after {timeout}s: {' '.join(cmd)}")
            raise EngineTimeoutError(cmd[0], timeout)
        except asyncio.CancelledError:
            proc.kill()
            raise

        stdout = stdout_bytes.decode(errors="replace").strip()
        stderr = stderr_bytes.decode(errors="replace").strip()

        success = proc.returncode == 0

        if check and not success:
            logger.error(f"Command failed: {' '.join(cmd)}\nstderr: {stderr}")

        return (success, stdout, stderr)

    @staticmethod
    async def exec_command(
        name_or_id: str,
        command: list[str],
        timeout: float = 60.0,
        input_data: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
    ) -> tuple[bool, str]:
        """
        Execute a command inside a running container.

        Environment variables in ``env`` are forwarded by name only
        (``-e NAME``); their values travel through the runtime's own
        environment.
        """
        cmd = [get_container_runtime(), "exec"]
        if input_data is not None:
            cmd.append("-i")
        for name in (env or {}):
            cmd.extend(["-e", name])
        cmd.append(name_or_id)
        cmd.extend(command)

        success, stdout, stderr = await ContainerOrchestrator._run_command(
            cmd,
            timeout=timeout,
            check=False,
            input_data=input_data,
            env=env,
        )

        output = stdout if success else stderr
        return (success, output)

    @staticmethod
    async def restart_compose(compose_path: str, timeout: float = 300.0) -> tuple[bool, str]:
        """Restart every service of a compose project after its config changed."""
        success, stdout, stderr = await ContainerOrchestrator._run_command(
            [get_container_runtime(), "compose", "-f", compose_path, "restart"],
            timeout=timeout,
        )

        if success:
            logger.info(f"Restarted compose project {compose_path}")
        return (success, stdout if success else stderr)

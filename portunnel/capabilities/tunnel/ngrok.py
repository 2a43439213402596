"""ngrok tunnel runner: an ``ngrok/ngrok`` sidecar container driven by the docker CLI."""
from __future__ import annotations

import asyncio
import logging
import os
import shutil

from portunnel.capabilities.tunnel.base import (
    LogOutput,
    TunnelLaunchError,
    TunnelRuntimeError,
)
from portunnel.core.redact import scrub

logger = logging.getLogger(__name__)

AUTHTOKEN_ENV = "NGROK_AUTHTOKEN"


class NgrokDockerRunner:
    """Starts, reads and removes ngrok containers.

    Equivalent to::

        NGROK_AUTHTOKEN=... docker run --name=NAME -e NGROK_AUTHTOKEN \\
            --net=host -d ngrok/ngrok http PORT --log=stdout --log-format=json

    ``-e NGROK_AUTHTOKEN`` without a value makes docker copy the variable
    from its own environment, so the token never appears in argv.
    """

    def __init__(
        self,
        docker_binary: str = "docker",
        image: str = "ngrok/ngrok",
        launch_timeout: float = 120.0,
        command_timeout: float = 30.0,
    ) -> None:
        self._docker_binary = docker_binary
        self._image = image
        self._launch_timeout = launch_timeout
        self._command_timeout = command_timeout

    @property
    def image(self) -> str:
        return self._image

    def build_run_args(self, name: str, port: int) -> list[str]:
        """Return ``docker run`` arguments (without the binary) for a session."""
        return [
            "run",
            f"--name={name}",
            "-e", AUTHTOKEN_ENV,
            "--net=host",
            "-d",
            self._image,
            "http", str(port),
            "--log=stdout",
            "--log-format=json",
        ]

    def _resolve_docker(self) -> str | None:
        return shutil.which(self._docker_binary)

    async def launch(self, name: str, port: int, credential: str) -> str:
        """Start the ngrok container. Returns the container id."""
        docker_path = self._resolve_docker()
        if not docker_path:
            raise TunnelLaunchError(
                f"{self._docker_binary} not found in PATH. Is Docker installed?"
            )

        env = {**os.environ, AUTHTOKEN_ENV: credential}
        logger.info("Starting ngrok container %s for port %d", name, port)

        try:
            proc = await asyncio.create_subprocess_exec(
                docker_path, *self.build_run_args(name, port),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise TunnelLaunchError(f"Failed to run docker: {e}") from e

        try:
            stdout, stderr = await _communicate(proc, self._launch_timeout)
        except asyncio.TimeoutError:
            raise TunnelLaunchError(
                f"docker run timed out after {self._launch_timeout:.0f}s"
            )

        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace").strip() if stderr else ""
            raise TunnelLaunchError(
                f"docker run failed: {scrub(err) or f'exit code {proc.returncode}'}"
            )

        container_id = stdout.decode("utf-8", errors="replace").strip()
        logger.info("ngrok container %s started (%s)", name, container_id[:12])
        return container_id

    async def fetch_logs(self, name: str) -> LogOutput:
        """``docker logs NAME``: full stdout/stderr history of the container.

        Raises TunnelRuntimeError if docker cannot be run or does not answer.
        """
        docker_path = self._resolve_docker() or self._docker_binary
        try:
            proc = await asyncio.create_subprocess_exec(
                docker_path, "logs", name,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TunnelRuntimeError(f"Failed to run docker logs: {e}") from e

        try:
            stdout, stderr = await _communicate(proc, self._command_timeout)
        except asyncio.TimeoutError:
            raise TunnelRuntimeError(
                f"docker logs timed out after {self._command_timeout:.0f}s"
            )
        return LogOutput(
            stdout=stdout.decode("utf-8", errors="replace") if stdout else "",
            stderr=stderr.decode("utf-8", errors="replace") if stderr else "",
        )

    async def remove(self, name: str) -> bool:
        """Force-remove the container. Failures are logged, not raised."""
        docker_path = self._resolve_docker()
        if not docker_path:
            logger.warning("Cannot remove %s: %s not found", name, self._docker_binary)
            return False
        try:
            proc = await asyncio.create_subprocess_exec(
                docker_path, "rm", "-f", name,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
            _, stderr = await _communicate(proc, self._command_timeout)
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(
                "Failed to remove container %s: %s", name, str(e) or type(e).__name__,
            )
            return False

        if proc.returncode != 0:
            err = stderr.decode("utf-8", errors="replace").strip() if stderr else ""
            logger.warning("docker rm -f %s failed: %s", name, err)
            return False
        logger.info("Removed ngrok container %s", name)
        return True


async def _communicate(
    proc: asyncio.subprocess.Process, timeout: float,
) -> tuple[bytes, bytes]:
    """``proc.communicate()`` with a timeout.

    On timeout or cancellation the child is killed and reaped before the
    exception propagates.
    """
    try:
        return await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except BaseException:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
        raise

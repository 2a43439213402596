from __future__ import annotations

from typing import Protocol, runtime_checkable

from portunnel.capabilities.tunnel.base import LogOutput


@runtime_checkable
class TunnelRunnerPort(Protocol):
    """Abstract interface for starting and observing an external tunnel process.

    The controller depends only on this protocol; the ngrok-in-Docker
    runner is the one shipped implementation.
    """

    async def launch(self, name: str, port: int, credential: str) -> str:
        """Start the tunnel process named *name* for *port*.

        The credential must reach the process through its environment,
        never its argv. Returns a handle (container id).
        Raises ``TunnelLaunchError`` if the process could not be started.
        """
        ...

    async def fetch_logs(self, name: str) -> LogOutput:
        """Return all output the process has produced since it started."""
        ...

    async def remove(self, name: str) -> bool:
        """Stop and remove the process. Returns False if that failed."""
        ...

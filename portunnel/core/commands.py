"""Command API: the single entry point for all control planes.

Control planes parse user input and call these methods. Commands return
plain dataclasses and raise ``ValueError`` for bad input.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import aiohttp

from portunnel.capabilities.tunnel.base import TunnelRequest, TunnelSession
from portunnel.core.events import ContainersChangedEvent, EventBus
from portunnel.inventory.models import ContainerRecord

if TYPE_CHECKING:
    from portunnel.capabilities.tunnel.controller import TunnelController
    from portunnel.ports.inventory import InventoryPort

logger = logging.getLogger(__name__)


@dataclass
class TunnelStatus:
    state: str
    session_name: str | None = None
    port: int | None = None
    container_name: str | None = None
    url: str | None = None
    error: str | None = None
    failure_kind: str | None = None

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "session_name": self.session_name,
            "port": self.port,
            "container": self.container_name,
            "url": self.url,
            "error": self.error,
            "failure_kind": self.failure_kind,
        }


class Commands:
    """Facade over the tunnel controller and the container inventory."""

    def __init__(
        self,
        controller: TunnelController,
        inventory: InventoryPort,
        event_bus: EventBus | None = None,
    ) -> None:
        self._controller = controller
        self._inventory = inventory
        self._event_bus = event_bus or EventBus()
        self._containers: list[ContainerRecord] = []

    @property
    def containers(self) -> list[ContainerRecord]:
        """Last listing (may be stale; see ``cmd_list_containers``)."""
        return list(self._containers)

    # -- Inventory ---------------------------------------------------------

    async def cmd_list_containers(self) -> list[ContainerRecord]:
        """Fresh list of containers with published ports."""
        try:
            records = await self._inventory.list_exposable_containers()
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError, ValueError) as e:
            raise RuntimeError(f"Docker API unavailable: {e}") from e
        self._containers = records
        return records

    async def refresh_containers(self, _event: dict | None = None) -> None:
        """Lifecycle callback: re-list and publish the new inventory."""
        try:
            records = await self.cmd_list_containers()
        except RuntimeError as e:
            logger.warning("Container refresh failed: %s", e)
            return
        self._event_bus.publish(ContainersChangedEvent(containers=tuple(records)))

    def find_container(self, port: int) -> ContainerRecord | None:
        """The container publishing *port* in the last listing, if any."""
        for container in self._containers:
            if port in container.published_ports:
                return container
        return None

    # -- Tunnel ------------------------------------------------------------

    async def cmd_expose(
        self, port: int, credential: str, name: str | None = None,
    ) -> TunnelSession:
        """Expose a published container port.

        Raises ValueError if the token is missing or no running container
        publishes *port*.
        """
        credential = (credential or "").strip()
        if not credential:
            raise ValueError("An ngrok auth token is required")

        request = TunnelRequest(port=port, credential=credential, name=name)

        if self.find_container(port) is None:
            # The cached listing may predate the container; re-list once
            await self.cmd_list_containers()
            if self.find_container(port) is None:
                raise ValueError(f"Port {port} is not published by any running container")

        return await self._controller.expose(request)

    async def cmd_cancel(self) -> bool:
        """Stop the current tunnel. Returns False if there was none."""
        return await self._controller.cancel()

    def cmd_status(self) -> TunnelStatus:
        session = self._controller.current_session
        if session is None:
            return TunnelStatus(state=self._controller.state.value)
        container = self.find_container(session.port)
        return TunnelStatus(
            state=session.state.value,
            session_name=session.name,
            port=session.port,
            container_name=container.display_name if container else None,
            url=session.resolved_url,
            error=session.last_error,
            failure_kind=session.failure_kind.value if session.failure_kind else None,
        )

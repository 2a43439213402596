from __future__ import annotations

from typing import Awaitable, Callable, Protocol, runtime_checkable

from portunnel.inventory.models import ContainerRecord

LifecycleCallback = Callable[[dict], Awaitable[None]]


@runtime_checkable
class InventoryPort(Protocol):
    """Live inventory of containers that publish ports."""

    async def list_exposable_containers(self) -> list[ContainerRecord]:
        """Containers with at least one published port, in listing order."""
        ...

    def on_container_lifecycle_event(self, callback: LifecycleCallback) -> None:
        """Invoke *callback* once per observed container start/destroy.

        Delivery may coalesce or duplicate events; treat every call as
        "re-list", not as a precise delta.
        """
        ...

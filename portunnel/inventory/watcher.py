"""Container inventory watcher: Docker Engine API over the local unix socket.

Lists running containers on demand and keeps a long-lived subscription
to container start/destroy events. Every event fires the registered
callbacks; consumers re-list rather than apply deltas.
"""
from __future__ import annotations

import asyncio
import json
import logging

import aiohttp

from portunnel.inventory.models import ContainerRecord, exposable
from portunnel.ports.inventory import LifecycleCallback

logger = logging.getLogger(__name__)

LIFECYCLE_ACTIONS = ("start", "destroy")
EVENT_FILTERS = {"type": ["container"], "event": list(LIFECYCLE_ACTIONS)}


class ContainerInventoryWatcher:
    """Docker-backed implementation of ``InventoryPort``."""

    def __init__(
        self,
        socket_path: str = "/var/run/docker.sock",
        api_version: str | None = None,
        reconnect_delay: float = 5.0,
        request_timeout: float = 10.0,
    ) -> None:
        self._socket_path = socket_path
        self._base_url = f"http://docker/{api_version}" if api_version else "http://docker"
        self._reconnect_delay = reconnect_delay
        self._request_timeout = request_timeout
        self._callbacks: list[LifecycleCallback] = []
        self._task: asyncio.Task | None = None

    @property
    def is_watching(self) -> bool:
        return self._task is not None and not self._task.done()

    def _client(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            connector=aiohttp.UnixConnector(path=self._socket_path),
        )

    async def _get_json(self, path: str, params: dict | None = None) -> object:
        async with self._client() as session:
            async with session.get(
                f"{self._base_url}{path}",
                params=params,
                timeout=aiohttp.ClientTimeout(total=self._request_timeout),
            ) as resp:
                resp.raise_for_status()
                return await resp.json()

    # -- Listing ------------------------------------------------------------

    async def list_containers(self) -> list[ContainerRecord]:
        """All running containers, in the order Docker lists them."""
        data = await self._get_json("/containers/json")
        if not isinstance(data, list):
            raise ValueError(f"unexpected /containers/json payload: {type(data).__name__}")
        records: list[ContainerRecord] = []
        for item in data:
            try:
                records.append(ContainerRecord.from_api(item))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning("Skipping unreadable container entry: %s", e)
        return records

    async def list_exposable_containers(self) -> list[ContainerRecord]:
        return exposable(await self.list_containers())

    # -- Lifecycle subscription --------------------------------------------

    def on_container_lifecycle_event(self, callback: LifecycleCallback) -> None:
        self._callbacks.append(callback)

    def start(self) -> None:
        """Start the background event subscription."""
        if self.is_watching:
            return
        self._task = asyncio.create_task(self._watch_loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _watch_loop(self) -> None:
        """Keep the event stream open, reconnecting after errors."""
        while True:
            try:
                await self._stream_events()
                logger.info("Docker event stream closed, reconnecting")
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
                logger.warning("Docker event stream error: %s", e)
            await asyncio.sleep(self._reconnect_delay)

    async def _stream_events(self) -> None:
        params = {"filters": json.dumps(EVENT_FILTERS)}
        async with self._client() as session:
            async with session.get(
                f"{self._base_url}/events",
                params=params,
                timeout=aiohttp.ClientTimeout(total=None, sock_read=None),
            ) as resp:
                resp.raise_for_status()
                logger.info("Subscribed to Docker container events")
                async for raw in resp.content:
                    await self._handle_event_line(raw)

    async def _handle_event_line(self, raw: bytes) -> None:
        text = raw.decode("utf-8", errors="replace").strip()
        if not text:
            return
        try:
            event = json.loads(text)
        except ValueError:
            logger.debug("Skipping undecodable Docker event: %s", text[:200])
            return
        if not isinstance(event, dict):
            return
        action = event.get("Action") or event.get("status")
        if action not in LIFECYCLE_ACTIONS:
            return
        logger.debug("Container %s: %s", action, str(event.get("id", ""))[:12])
        for callback in list(self._callbacks):
            try:
                await callback(event)
            except Exception:
                logger.exception("Container lifecycle callback failed")

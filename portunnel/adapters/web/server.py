"""Web Control Plane: REST API + SSE for local tunnel control.

Lists exposable containers, starts/stops the tunnel, and streams state
changes as Server-Sent Events. Rendering is left to whatever client
consumes the API.
"""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from aiohttp import web

from portunnel.core.events import (
    ContainersChangedEvent,
    EventBus,
    TunnelNotificationEvent,
    TunnelStateChangedEvent,
)

if TYPE_CHECKING:
    from portunnel.core.commands import Commands

logger = logging.getLogger(__name__)

# All event types the SSE stream subscribes to.
_SSE_EVENT_TYPES: list[type] = [
    TunnelStateChangedEvent,
    TunnelNotificationEvent,
    ContainersChangedEvent,
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _serialize_event(ev: object) -> dict:
    """Convert a typed event to a JSON-serializable dict for SSE."""
    data: dict = {"type": type(ev).__name__}

    if isinstance(ev, TunnelStateChangedEvent):
        data["session_name"] = ev.session_name
        data["port"] = ev.port
        data["state"] = ev.state.value
        data["url"] = ev.url
        data["error"] = ev.error
        data["failure_kind"] = ev.failure_kind.value if ev.failure_kind else None
        data["level"] = ev.level.value

    elif isinstance(ev, TunnelNotificationEvent):
        data["session_name"] = ev.session_name
        data["text"] = ev.text
        data["success"] = ev.success
        data["level"] = ev.level.value

    elif isinstance(ev, ContainersChangedEvent):
        data["containers"] = [c.to_dict() for c in ev.containers]

    return data


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------

async def _handle_containers(request: web.Request) -> web.Response:
    """GET /api/containers: containers with published ports."""
    cmd: Commands = request.app["cmd"]
    try:
        containers = await cmd.cmd_list_containers()
    except RuntimeError as e:
        return web.json_response({"error": str(e)}, status=502)
    return web.json_response([c.to_dict() for c in containers])


async def _handle_tunnel_status(request: web.Request) -> web.Response:
    """GET /api/tunnel"""
    cmd: Commands = request.app["cmd"]
    return web.json_response(cmd.cmd_status().to_dict())


async def _handle_expose(request: web.Request) -> web.Response:
    """POST /api/tunnel: {"port": 8080, "credential": "..."}"""
    cmd: Commands = request.app["cmd"]
    try:
        body = await request.json()
    except ValueError:
        return web.json_response({"error": "invalid JSON body"}, status=400)
    if not isinstance(body, dict):
        return web.json_response({"error": "invalid JSON body"}, status=400)

    port = body.get("port")
    if isinstance(port, str) and port.strip().isascii() and port.strip().isdecimal():
        port = int(port)
    if isinstance(port, bool) or not isinstance(port, int):
        return web.json_response({"error": "port must be an integer"}, status=400)

    credential = body.get("credential") or ""
    if not isinstance(credential, str):
        return web.json_response({"error": "credential must be a string"}, status=400)

    name = body.get("name") or None
    if name is not None and not isinstance(name, str):
        return web.json_response({"error": "name must be a string"}, status=400)

    try:
        session = await cmd.cmd_expose(port, credential, name=name)
    except ValueError as e:
        return web.json_response({"error": str(e)}, status=400)
    except RuntimeError as e:
        return web.json_response({"error": str(e)}, status=502)
    return web.json_response(session.to_dict(), status=202)


async def _handle_cancel(request: web.Request) -> web.Response:
    """DELETE /api/tunnel"""
    cmd: Commands = request.app["cmd"]
    ok = await cmd.cmd_cancel()
    if not ok:
        return web.json_response({"error": "no running tunnel"}, status=404)
    return web.json_response({"ok": True})


# -- SSE --------------------------------------------------------------------

async def _handle_sse(request: web.Request) -> web.StreamResponse:
    """GET /api/events: Server-Sent Events stream for tunnel and inventory events."""
    event_bus: EventBus = request.app["event_bus"]

    response = web.StreamResponse(
        status=200,
        reason="OK",
        headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
    await response.prepare(request)

    # Subscribe to all event types: merge into a single queue.
    merged: asyncio.Queue = asyncio.Queue()
    subscriptions: list[tuple[type, asyncio.Queue]] = []

    async def _forward(event_type: type) -> None:
        q = event_bus.subscribe(event_type)
        subscriptions.append((event_type, q))
        try:
            while True:
                ev = await q.get()
                await merged.put(ev)
        except asyncio.CancelledError:
            pass

    tasks = [asyncio.create_task(_forward(et)) for et in _SSE_EVENT_TYPES]

    try:
        while True:
            ev = await merged.get()
            data = _serialize_event(ev)
            payload = f"data: {json.dumps(data, ensure_ascii=False)}\n\n"
            await response.write(payload.encode("utf-8"))
    except (asyncio.CancelledError, ConnectionResetError):
        pass
    finally:
        for t in tasks:
            t.cancel()
        for event_type, q in subscriptions:
            event_bus.unsubscribe(event_type, q)

    return response


# -- Logs -------------------------------------------------------------------

async def _handle_logs(request: web.Request) -> web.Response:
    """GET /api/logs: tail of the daemon log file."""
    try:
        lines_count = int(request.query.get("lines", "200"))
    except (ValueError, TypeError):
        lines_count = 200
    lines_count = max(1, min(lines_count, 1000))
    log_file = request.app["log_file"]
    try:
        path = Path(log_file)
        if not path.exists():
            return web.json_response({"lines": []})
        text = path.read_text(encoding="utf-8", errors="replace")
        return web.json_response({"lines": text.splitlines()[-lines_count:]})
    except OSError as e:
        logger.warning("Failed to read log file: %s", e)
        return web.json_response({"lines": ["Error reading log file"]})


# ---------------------------------------------------------------------------
# App factory & server class
# ---------------------------------------------------------------------------

def build_app(commands: Commands, event_bus: EventBus, log_file: str) -> web.Application:
    app = web.Application()
    app["cmd"] = commands
    app["event_bus"] = event_bus
    app["log_file"] = log_file

    app.router.add_get("/api/containers", _handle_containers)
    app.router.add_get("/api/tunnel", _handle_tunnel_status)
    app.router.add_post("/api/tunnel", _handle_expose)
    app.router.add_delete("/api/tunnel", _handle_cancel)

    # SSE + logs
    app.router.add_get("/api/events", _handle_sse)
    app.router.add_get("/api/logs", _handle_logs)

    return app


class WebControlPlane:
    """aiohttp-based web control plane server."""

    def __init__(
        self,
        commands: Commands,
        event_bus: EventBus,
        log_file: str,
        port: int = 7777,
    ) -> None:
        self._app = build_app(commands, event_bus, log_file)
        self._port = port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, "127.0.0.1", self._port)
        await site.start()
        logger.info("Web control plane running at http://localhost:%d", self._port)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            logger.info("Web control plane stopped")

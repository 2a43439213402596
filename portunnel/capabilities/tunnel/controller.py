"""Tunnel exposure controller: launches the tunnel process and polls its logs.

State machine per session::

    IDLE -> STARTING -> POLLING -> ACTIVE | FAILED
                 \\-> FAILED (launch)
    any non-failed state -> CANCELLED (cancel / superseded / shutdown)

One session is live per controller. A new ``expose`` supersedes the
previous session: its poll timer is cancelled and its container removed.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Awaitable, Callable

from portunnel.capabilities.tunnel.base import (
    FailureKind,
    TunnelRequest,
    TunnelSession,
    TunnelState,
    make_session_name,
)
from portunnel.capabilities.tunnel.log_scanner import LogScanner
from portunnel.core.events import (
    EventBus,
    EventLevel,
    TunnelNotificationEvent,
    TunnelStateChangedEvent,
)
from portunnel.core.redact import SecretFilter, scrub
from portunnel.ports.tunnel_runner import TunnelRunnerPort

logger = logging.getLogger(__name__)


class PollTimer:
    """Recurring tick owned by a single session.

    Runs *tick* every *interval* seconds (first tick after one interval)
    until cancelled. Suspension only happens between ticks and inside
    the awaits of a tick.
    """

    def __init__(self, interval: float, tick: Callable[[], Awaitable[object]]) -> None:
        self._interval = interval
        self._tick = tick
        self._task: asyncio.Task | None = None
        self._cancelled = False
        self.ticks = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("PollTimer already started")
        self._task = asyncio.create_task(self._run())

    def cancel(self) -> bool:
        """Stop ticking. Returns True only for the call that cancelled."""
        if self._cancelled:
            return False
        self._cancelled = True
        # From inside a tick the loop sees the flag and exits on its own
        if (
            self._task is not None
            and not self._task.done()
            and self._task is not asyncio.current_task()
        ):
            self._task.cancel()
        return True

    async def wait(self) -> None:
        """Wait for the timer task to finish (after cancel)."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while not self._cancelled:
            await asyncio.sleep(self._interval)
            if self._cancelled:
                break
            self.ticks += 1
            try:
                await self._tick()
            except Exception:
                logger.exception("Poll tick failed")


class TunnelController:
    """Drives tunnel sessions and publishes their state on the EventBus."""

    def __init__(
        self,
        runner: TunnelRunnerPort,
        event_bus: EventBus | None = None,
        poll_interval: float = 1.0,
        poll_timeout: float | None = 60.0,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._runner = runner
        self._event_bus = event_bus or EventBus()
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout or None
        self._session: TunnelSession | None = None
        self._deadlines: dict[str, float] = {}
        # Credentials stay registered for redaction while their session is live
        self._credentials: dict[str, str] = {}

    @property
    def current_session(self) -> TunnelSession | None:
        return self._session

    @property
    def state(self) -> TunnelState:
        if self._session is None:
            return TunnelState.IDLE
        return self._session.state

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def expose(self, request: TunnelRequest) -> TunnelSession:
        """Start a tunnel session for ``request.port``.

        Returns once the process is launched (state ``POLLING``) or the
        launch failed (state ``FAILED``); the outcome of polling arrives
        later as events and on the returned session.
        """
        previous = self._session
        if previous is not None:
            await self._teardown(previous, "superseded")

        session = TunnelSession(
            name=request.name or make_session_name(request.port),
            port=request.port,
            _scanner=LogScanner(),
        )
        self._session = session

        SecretFilter.register_secret(request.credential)
        self._credentials[session.name] = request.credential
        if not request.credential:
            logger.warning("Exposing port %d without an auth token", request.port)

        self._transition(session, TunnelState.STARTING)
        try:
            session.handle = await self._runner.launch(
                session.name, request.port, request.credential,
            )
        except Exception as e:
            await self._fail(session, FailureKind.LAUNCH, str(e) or type(e).__name__)
            return session

        if session.is_terminal or session is not self._session:
            # Cancelled or superseded while the launch was in flight
            logger.info("Session %s ended during launch, removing container", session.name)
            await self._runner.remove(session.name)
            return session

        self._transition(session, TunnelState.POLLING)
        if self._poll_timeout:
            self._deadlines[session.name] = time.monotonic() + self._poll_timeout
        timer = PollTimer(self._poll_interval, functools.partial(self.poll_once, session))
        session._timer = timer
        timer.start()
        return session

    async def poll_once(self, session: TunnelSession) -> TunnelState:
        """Run a single poll tick for *session* and return its resulting state.

        A no-op on terminal or superseded sessions.
        """
        if session.is_terminal or session is not self._session:
            return session.state

        try:
            output = await self._runner.fetch_logs(session.name)
        except Exception as e:
            await self._fail(session, FailureKind.RUNTIME, str(e) or type(e).__name__)
            return session.state

        # Cancelled or superseded while the fetch was in flight
        if session.is_terminal or session is not self._session:
            return session.state

        if output.stderr.strip():
            await self._fail(session, FailureKind.RUNTIME, output.stderr.strip())
            return session.state

        if session._scanner is None:
            session._scanner = LogScanner()
        url = session._scanner.feed(output.stdout)
        if url:
            self._activate(session, url)
            return session.state

        deadline = self._deadlines.get(session.name)
        if deadline is not None and time.monotonic() >= deadline:
            await self._fail(
                session, FailureKind.TIMEOUT,
                f"no tunnel URL after {self._poll_timeout:g}s",
            )
        return session.state

    async def cancel(self) -> bool:
        """Tear down the current session. Returns False if there was nothing to cancel."""
        if self._session is None:
            return False
        return await self._teardown(self._session, "cancelled")

    async def shutdown(self) -> None:
        """Cancel any live session and wait for its poll timer to stop."""
        session = self._session
        if session is None:
            return
        await self._teardown(session, "shutdown")
        if session.timer is not None:
            await session.timer.wait()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(
        self,
        session: TunnelSession,
        state: TunnelState,
        level: EventLevel = EventLevel.PROGRESS,
    ) -> None:
        session.state = state
        logger.info("Tunnel %s (port %d): %s", session.name, session.port, state.value)
        self._event_bus.publish(TunnelStateChangedEvent(
            session_name=session.name,
            port=session.port,
            state=state,
            url=session.resolved_url,
            error=session.last_error,
            failure_kind=session.failure_kind,
            level=level,
        ))

    def _finish(self, session: TunnelSession) -> None:
        """Release the session's poll timer and credential. Called on entering a terminal state."""
        if session.finished_at is None:
            session.finished_at = time.time()
        self._deadlines.pop(session.name, None)
        if session.timer is not None:
            session.timer.cancel()
        credential = self._credentials.pop(session.name, None)
        if credential is not None:
            SecretFilter.unregister_secret(credential)

    def _notify(self, session: TunnelSession, text: str, success: bool) -> None:
        self._event_bus.publish(TunnelNotificationEvent(
            session_name=session.name, text=text, success=success,
        ))

    def _activate(self, session: TunnelSession, url: str) -> None:
        if session.is_terminal:
            return
        self._finish(session)
        session.resolved_url = url
        self._transition(session, TunnelState.ACTIVE, EventLevel.NOTIFY)
        self._notify(session, f"Port {session.port} is live at {url}", success=True)

    async def _fail(self, session: TunnelSession, kind: FailureKind, message: str) -> None:
        if session.is_terminal:
            return
        # Scrub while the credential is still registered
        session.last_error = scrub(message)
        session.failure_kind = kind
        self._finish(session)
        logger.warning(
            "Tunnel %s failed (%s): %s", session.name, kind.value, session.last_error,
        )
        self._transition(session, TunnelState.FAILED, EventLevel.NOTIFY)
        self._notify(
            session,
            f"Tunnel for port {session.port} failed: {session.last_error}",
            success=False,
        )
        # Launch failures never created a container we own (the name may
        # belong to someone else on a collision)
        if session.handle is not None:
            await self._runner.remove(session.name)

    async def _teardown(self, session: TunnelSession, reason: str) -> bool:
        if session.state in (TunnelState.FAILED, TunnelState.CANCELLED):
            return False
        self._finish(session)
        self._transition(session, TunnelState.CANCELLED, EventLevel.NOTIFY)
        self._notify(session, f"Tunnel for port {session.port} stopped ({reason})", success=False)
        if session.handle is not None:
            await self._runner.remove(session.name)
        return True

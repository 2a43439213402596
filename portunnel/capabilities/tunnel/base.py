"""Shared types for the tunnel capability."""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from portunnel.capabilities.tunnel.controller import PollTimer
    from portunnel.capabilities.tunnel.log_scanner import LogScanner

MAX_PORT = 65535


class TunnelState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    POLLING = "polling"
    ACTIVE = "active"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {TunnelState.ACTIVE, TunnelState.FAILED, TunnelState.CANCELLED}
)


class FailureKind(str, Enum):
    """Why a session ended in ``FAILED``."""

    LAUNCH = "launch"    # tunnel process could not be started
    RUNTIME = "runtime"  # process reported an error while polling
    TIMEOUT = "timeout"  # no tunnel URL within the poll deadline


class TunnelError(RuntimeError):
    """Base error for tunnel operations."""


class TunnelLaunchError(TunnelError):
    """The tunnel process could not be started."""


class TunnelRuntimeError(TunnelError):
    """The tunnel process reported an error after it was started."""


@dataclass(frozen=True)
class LogOutput:
    """Accumulated output of the tunnel process, as returned by one fetch."""

    stdout: str
    stderr: str = ""


def make_session_name(port: int) -> str:
    """Generate a unique, docker-safe session (container) name."""
    return f"portunnel-{port}-{uuid.uuid4().hex[:8]}"


@dataclass(frozen=True)
class TunnelRequest:
    """A single user-initiated request to expose *port*.

    The credential is excluded from ``repr`` so it never ends up in logs
    or tracebacks.
    """

    port: int
    credential: str = field(repr=False)
    name: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise ValueError(f"port must be an integer, got {self.port!r}")
        if not 1 <= self.port <= MAX_PORT:
            raise ValueError(f"port must be between 1 and {MAX_PORT}, got {self.port}")
        if self.name is not None and not self.name.strip():
            raise ValueError("session name must not be blank")


@dataclass
class TunnelSession:
    """One attempt to expose one port. Owned by ``TunnelController``."""

    name: str
    port: int
    state: TunnelState = TunnelState.IDLE
    handle: str | None = None  # container id of the tunnel process
    resolved_url: str | None = None
    last_error: str | None = None
    failure_kind: FailureKind | None = None
    created_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    _timer: PollTimer | None = field(default=None, repr=False)
    _scanner: LogScanner | None = field(default=None, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def timer(self) -> PollTimer | None:
        return self._timer

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "port": self.port,
            "state": self.state.value,
            "url": self.resolved_url,
            "error": self.last_error,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "created_at": self.created_at,
            "finished_at": self.finished_at,
        }

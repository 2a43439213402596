from __future__ import annotations

import asyncio

import pytest

from portunnel.capabilities.tunnel.base import LogOutput
from portunnel.core.redact import SecretFilter


class FakeRunner:
    """In-memory TunnelRunnerPort.

    ``outputs`` is consumed one item per fetch; the last item repeats.
    Items may be LogOutput instances or exceptions to raise.
    """

    def __init__(self) -> None:
        self.outputs: list[LogOutput | BaseException] = []
        self.launch_error: BaseException | None = None
        self.launch_gate: asyncio.Event | None = None
        self.launched: list[tuple[str, int, str]] = []
        self.removed: list[str] = []
        self.fetches = 0

    async def launch(self, name: str, port: int, credential: str) -> str:
        self.launched.append((name, port, credential))
        if self.launch_gate is not None:
            await self.launch_gate.wait()
        if self.launch_error is not None:
            raise self.launch_error
        return f"cid-{name}"

    async def fetch_logs(self, name: str) -> LogOutput:
        self.fetches += 1
        if not self.outputs:
            return LogOutput(stdout="")
        item = self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def remove(self, name: str) -> bool:
        self.removed.append(name)
        return True


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture(autouse=True)
def _clear_secrets():
    """Registered secrets are class-wide; keep tests isolated."""
    SecretFilter.clear_secrets()
    yield
    SecretFilter.clear_secrets()

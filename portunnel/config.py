from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

_PREFIX = "PORTUNNEL_"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(_PREFIX + name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{_PREFIX}{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(_PREFIX + name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{_PREFIX}{name} must be an integer, got {raw!r}") from None


@dataclass
class Config:
    """Daemon settings. The ngrok auth token is never part of configuration."""

    dashboard_port: int = 7777
    docker_binary: str = "docker"
    docker_socket: str = "/var/run/docker.sock"
    tunnel_image: str = "ngrok/ngrok"
    poll_interval: float = 1.0
    poll_timeout: float = 60.0  # 0 disables
    launch_timeout: float = 120.0
    log_file: str = "/tmp/portunnel.log"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.poll_timeout < 0:
            raise ValueError("poll_timeout must not be negative")

    @classmethod
    def from_env(cls) -> Config:
        load_dotenv()
        return cls(
            dashboard_port=_env_int("DASHBOARD_PORT", 7777),
            docker_binary=os.environ.get(_PREFIX + "DOCKER_BINARY", "") or "docker",
            docker_socket=os.environ.get(_PREFIX + "DOCKER_SOCKET", "")
            or "/var/run/docker.sock",
            tunnel_image=os.environ.get(_PREFIX + "TUNNEL_IMAGE", "") or "ngrok/ngrok",
            poll_interval=_env_float("POLL_INTERVAL", 1.0),
            poll_timeout=_env_float("POLL_TIMEOUT", 60.0),
            launch_timeout=_env_float("LAUNCH_TIMEOUT", 120.0),
            log_file=os.environ.get(_PREFIX + "LOG_FILE", "") or "/tmp/portunnel.log",
            log_level=(os.environ.get(_PREFIX + "LOG_LEVEL", "") or "INFO").upper(),
        )

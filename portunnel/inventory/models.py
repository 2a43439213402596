"""Container records as reported by the Docker Engine API."""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class PortRecord:
    """One port binding of a container."""

    public_port: int | None
    protocol: str = "tcp"
    private_port: int | None = None
    ip: str | None = None

    @classmethod
    def from_api(cls, data: dict) -> PortRecord:
        public = data.get("PublicPort")
        private = data.get("PrivatePort")
        return cls(
            public_port=public if isinstance(public, int) and public > 0 else None,
            protocol=str(data.get("Type") or "tcp"),
            private_port=private if isinstance(private, int) else None,
            ip=data.get("IP"),
        )

    def describe(self) -> str:
        """e.g. ``(TCP) 8080`` or ``(UDP) -`` for an unpublished port."""
        port = self.public_port if self.public_port is not None else "-"
        return f"({self.protocol.upper()}) {port}"


@dataclass(frozen=True)
class ContainerRecord:
    names: tuple[str, ...]
    ports: tuple[PortRecord, ...] = field(default_factory=tuple)
    id: str = ""
    image: str = ""

    @classmethod
    def from_api(cls, data: dict) -> ContainerRecord:
        """Build from one entry of ``GET /containers/json``."""
        names = tuple(data.get("Names") or ())
        if not names:
            raise ValueError("container record has no names")
        return cls(
            names=names,
            ports=tuple(PortRecord.from_api(p) for p in data.get("Ports") or ()),
            id=data.get("Id", ""),
            image=data.get("Image", ""),
        )

    @property
    def display_name(self) -> str:
        """Canonical name without Docker's leading ``/``."""
        name = self.names[0]
        return name[1:] if name.startswith("/") else name

    @property
    def published_ports(self) -> list[int]:
        # Docker lists one binding per address family (0.0.0.0 and ::)
        seen: list[int] = []
        for p in self.ports:
            if p.public_port is not None and p.public_port not in seen:
                seen.append(p.public_port)
        return seen

    @property
    def is_exposable(self) -> bool:
        return any(p.public_port is not None for p in self.ports)

    def describe_ports(self) -> list[str]:
        return [p.describe() for p in self.ports]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.display_name,
            "names": list(self.names),
            "image": self.image,
            "published_ports": self.published_ports,
            "ports_display": self.describe_ports(),
            "ports": [
                {
                    "public_port": p.public_port,
                    "private_port": p.private_port,
                    "protocol": p.protocol,
                    "ip": p.ip,
                }
                for p in self.ports
            ],
        }


def exposable(records: list[ContainerRecord]) -> list[ContainerRecord]:
    """Keep only containers with a published port, preserving order."""
    return [r for r in records if r.is_exposable]

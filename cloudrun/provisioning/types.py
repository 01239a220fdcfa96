"""Shared data types for provisioning: the resource ledger and launch spec."""

from dataclasses import dataclass, field
from enum import Enum


class ResourceKind(str, Enum):
    """Provider resources a run can create, in creation order."""

    KEY_PAIR = "key_pair"
    SECURITY_GROUP = "security_group"
    SPOT_REQUEST = "spot_request"
    INSTANCE = "instance"


@dataclass
class InstanceSpec:
    """Everything a provider needs to launch the run's single instance."""

    instance_type: str
    image_id: str
    key_name: str
    network_rule_id: str


@dataclass
class ResourceLedger:
    """Record of the resources created for one run and how to reach the host.

    ``resources`` is the only input to teardown: an entry exists exactly while
    the provider resource it names exists.
    """

    provider: str
    host: str = ""
    username: str = ""
    key_file: str = ""
    resources: dict[str, str] = field(default_factory=dict)
    environment: dict[str, object] = field(default_factory=dict)

    @property
    def address(self) -> str:
        """SSH address string (user@host)."""
        return f"{self.username}@{self.host}" if self.username else self.host

    @property
    def is_empty(self) -> bool:
        return not self.resources

    def record(self, kind: ResourceKind, identifier: str) -> None:
        self.resources[ResourceKind(kind).value] = identifier

    def forget(self, kind: ResourceKind) -> None:
        self.resources.pop(ResourceKind(kind).value, None)

    def get(self, kind: ResourceKind) -> str | None:
        return self.resources.get(ResourceKind(kind).value)

    def to_dict(self) -> dict:
        """Serialize to a JSON-compatible dict."""
        return {
            "provider": self.provider,
            "host": self.host,
            "username": self.username,
            "key_file": self.key_file,
            "resources": dict(self.resources),
            "environment": dict(self.environment),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResourceLedger":
        """Deserialize from a dict produced by ``to_dict``."""
        if "provider" not in data:
            raise ValueError("Ledger data is missing 'provider'")
        return cls(
            provider=data["provider"],
            host=data.get("host", ""),
            username=data.get("username", ""),
            key_file=data.get("key_file", ""),
            resources={str(k): str(v) for k, v in (data.get("resources") or {}).items()},
            environment=dict(data.get("environment") or {}),
        )

"""Provider capability interface and registry.

The orchestrator only talks to providers through this interface. Each method
is a single provider call (or a provider-side wait) and raises
``ProviderError`` on failure. Deletion methods treat an already-absent
resource as success.
"""

from typing import Protocol

from cloudrun.provisioning.config import RunConfig
from cloudrun.provisioning.types import InstanceSpec


class Provider(Protocol):
    name: str
    default_username: str

    def create_credential_pair(self, name: str) -> tuple[str, str]:
        """Create a key pair; return (name, private key material)."""

    def create_network_rule(self, name: str, ports) -> str:
        """Create an ingress rule opening TCP ``ports``; return its id."""

    def resolve_latest_base_image(self, query: str | None) -> str:
        """Return the image id for ``query`` (provider default when None)."""

    def launch_instance(self, spec: InstanceSpec) -> str:
        """Launch an on-demand instance; return its id."""

    def launch_spot_instance(self, spec: InstanceSpec, price_ceiling: str) -> str:
        """Request a price-bounded spot instance; return the request id."""

    def await_spot_fulfillment(self, request_id: str) -> str:
        """Block until the spot request is fulfilled; return the instance id."""

    def await_ready(self, instance_id: str) -> None:
        """Block until the instance passes its readiness checks."""

    def instance_address(self, instance_id: str) -> str:
        """Return the public address used to reach the instance."""

    def bootstrap_commands(self, username: str) -> list[str]:
        """Commands that install and start the container runtime."""

    def terminate(self, instance_id: str) -> None: ...

    def cancel_spot_request(self, request_id: str) -> None: ...

    def delete_network_rule(self, rule_id: str) -> None: ...

    def delete_credential_pair(self, name: str) -> None: ...


def _aws(config: RunConfig, dry_run: bool) -> Provider:
    from cloudrun.provisioning.aws import AwsProvider

    return AwsProvider(region=config.region, dry_run=dry_run)


PROVIDERS = {
    "aws": _aws,
}


def make_provider(name: str, config: RunConfig, dry_run: bool = False) -> Provider:
    """Construct the provider variant registered under ``name``."""
    factory = PROVIDERS.get(name)
    if factory is None:
        raise ValueError(f"Unknown provider: {name}")
    return factory(config, dry_run)

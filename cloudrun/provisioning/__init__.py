"""Ephemeral instance provisioning: ledger, configuration, providers, SSH."""

from cloudrun.provisioning.config import (
    PropertySources,
    RunConfig,
    harvest_environment,
    load_project_properties,
    missing_required,
    parse_properties,
    resolve,
    resolve_config,
)
from cloudrun.provisioning.orchestrator import (
    ProvisioningState,
    bootstrap,
    create_resources,
    destroy_resources,
    open_session,
)
from cloudrun.provisioning.provider import PROVIDERS, Provider, make_provider
from cloudrun.provisioning.ssh import SshSession
from cloudrun.provisioning.state import load_ledger, remove_ledger, save_ledger
from cloudrun.provisioning.types import InstanceSpec, ResourceKind, ResourceLedger

__all__ = [
    "ResourceLedger",
    "ResourceKind",
    "InstanceSpec",
    "PropertySources",
    "RunConfig",
    "resolve",
    "resolve_config",
    "missing_required",
    "harvest_environment",
    "load_project_properties",
    "parse_properties",
    "Provider",
    "PROVIDERS",
    "make_provider",
    "SshSession",
    "ProvisioningState",
    "create_resources",
    "destroy_resources",
    "open_session",
    "bootstrap",
    "save_ledger",
    "load_ledger",
    "remove_ledger",
]

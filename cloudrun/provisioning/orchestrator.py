"""Provisioning orchestrator: create resources in order, destroy them in reverse.

Each creation step makes one provider call and records the resulting
identifier in the ledger before the next step starts, so a failure at any
point leaves every created resource recoverable for teardown. Teardown only
acts on identifiers present in the ledger and removes each entry right after
its resource is deleted, which makes it safe to run on a partial ledger and
safe to run twice.
"""

import logging
import os
import uuid
from enum import Enum

from cloudrun.errors import (
    BootstrapError,
    CloudRunError,
    ConfigurationError,
    ProviderError,
    ProvisioningStepError,
    TeardownStepError,
)
from cloudrun.provisioning.config import harvest_environment, missing_required
from cloudrun.provisioning.ssh import SshSession
from cloudrun.provisioning.types import InstanceSpec, ResourceKind, ResourceLedger
from cloudrun.redact import register_secret

logger = logging.getLogger(__name__)


class ProvisioningState(str, Enum):
    IDLE = "idle"
    CREATING_CREDENTIAL = "creating-credential"
    CREATING_NETWORK_RULE = "creating-network-rule"
    LAUNCHING_INSTANCE = "launching-instance"
    AWAITING_READY = "awaiting-ready"
    BOOTSTRAPPING = "bootstrapping"
    READY = "ready"
    TERMINATING_INSTANCE = "terminating-instance"
    DELETING_NETWORK_RULE = "deleting-network-rule"
    DELETING_CREDENTIAL = "deleting-credential"


def _enter(state, on_state):
    logger.debug(f"state -> {state.value}")
    if on_state is not None:
        on_state(state)
    return state


def open_session(ledger, session_factory=None):
    """Open a session to the ledger's host. Use it as a context manager."""
    factory = session_factory or SshSession.for_ledger
    return factory(ledger)


def bootstrap(ledger, commands, session_factory=None, dry_run=False):
    """Run ``commands`` in order on the ledger's host.

    Raises:
        BootstrapError: a command failed or the session could not be used.
    """
    if dry_run:
        for command in commands:
            logger.info(f"[dry-run] ssh {ledger.address}: {command}")
        return

    logger.info(f"Bootstrapping {ledger.address}...")
    try:
        with open_session(ledger, session_factory) as session:
            for command in commands:
                logger.info(f"  $ {command}")
                session.execute(command)
    except CloudRunError as e:
        raise BootstrapError(f"Bootstrap of {ledger.address} failed: {e}") from e


def _write_key_file(output_dir, key_name, material):
    os.makedirs(output_dir, exist_ok=True)
    path = os.path.join(output_dir, f"{key_name}.pem")
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(material)
    return path


def _launch(provider, spec, spot_price, ledger):
    """Launch on-demand, or through a spot request when a price ceiling is set."""
    if spot_price:
        request_id = provider.launch_spot_instance(spec, spot_price)
        ledger.record(ResourceKind.SPOT_REQUEST, request_id)
        instance_id = provider.await_spot_fulfillment(request_id)
    else:
        instance_id = provider.launch_instance(spec)
    ledger.record(ResourceKind.INSTANCE, instance_id)
    return instance_id


def create_resources(provider, config, ledger=None, session_factory=None, dry_run=False, on_state=None):
    """Provision the run's instance and bootstrap it with Docker.

    Args:
        provider: a Provider implementation.
        config: the resolved RunConfig.
        ledger: optional ledger to populate; pass one in to keep access to it
            when this function raises.
        session_factory: callable(ledger) -> session, defaults to SshSession.
        on_state: optional callback receiving each ProvisioningState.

    Returns:
        The populated ResourceLedger.

    Raises:
        ConfigurationError: before any provider call, if required settings are unset.
        ProvisioningStepError: a provider call or readiness wait failed.
        BootstrapError: a bootstrap command failed. The instance exists.
    """
    missing = missing_required(config)
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    if ledger is None:
        ledger = ResourceLedger(provider=provider.name)
    ledger.environment = harvest_environment(config)
    state = _enter(ProvisioningState.IDLE, on_state)
    prefix = config.resource_prefix

    try:
        state = _enter(ProvisioningState.CREATING_CREDENTIAL, on_state)
        key_name, material = provider.create_credential_pair(f"{prefix}-{uuid.uuid4()}")
        register_secret(material)
        ledger.record(ResourceKind.KEY_PAIR, key_name)
        if dry_run:
            ledger.key_file = os.path.join(config.output_dir, f"{key_name}.pem")
            logger.info(f"[dry-run] write key file {ledger.key_file}")
        else:
            ledger.key_file = _write_key_file(config.output_dir, key_name, material)

        state = _enter(ProvisioningState.CREATING_NETWORK_RULE, on_state)
        try:
            rule_id = provider.create_network_rule(f"{prefix}-sg-{uuid.uuid4()}", config.ports)
        except ProviderError as e:
            if e.resource_id:
                ledger.record(ResourceKind.SECURITY_GROUP, e.resource_id)
            raise
        ledger.record(ResourceKind.SECURITY_GROUP, rule_id)

        state = _enter(ProvisioningState.LAUNCHING_INSTANCE, on_state)
        image_id = provider.resolve_latest_base_image(config.image)
        spec = InstanceSpec(
            instance_type=config.instance_type,
            image_id=image_id,
            key_name=key_name,
            network_rule_id=rule_id,
        )
        instance_id = _launch(provider, spec, config.spot_price, ledger)

        state = _enter(ProvisioningState.AWAITING_READY, on_state)
        provider.await_ready(instance_id)
        ledger.host = provider.instance_address(instance_id)
        ledger.username = config.username or provider.default_username
    except (ProviderError, OSError) as e:
        raise ProvisioningStepError(state, str(e)) from e

    _enter(ProvisioningState.BOOTSTRAPPING, on_state)
    bootstrap(ledger, provider.bootstrap_commands(ledger.username), session_factory, dry_run=dry_run)

    _enter(ProvisioningState.READY, on_state)
    logger.info(f"Instance {ledger.get(ResourceKind.INSTANCE)} is ready at {ledger.address}")
    return ledger


def _delete_key_file(path):
    if not path:
        return
    try:
        os.remove(path)
        logger.info(f"Removed key file {path}")
    except FileNotFoundError:
        pass


def destroy_resources(provider, ledger, dry_run=False, on_state=None):
    """Delete every resource recorded in ``ledger``, newest first.

    Missing entries are skipped. Each entry is removed from the ledger as soon
    as its resource is gone. Nothing is retried.

    Raises:
        TeardownStepError: a deletion call failed. The ledger still holds
            the entries that were not deleted.
    """
    steps = [
        (ProvisioningState.TERMINATING_INSTANCE, ResourceKind.SPOT_REQUEST, provider.cancel_spot_request),
        (ProvisioningState.TERMINATING_INSTANCE, ResourceKind.INSTANCE, provider.terminate),
        (ProvisioningState.DELETING_NETWORK_RULE, ResourceKind.SECURITY_GROUP, provider.delete_network_rule),
        (ProvisioningState.DELETING_CREDENTIAL, ResourceKind.KEY_PAIR, provider.delete_credential_pair),
    ]
    for state, kind, delete in steps:
        identifier = ledger.get(kind)
        if identifier is None:
            continue
        _enter(state, on_state)
        logger.info(f"Deleting {kind.value} {identifier}...")
        try:
            delete(identifier)
        except ProviderError as e:
            raise TeardownStepError(state, str(e)) from e
        ledger.forget(kind)

    if dry_run:
        logger.info(f"[dry-run] remove key file {ledger.key_file}")
    else:
        _delete_key_file(ledger.key_file)
    _enter(ProvisioningState.IDLE, on_state)

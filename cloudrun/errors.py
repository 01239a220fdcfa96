"""Exception types raised by provisioning, teardown and remote sessions."""


class CloudRunError(Exception):
    """Base class for all cloudrun failures."""


class ConfigurationError(CloudRunError):
    """A required configuration value could not be resolved."""


class ProviderError(CloudRunError):
    """A provider API call or readiness wait failed.

    ``resource_id`` names a resource the failed call created and could not
    clean up, so the caller can still record it for teardown.
    """

    def __init__(self, message, resource_id=None):
        super().__init__(message)
        self.resource_id = resource_id


class ProvisioningStepError(CloudRunError):
    """A creation step failed. Identifiers recorded so far stay in the ledger."""

    def __init__(self, state, message):
        super().__init__(f"{state.value}: {message}")
        self.state = state


class BootstrapError(CloudRunError):
    """A remote command failed while bootstrapping the instance."""


class TeardownStepError(CloudRunError):
    """A deletion step failed. Remaining identifiers stay in the ledger."""

    def __init__(self, state, message):
        super().__init__(f"{state.value}: {message}")
        self.state = state


class TransportError(CloudRunError):
    """The SSH connection could not be established or was lost."""


class RemoteExecutionError(CloudRunError):
    """A remote command completed with a non-zero exit status."""

    def __init__(self, command, exit_status):
        super().__init__(f"Remote command exited with status {exit_status}: {command}")
        self.command = command
        self.exit_status = exit_status


class TransferError(CloudRunError):
    """The scp sink rejected an upload or sent an unexpected acknowledgement."""

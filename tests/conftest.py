"""Shared pytest fixtures for all test modules."""

import os
import subprocess
import sys

import pytest

from cloudrun.errors import ProviderError, RemoteExecutionError
from cloudrun.provisioning.config import RunConfig

PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def run_cli(project_root):
    """Return a callable that invokes the cloudrun CLI as a subprocess."""

    def _run(*args, cwd=None, env=None):
        env = {**os.environ, **(env or {})}
        env["PYTHONPATH"] = project_root + os.pathsep + env.get("PYTHONPATH", "")
        result = subprocess.run(
            [sys.executable, "-m", "cloudrun.cloudrun", *args],
            capture_output=True,
            text=True,
            cwd=cwd or project_root,
            env=env,
        )
        return result.returncode, result.stdout, result.stderr

    return _run


# ── Fakes ───────────────────────────────────────────────────────────


class FakeProvider:
    """In-memory provider that records every call in order.

    ``fail_on`` names a method that raises ProviderError instead of returning.
    """

    name = "fake"
    default_username = "fake-user"

    def __init__(self, fail_on=None):
        self.calls = []
        self.fail_on = fail_on

    def _call(self, method, *args, result=None):
        self.calls.append((method, *args))
        if method == self.fail_on:
            raise ProviderError(f"{method} failed")
        return result

    @property
    def methods(self):
        return [c[0] for c in self.calls]

    def create_credential_pair(self, name):
        return self._call("create_credential_pair", name, result=(name, "PRIVATE KEY"))

    def create_network_rule(self, name, ports):
        return self._call("create_network_rule", name, tuple(ports), result="sg-1")

    def resolve_latest_base_image(self, query):
        return self._call("resolve_latest_base_image", query, result="ami-1")

    def launch_instance(self, spec):
        return self._call("launch_instance", spec, result="i-1")

    def launch_spot_instance(self, spec, price_ceiling):
        return self._call("launch_spot_instance", spec, price_ceiling, result="sir-1")

    def await_spot_fulfillment(self, request_id):
        return self._call("await_spot_fulfillment", request_id, result="i-1")

    def await_ready(self, instance_id):
        return self._call("await_ready", instance_id)

    def instance_address(self, instance_id):
        return self._call("instance_address", instance_id, result="host.example.com")

    def bootstrap_commands(self, username):
        return ["install docker", "start docker", f"usermod {username}"]

    def terminate(self, instance_id):
        return self._call("terminate", instance_id)

    def cancel_spot_request(self, request_id):
        return self._call("cancel_spot_request", request_id)

    def delete_network_rule(self, rule_id):
        return self._call("delete_network_rule", rule_id)

    def delete_credential_pair(self, name):
        return self._call("delete_credential_pair", name)


class FakeSession:
    """Session double that records executed commands and whether it was closed."""

    def __init__(self, ledger, fail_on=None):
        self.ledger = ledger
        self.fail_on = fail_on
        self.executed = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True
        return False

    def execute(self, command, stdin=None, sink=None):
        self.executed.append(command)
        if command == self.fail_on:
            raise RemoteExecutionError(command, 1)


@pytest.fixture
def fake_provider():
    """Return a factory for FakeProvider instances."""
    return FakeProvider


@pytest.fixture
def session_factory():
    """Return a session factory whose sessions are collected in ``.sessions``."""

    class _Factory:
        def __init__(self):
            self.sessions = []
            self.fail_on = None

        def __call__(self, ledger):
            session = FakeSession(ledger, fail_on=self.fail_on)
            self.sessions.append(session)
            return session

    return _Factory()


@pytest.fixture
def run_config(tmp_path):
    """A complete RunConfig writing into a temp output directory."""
    return RunConfig(output_dir=str(tmp_path / "out"))

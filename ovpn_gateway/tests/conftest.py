"""Test fixtures for ovpn_gateway tests."""

from unittest.mock import MagicMock

import pytest

from ovpn_gateway.lib.config import GatewayConfig
from ovpn_gateway.lib.models import ProgressEvent, ServerTarget, Severity
from ovpn_gateway.lib.workflow import ProvisioningWorkflow
from ovpn_gateway.tests.stub_remote import StubRemoteHost, ssh_private_key_pem


class RecordingProgressSink:
    """Progress sink that keeps every published event."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def publish(self, message: str, severity: Severity | str = Severity.INFO) -> ProgressEvent:
        event = ProgressEvent(message=message, severity=Severity(severity))
        self.events.append(event)
        return event

    def messages(self, severity: Severity | None = None) -> list[str]:
        return [e.message for e in self.events if severity is None or e.severity == severity]


@pytest.fixture
def app1_target() -> ServerTarget:
    """Return the app1 gateway registry entry."""
    return ServerTarget(
        key="app1",
        name="vpn-weu-01",
        host="10.1.0.4",
        username="ovpnadmin",
        public_host="20.4.208.94",
    )


@pytest.fixture
def gateway_config(app1_target: ServerTarget) -> GatewayConfig:
    """Return test gateway configuration with a short command timeout."""
    return GatewayConfig(
        ssh_secret_name="/ovpn-gateway/ssh-private-key",
        ssh_username="ovpnadmin",
        servers={"app1": app1_target},
        ca_password_secret_name="/ovpn-gateway/ca-password",
        command_timeout_ms=300,
    )


@pytest.fixture
def stub_host() -> StubRemoteHost:
    """Return a stub gateway with an empty PKI."""
    return StubRemoteHost()


@pytest.fixture
def mock_secrets() -> MagicMock:
    """Return mocked secret store holding an SSH key and CA passphrase."""
    secrets = MagicMock()
    secrets.get_ssh_private_key.return_value = ssh_private_key_pem()
    secrets.get_secret.return_value = "ca-passphrase"
    return secrets


@pytest.fixture
def progress() -> RecordingProgressSink:
    """Return progress sink recording events."""
    return RecordingProgressSink()


@pytest.fixture
def workflow(
    gateway_config: GatewayConfig,
    mock_secrets: MagicMock,
    progress: RecordingProgressSink,
    stub_host: StubRemoteHost,
) -> ProvisioningWorkflow:
    """Return workflow wired to the stub gateway."""
    return ProvisioningWorkflow(
        config=gateway_config,
        secrets=mock_secrets,
        progress=progress,
        session_factory=stub_host.open_session,
    )

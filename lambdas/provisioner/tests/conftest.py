"""Test fixtures for provisioner lambda tests."""

from collections.abc import Generator
from unittest.mock import MagicMock, patch

import pytest

from ovpn_gateway.lib.progress import BroadcastProgressSink
from ovpn_gateway.tests.stub_remote import StubRemoteHost, ssh_private_key_pem
from src.provisioner._types import LambdaContext


class MockLambdaContext(LambdaContext):
    """Mock Lambda context for testing."""

    function_name = "ovpn-provisioner-lambda"
    memory_limit_in_mb = 256
    invoked_function_arn = "arn:aws:lambda:eu-west-2:123456789012:function:ovpn-provisioner-lambda"
    aws_request_id = "test-request-id-12345"


@pytest.fixture
def mock_context() -> LambdaContext:
    """Provide mock Lambda context."""
    return MockLambdaContext()


@pytest.fixture
def mock_env_vars() -> dict[str, str]:
    """Gateway environment with two registered servers."""
    return {
        "SSH_SECRET_NAME": "/ovpn-gateway/ssh-private-key",
        "SSH_USERNAME": "ovpnadmin",
        "CA_PASSWORD_SECRET_NAME": "/ovpn-gateway/ca-password",
        "COMMAND_TIMEOUT_MS": "500",
        "OVPN_SERVER1_NAME": "vpn-weu-01",
        "OVPN_SERVER1_IP_PUBLIC": "20.4.208.94",
        "OVPN_SERVER1_IP_PRIVATE": "10.1.0.4",
        "OVPN_SERVER2_NAME": "vpn-neu-01",
        "OVPN_SERVER2_IP_PUBLIC": "52.178.1.10",
        "OVPN_SERVER2_IP_PRIVATE": "10.2.0.4",
    }


@pytest.fixture
def gateway_env(
    mock_env_vars: dict[str, str], monkeypatch: pytest.MonkeyPatch
) -> dict[str, str]:
    """Apply the gateway environment for one test."""
    for key, value in mock_env_vars.items():
        monkeypatch.setenv(key, value)
    return mock_env_vars


@pytest.fixture
def stub_host() -> StubRemoteHost:
    """Return a stub gateway with an empty PKI."""
    return StubRemoteHost()


@pytest.fixture
def mock_secrets() -> MagicMock:
    """Return mocked secret store client."""
    secrets = MagicMock()
    secrets.get_ssh_private_key.return_value = ssh_private_key_pem()
    secrets.get_secret.return_value = "ca-passphrase"
    return secrets


@pytest.fixture
def remote(stub_host: StubRemoteHost, mock_secrets: MagicMock) -> Generator[StubRemoteHost]:
    """Route the handler's secret store and SSH sessions to the stubs."""
    with (
        patch("src.provisioner.handler._get_secrets_client", return_value=mock_secrets),
        patch("src.provisioner.handler._open_session", stub_host.open_session),
    ):
        yield stub_host


@pytest.fixture(autouse=True)
def progress_channel() -> Generator[BroadcastProgressSink]:
    """Give every test a fresh process-wide progress channel."""
    channel = BroadcastProgressSink()
    with patch("src.provisioner.handler.PROGRESS", channel):
        yield channel


@pytest.fixture
def mock_management_client() -> Generator[MagicMock]:
    """Patch the API Gateway management client used by WebSocket subscribers."""
    client = MagicMock()
    with patch("ovpn_gateway.lib.progress._get_management_client", return_value=client):
        yield client


@pytest.fixture
def generate_request() -> dict[str, str]:
    """Valid provisioning request body."""
    return {
        "server": "app1",
        "customerName": "acme01",
        "customerNetwork": "192.168.10.0/24",
        "azureSubnet": "10.20.0.0/16",
    }

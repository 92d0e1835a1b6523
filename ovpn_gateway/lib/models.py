"""Data models for provisioning requests, remote commands and profiles."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


@dataclass(frozen=True)
class Cidr:
    """IPv4 address with prefix length, as typed by the user."""

    octets: tuple[int, int, int, int]
    prefix_length: int

    @property
    def address(self) -> str:
        return ".".join(str(octet) for octet in self.octets)

    def __str__(self) -> str:
        return f"{self.address}/{self.prefix_length}"


@dataclass(frozen=True)
class NetworkMask:
    """Network address and dotted-decimal mask derived from a Cidr."""

    network: str
    mask: str


@dataclass(frozen=True)
class ServerTarget:
    """Connection target for one VPN gateway in the host registry."""

    key: str
    name: str
    host: str
    username: str
    public_host: str = ""
    port: int = 22

    @property
    def endpoint_host(self) -> str:
        """Host written to the client profile ``remote`` line."""
        return self.public_host or self.host


@dataclass(frozen=True)
class ProvisioningRequest:
    """Validated provisioning input. Created per HTTP request."""

    server: ServerTarget
    customer_name: str
    customer_network: Cidr
    azure_subnet: Cidr


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one remote command."""

    output: str
    exit_code: int
    timed_out: bool = False


@dataclass
class ClientProfile:
    """Fields of a client profile document.

    PEM fields default to empty so a missing artifact renders as an empty block.
    """

    server_endpoint: str
    transport_protocol: str = "udp"
    port: int = 1194
    ca_cert: str = ""
    client_cert: str = ""
    client_key: str = ""


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    """Progress message broadcast to subscribers while a workflow runs."""

    message: str
    severity: Severity = Severity.INFO
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, str]:
        return {
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
            "message": self.message,
            "type": self.severity.value,
        }


class WorkflowState(str, Enum):
    VALIDATING = "Validating"
    ACQUIRING_CREDENTIAL = "AcquiringCredential"
    CONNECTING = "Connecting"
    CLEANING_UP = "CleaningUp"
    GENERATING = "Generating"
    CONFIGURING_ROUTING = "ConfiguringRouting"
    FETCHING_ARTIFACTS = "FetchingArtifacts"
    ASSEMBLING = "Assembling"
    DONE = "Done"
    FAILED = "Failed"


@dataclass(frozen=True)
class ProvisioningResult:
    """Successful workflow output handed back to the transport layer."""

    customer_name: str
    profile: str
    serial_number: str = ""
    expiry: str = ""

    @property
    def filename(self) -> str:
        return f"{self.customer_name}.ovpn"

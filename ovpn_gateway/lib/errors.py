"""Error taxonomy for provisioning failures.

Each error carries the taxonomy ``code`` reported to HTTP callers and the
``status_code`` it maps to. ``details`` must only ever hold values that are
safe to return to a browser: no PEM material, no secret values, no raw
remote output.
"""

from typing import Any

from .models import CommandResult


class ProvisioningError(Exception):
    """Base class for every failure surfaced by the gateway."""

    code = "ProvisioningError"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = dict(details or {})

    def to_payload(self) -> dict[str, Any]:
        """Build the JSON error body returned to HTTP callers."""
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidInputError(ProvisioningError):
    """Request data rejected before any remote side effect."""

    code = "InvalidInput"
    status_code = 400


class InvalidFormatError(InvalidInputError):
    """CIDR text is not ``a.b.c.d/n`` with valid octets and prefix length."""

    code = "InvalidFormat"


class InvalidCharactersError(InvalidInputError):
    """Name contains characters outside ``[A-Za-z0-9_-]``."""

    code = "InvalidCharacters"


class UnknownServerError(InvalidInputError):
    """Server key is not present in the host registry."""

    code = "UnknownServer"


class ConfigurationError(ProvisioningError):
    code = "ConfigurationError"
    status_code = 500


class CredentialUnavailableError(ProvisioningError):
    """Secret store unreachable, secret missing, or key material malformed."""

    code = "CredentialUnavailable"
    status_code = 502


class RemoteConnectionError(ProvisioningError):
    """SSH handshake or authentication failure."""

    code = "ConnectionError"
    status_code = 502


class CommandError(ProvisioningError):
    """A remote command did not complete cleanly."""

    code = "CommandError"
    status_code = 502

    def __init__(self, message: str, command: str, output: str = "") -> None:
        super().__init__(message)
        self.command = command
        self.output = output


class CommandFailedError(CommandError):
    code = "CommandFailed"
    status_code = 502

    def __init__(self, command: str, exit_code: int, output: str = "") -> None:
        super().__init__(f"Command failed [{exit_code}]", command, output)
        self.exit_code = exit_code
        self.result = CommandResult(output=output, exit_code=exit_code)
        self.details["exitCode"] = exit_code


class CommandTimeoutError(CommandError):
    code = "CommandTimeout"
    status_code = 504

    def __init__(self, command: str, timeout_ms: int, output: str = "") -> None:
        super().__init__(f"Command timed out after {timeout_ms} ms", command, output)
        self.timeout_ms = timeout_ms
        self.result = CommandResult(output=output, exit_code=-1, timed_out=True)
        self.details["timeoutMs"] = timeout_ms


class CertificateError(ProvisioningError):
    """Certificate request or signing failed; nothing was configured."""

    code = "CertificateError"
    status_code = 502


class AssemblyError(ProvisioningError):
    """Fetched artifact text is not usable PEM."""

    code = "AssemblyError"
    status_code = 500

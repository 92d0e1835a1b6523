"""Gateway configuration dataclasses, loaded from environment variables."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from .errors import ConfigurationError, UnknownServerError
from .models import ServerTarget


@dataclass(frozen=True)
class EasyRsaPaths:
    """Locations on the VPN gateway."""

    easyrsa_dir: str = "/etc/openvpn/easy-rsa"
    ccd_dir: str = "/etc/openvpn/ccd"
    tunnel_interface: str = "tun0"

    @property
    def pki_dir(self) -> str:
        return f"{self.easyrsa_dir}/pki"

    @property
    def ca_cert(self) -> str:
        return f"{self.pki_dir}/ca.crt"

    def issued_cert(self, customer_name: str) -> str:
        return f"{self.pki_dir}/issued/{customer_name}.crt"

    def private_key(self, customer_name: str) -> str:
        return f"{self.pki_dir}/private/{customer_name}.key"

    def request(self, customer_name: str) -> str:
        return f"{self.pki_dir}/reqs/{customer_name}.req"

    def ccd_entry(self, customer_name: str) -> str:
        return f"{self.ccd_dir}/{customer_name}"


@dataclass(frozen=True)
class ProfileSettings:
    """Static values written into every client profile."""

    protocol: str = "udp"
    port: int = 1194


@dataclass(frozen=True)
class GatewayConfig:
    """Runtime configuration for one invocation."""

    ssh_secret_name: str
    ssh_username: str
    servers: dict[str, ServerTarget] = field(default_factory=dict)
    ca_password_secret_name: str | None = None
    region: str = "eu-west-2"
    ssh_port: int = 22
    connect_timeout: float = 20.0
    command_timeout_ms: int = 30000
    heartbeat_interval_seconds: int = 30
    paths: EasyRsaPaths = field(default_factory=EasyRsaPaths)
    profile: ProfileSettings = field(default_factory=ProfileSettings)

    def resolve_server(self, server_key: str) -> ServerTarget:
        """Look up the connection target for a server key.

        Raises:
            UnknownServerError: If the key is not registered
        """
        target = self.servers.get(server_key) if isinstance(server_key, str) else None
        if target is None:
            raise UnknownServerError(
                f"Unknown server: {server_key}",
                {"server": str(server_key), "known": sorted(self.servers)},
            )
        return target

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "GatewayConfig":
        """Build configuration from environment variables.

        Raises:
            ConfigurationError: If a required variable is missing or malformed
        """
        env = os.environ if environ is None else environ

        ssh_secret_name = env.get("SSH_SECRET_NAME", "")
        if not ssh_secret_name:
            raise ConfigurationError("SSH_SECRET_NAME is not configured")

        ssh_username = env.get("SSH_USERNAME", "")
        if not ssh_username:
            raise ConfigurationError("SSH_USERNAME is not configured")

        ssh_port = _int_setting(env, "SSH_PORT", 22)

        return cls(
            ssh_secret_name=ssh_secret_name,
            ssh_username=ssh_username,
            servers=load_server_registry(env, ssh_username, ssh_port),
            ca_password_secret_name=(
                env.get("CA_PASSWORD_SECRET_NAME") or env.get("CA_PASSWORD") or None
            ),
            region=env.get("AWS_REGION", "eu-west-2"),
            ssh_port=ssh_port,
            connect_timeout=float(_int_setting(env, "SSH_CONNECT_TIMEOUT", 20)),
            command_timeout_ms=_int_setting(env, "COMMAND_TIMEOUT_MS", 30000),
            heartbeat_interval_seconds=_int_setting(env, "HEARTBEAT_INTERVAL_SECONDS", 30),
            paths=EasyRsaPaths(
                easyrsa_dir=env.get("EASYRSA_DIR", "/etc/openvpn/easy-rsa").rstrip("/"),
                ccd_dir=env.get("CCD_DIR", "/etc/openvpn/ccd").rstrip("/"),
                tunnel_interface=env.get("TUNNEL_INTERFACE", "tun0"),
            ),
            profile=ProfileSettings(
                protocol=env.get("OVPN_PROTOCOL", "udp"),
                port=_int_setting(env, "OVPN_PORT", 1194),
            ),
        )


def load_server_registry(
    env: Mapping[str, str], username: str, port: int = 22
) -> dict[str, ServerTarget]:
    """Read ``OVPN_SERVER<n>_*`` variables into a registry keyed ``app<n>``.

    Scanning stops at the first index with no variables at all. Servers
    without a private IP are skipped.
    """
    servers: dict[str, ServerTarget] = {}
    index = 1
    while any(
        f"OVPN_SERVER{index}_{suffix}" in env for suffix in ("NAME", "IP_PUBLIC", "IP_PRIVATE")
    ):
        key = f"app{index}"
        private_ip = env.get(f"OVPN_SERVER{index}_IP_PRIVATE", "")
        if private_ip:
            servers[key] = ServerTarget(
                key=key,
                name=env.get(f"OVPN_SERVER{index}_NAME") or key,
                host=private_ip,
                username=username,
                public_host=env.get(f"OVPN_SERVER{index}_IP_PUBLIC", ""),
                port=port,
            )
        index += 1
    return servers


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e

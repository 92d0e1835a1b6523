"""SSH session handling and the remote command runner."""

import io
import time

import paramiko

from .errors import (
    CommandFailedError,
    CommandTimeoutError,
    CredentialUnavailableError,
    RemoteConnectionError,
)
from .logging_config import LOGGER
from .models import CommandResult, ServerTarget

DEFAULT_COMMAND_TIMEOUT_MS = 30000
POLL_INTERVAL_SECONDS = 0.05
_RECV_BUFFER = 32768
_KEY_CLASSES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)


def load_private_key(key_material: str) -> paramiko.PKey:
    """Parse PEM/OpenSSH private key text into a paramiko key.

    Raises:
        CredentialUnavailableError: If no supported key type can parse it
    """
    for key_class in _KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(key_material))
        except (paramiko.SSHException, ValueError):
            continue
    raise CredentialUnavailableError("SSH private key could not be parsed")


class RemoteSession:
    """One authenticated SSH connection to one gateway.

    Owned by a single workflow. Use as a context manager so the connection is
    closed on every exit path.
    """

    def __init__(
        self, target: ServerTarget, private_key: paramiko.PKey, timeout: float = 20.0
    ) -> None:
        self.target = target
        self._private_key = private_key
        self._timeout = timeout
        self._client: paramiko.SSHClient | None = None

    def __enter__(self) -> "RemoteSession":
        if self._client is None:
            self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return self._client is not None

    def connect(self) -> "RemoteSession":
        """Open the SSH connection.

        Raises:
            RemoteConnectionError: On handshake, authentication or socket failure
        """
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.target.host,
                port=self.target.port,
                username=self.target.username,
                pkey=self._private_key,
                timeout=self._timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise RemoteConnectionError(
                f"SSH connection to {self.target.name} failed: {e}",
                {"server": self.target.key},
            ) from e

        self._client = client
        LOGGER.info(
            "SSH connected to %s (%s) as %s",
            self.target.name,
            self.target.host,
            self.target.username,
        )
        return self

    def open_channel(self) -> paramiko.Channel:
        """Open a new exec channel on the shared transport."""
        transport = self._client.get_transport() if self._client else None
        if transport is None or not transport.is_active():
            raise RemoteConnectionError(
                f"SSH session to {self.target.name} is not open", {"server": self.target.key}
            )
        try:
            return transport.open_session()
        except paramiko.SSHException as e:
            raise RemoteConnectionError(
                f"Could not open channel on {self.target.name}: {e}", {"server": self.target.key}
            ) from e

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            LOGGER.info("SSH connection to %s closed", self.target.name)


def open_session(
    target: ServerTarget, private_key: paramiko.PKey, timeout: float = 20.0
) -> RemoteSession:
    """Connect and return a RemoteSession for ``target``."""
    return RemoteSession(target, private_key, timeout=timeout).connect()


def run_command(
    session: RemoteSession,
    command: str,
    timeout_ms: int = DEFAULT_COMMAND_TIMEOUT_MS,
    stdin_data: str | None = None,
) -> CommandResult:
    """Run one command on the remote host and wait for it to finish.

    Stdout and stderr chunks are appended to a single buffer in arrival order.
    The channel is closed on every path.

    Args:
        session: Open remote session
        command: Command text, sent verbatim
        timeout_ms: Ceiling for the whole command
        stdin_data: Optional text written to the command's stdin, which is
            then closed

    Returns:
        CommandResult with the trimmed combined output

    Raises:
        CommandTimeoutError: If the command does not exit within ``timeout_ms``
        CommandFailedError: If the command exits non-zero
    """
    context = {"server": session.target.key}
    LOGGER.info("Executing on %s: %s", session.target.name, command, extra=context)
    started = time.monotonic()
    channel = session.open_channel()
    chunks: list[bytes] = []
    deadline = time.monotonic() + timeout_ms / 1000

    try:
        channel.exec_command(command)
        if stdin_data is not None:
            channel.sendall(stdin_data.encode("utf-8"))
            channel.shutdown_write()

        while True:
            received = False
            if channel.recv_ready():
                chunks.append(channel.recv(_RECV_BUFFER))
                received = True
            if channel.recv_stderr_ready():
                chunks.append(channel.recv_stderr(_RECV_BUFFER))
                received = True
            if not received and channel.exit_status_ready():
                break
            if time.monotonic() >= deadline:
                output = _decode(chunks)
                LOGGER.warning(
                    "Command timed out after %d ms: %s", timeout_ms, command, extra=context
                )
                raise CommandTimeoutError(command, timeout_ms, output)
            if not received:
                time.sleep(POLL_INTERVAL_SECONDS)

        exit_code = channel.recv_exit_status()
    except paramiko.SSHException as e:
        raise RemoteConnectionError(
            f"SSH channel error on {session.target.name}: {e}", {"server": session.target.key}
        ) from e
    finally:
        channel.close()

    output = _decode(chunks)
    duration_ms = int((time.monotonic() - started) * 1000)
    LOGGER.info(
        "Command exited %d: %s",
        exit_code,
        command,
        extra={**context, "exit_code": exit_code, "duration_ms": duration_ms},
    )
    if exit_code != 0:
        raise CommandFailedError(command, exit_code, output)
    return CommandResult(output=output, exit_code=exit_code)


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", "replace").strip()

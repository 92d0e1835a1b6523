"""Provisioning workflow: revoke, re-issue and route one customer's VPN client.

The workflow runs strictly in order over a single SSH session:

    Validating -> AcquiringCredential -> Connecting -> CleaningUp -> Generating
    -> ConfiguringRouting -> FetchingArtifacts -> Assembling -> Done

Any failure moves it to Failed. The session is closed before Assembling and
on every failure path. Nothing remote runs before Connecting, so invalid
input and credential problems never touch the gateway.
"""

import shlex
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

import paramiko

from .cert_utils import (
    certificate_summary,
    check_certificate,
    check_private_key,
    extract_certificate_block,
)
from .cidr_utils import sanitize_name, to_network_and_mask, validate_cidr
from .config import GatewayConfig
from .errors import CertificateError, CommandError, ProvisioningError
from .logging_config import LOGGER
from .models import (
    Cidr,
    ClientProfile,
    CommandResult,
    ProvisioningRequest,
    ProvisioningResult,
    ServerTarget,
    Severity,
    WorkflowState,
)
from .profile_builder import build_profile
from .progress import NullProgressSink, ProgressSink
from .remote import RemoteSession, load_private_key, open_session, run_command
from .ssm_client import SSMClient

SessionFactory = Callable[[ServerTarget, paramiko.PKey, float], RemoteSession]
CommandRunner = Callable[..., CommandResult]


def validate_request(
    config: GatewayConfig,
    server: str,
    customer_name: str,
    customer_network: str,
    azure_subnet: str,
) -> ProvisioningRequest:
    """Validate raw request fields into a ProvisioningRequest.

    Raises:
        UnknownServerError: If ``server`` is not in the host registry
        InvalidCharactersError: If ``customer_name`` fails the allow-list
        InvalidFormatError: If either network is not valid CIDR
    """
    target = config.resolve_server(server)
    name = sanitize_name(customer_name, "customer name")
    return ProvisioningRequest(
        server=target,
        customer_name=name,
        customer_network=validate_cidr(customer_network),
        azure_subnet=validate_cidr(azure_subnet),
    )


class ProvisioningWorkflow:
    """One provisioning run. Create a new instance per request."""

    def __init__(
        self,
        config: GatewayConfig,
        secrets: SSMClient,
        progress: ProgressSink | None = None,
        session_factory: SessionFactory = open_session,
        runner: CommandRunner = run_command,
    ) -> None:
        self.config = config
        self.secrets = secrets
        self.progress = progress or NullProgressSink()
        self._session_factory = session_factory
        self._runner = runner
        self._ca_passphrase: str | None = None
        self.state = WorkflowState.VALIDATING
        self.history: list[WorkflowState] = []

    # State handling

    def _enter(self, state: WorkflowState) -> None:
        self.state = state
        self.history.append(state)
        LOGGER.info("Workflow state: %s", state.value, extra={"state": state.value})

    def _fail(self, error: ProvisioningError) -> None:
        failed_in = self.state
        self._enter(WorkflowState.FAILED)
        error.details.setdefault("state", failed_in.value)
        LOGGER.error(
            "Workflow failed in %s: %s (%s)",
            failed_in.value,
            error.message,
            error.code,
            extra={"state": failed_in.value},
        )
        self.progress.publish(f"{error.code}: {error.message}", Severity.ERROR)

    # Public operations

    def provision(
        self,
        server: str,
        customer_name: str,
        customer_network: str,
        azure_subnet: str,
    ) -> ProvisioningResult:
        """Run the full workflow and return the rendered client profile.

        Raises:
            ProvisioningError: Subclass matching the failing step
        """
        try:
            self._enter(WorkflowState.VALIDATING)
            request = validate_request(
                self.config, server, customer_name, customer_network, azure_subnet
            )

            self._enter(WorkflowState.ACQUIRING_CREDENTIAL)
            private_key = self._acquire_credential()

            self._enter(WorkflowState.CONNECTING)
            with self._connect(request.server, private_key) as session:
                self._enter(WorkflowState.CLEANING_UP)
                self._clean_up(session, request.customer_name, request.customer_network)

                self._enter(WorkflowState.GENERATING)
                self._generate(session, request.customer_name)

                self._enter(WorkflowState.CONFIGURING_ROUTING)
                self._configure_routing(session, request)

                self._enter(WorkflowState.FETCHING_ARTIFACTS)
                ca_cert, client_cert_raw, client_key = self._fetch_artifacts(
                    session, request.customer_name
                )

            self._enter(WorkflowState.ASSEMBLING)
            result = self._assemble(request, ca_cert, client_cert_raw, client_key)

            self._enter(WorkflowState.DONE)
            self.progress.publish(f"Profile for {request.customer_name} is ready", Severity.SUCCESS)
            return result
        except ProvisioningError as e:
            self._fail(e)
            raise
        except Exception:
            LOGGER.exception("Unexpected error in state %s", self.state.value)
            self._enter(WorkflowState.FAILED)
            raise

    def revoke(
        self, server: str, customer_name: str, customer_network: str | None = None
    ) -> bool:
        """Revoke a customer's certificate and remove its gateway configuration.

        Returns:
            True if a certificate existed and was revoked, False if there was
            nothing to revoke
        """
        try:
            self._enter(WorkflowState.VALIDATING)
            target = self.config.resolve_server(server)
            name = sanitize_name(customer_name, "customer name")
            network = validate_cidr(customer_network) if customer_network else None

            self._enter(WorkflowState.ACQUIRING_CREDENTIAL)
            private_key = self._acquire_credential()

            self._enter(WorkflowState.CONNECTING)
            with self._connect(target, private_key) as session:
                self._enter(WorkflowState.CLEANING_UP)
                revoked = self._clean_up(session, name, network)

            self._enter(WorkflowState.DONE)
            return revoked
        except ProvisioningError as e:
            self._fail(e)
            raise
        except Exception:
            LOGGER.exception("Unexpected error in state %s", self.state.value)
            self._enter(WorkflowState.FAILED)
            raise

    # Steps

    def _acquire_credential(self) -> paramiko.PKey:
        key_material = self.secrets.get_ssh_private_key(self.config.ssh_secret_name)
        LOGGER.info("SSH private key retrieved from secret store")
        return load_private_key(key_material)

    def _connect(self, target: ServerTarget, private_key: paramiko.PKey) -> RemoteSession:
        session = self._session_factory(target, private_key, self.config.connect_timeout)
        self.progress.publish(f"SSH connection to {target.name} ({target.host})", Severity.SUCCESS)
        return session

    def _run(self, session: RemoteSession, command: str, stdin_data: str | None = None) -> str:
        result = self._runner(
            session, command, self.config.command_timeout_ms, stdin_data=stdin_data
        )
        return result.output

    def _easyrsa(self, session: RemoteSession, arguments: str, uses_ca_key: bool = False) -> str:
        passphrase = self._get_ca_passphrase() if uses_ca_key else None
        passin = " --passin=stdin" if passphrase else ""
        command = (
            f"cd {shlex.quote(self.config.paths.easyrsa_dir)} && "
            f"sudo ./easyrsa --batch{passin} {arguments}"
        )
        stdin_data = f"{passphrase}\n" if passphrase else None
        return self._run(session, command, stdin_data=stdin_data)

    def _get_ca_passphrase(self) -> str | None:
        secret_name = self.config.ca_password_secret_name
        if not secret_name:
            return None
        if self._ca_passphrase is None:
            self._ca_passphrase = self.secrets.get_secret(secret_name)
        return self._ca_passphrase

    def _clean_up(self, session: RemoteSession, customer_name: str, network: Cidr | None) -> bool:
        """Remove any previous certificate, CCD entry and route for the customer.

        Safe to run when none of them exist.
        """
        paths = self.config.paths
        name = _quoted_name(customer_name)
        self.progress.publish("Cleaning up previous configuration...")

        exists = self._run(
            session,
            f"test -f {shlex.quote(paths.issued_cert(customer_name))} "
            "&& echo EXISTS || echo NOT_EXISTS",
        )
        if exists != "EXISTS":
            self.progress.publish(f"No certificate found for {customer_name}")
            return False

        ccd_exists = self._run(
            session,
            f"test -f {shlex.quote(paths.ccd_entry(customer_name))} "
            "&& echo CCD_EXISTS || echo CCD_NOT_EXISTS",
        )

        self._easyrsa(session, f"revoke {name}", uses_ca_key=True)
        self.progress.publish(f"Certificate for {customer_name} revoked")
        self._easyrsa(session, "gen-crl", uses_ca_key=True)
        self.progress.publish("Certificate revocation list regenerated")

        self._run(
            session,
            "sudo rm -f "
            + " ".join(
                shlex.quote(path)
                for path in (
                    paths.private_key(customer_name),
                    paths.issued_cert(customer_name),
                    paths.request(customer_name),
                )
            ),
        )
        self.progress.publish(f"Removed keys and certificates for {customer_name}")

        if ccd_exists == "CCD_EXISTS":
            self._run(session, f"sudo rm -f {shlex.quote(paths.ccd_entry(customer_name))}")
            self.progress.publish(f"Removed CCD profile for {customer_name}")
        else:
            self.progress.publish(f"No CCD profile found for {customer_name}")

        if network is not None:
            self._remove_route(session, network)

        self._run(
            session,
            f"cd {shlex.quote(paths.easyrsa_dir)} && "
            f"sudo chown -R {shlex.quote(self.config.ssh_username + ':')} pki",
        )
        return True

    def _remove_route(self, session: RemoteSession, network: Cidr) -> None:
        route = shlex.quote(str(network))
        interface = self.config.paths.tunnel_interface
        try:
            self._run(session, f"sudo ip route del {route}")
        except CommandError:
            self.progress.publish(f"No route for {network} on {interface}")
            return
        self.progress.publish(f"Removed route for {network} on {interface}")

    def _generate(self, session: RemoteSession, customer_name: str) -> None:
        name = _quoted_name(customer_name)
        self.progress.publish("Generating certificates...")
        try:
            self._easyrsa(session, f"gen-req {name} nopass")
            self.progress.publish(f"Certificate request for {customer_name} created")
            self._easyrsa(session, f"sign-req client {name}", uses_ca_key=True)
        except CommandError as e:
            raise CertificateError(
                f"Certificate issuance for {customer_name} failed: {e.message}",
                {"step": "sign-req" if "sign-req" in e.command else "gen-req", **e.details},
            ) from e
        self.progress.publish(f"Certificate for {customer_name} signed", Severity.SUCCESS)

    def _configure_routing(self, session: RemoteSession, request: ProvisioningRequest) -> None:
        paths = self.config.paths
        ccd_entry = shlex.quote(
            paths.ccd_entry(sanitize_name(request.customer_name, "customer name"))
        )
        customer = to_network_and_mask(request.customer_network)
        azure = to_network_and_mask(request.azure_subnet)
        interface = paths.tunnel_interface

        self.progress.publish("Creating CCD profile...")
        ifconfig_line = f"ifconfig-push {customer.network} {customer.mask}"
        self._run(session, f"echo {shlex.quote(ifconfig_line)} | sudo tee {ccd_entry}")
        self.progress.publish(f"Added ifconfig-push for: {request.customer_network}")

        route_line = f'push "route {azure.network} {azure.mask}"'
        self._run(session, f"echo {shlex.quote(route_line)} | sudo tee -a {ccd_entry}")
        self.progress.publish(f"Added push route for Azure subnet: {request.azure_subnet}")

        route = str(request.customer_network)
        self.progress.publish(f"Adding route {route} to {interface}...")
        if self._route_exists(session, request.customer_network):
            self.progress.publish(
                f"Route {route} already exists on {interface}", Severity.WARNING
            )
            return

        try:
            self._run(
                session,
                f"sudo ip route add {shlex.quote(route)} dev {shlex.quote(interface)}",
            )
        except CommandError as e:
            LOGGER.warning("Route add failed for %s: %s", route, e.message)
            self.progress.publish(
                f"Warning: Could not add route {route} to {interface}: {e.message}",
                Severity.WARNING,
            )
            return
        self.progress.publish(f"Route {route} added to {interface}", Severity.SUCCESS)

    def _route_exists(self, session: RemoteSession, network: Cidr) -> bool:
        # iproute2 prints host routes without "/32"; "to exact" matches either form
        interface = shlex.quote(self.config.paths.tunnel_interface)
        try:
            output = self._run(
                session,
                f"ip route show to exact {shlex.quote(str(network))} dev {interface}",
            )
        except CommandError:
            return False
        return bool(output)

    def _fetch_artifacts(self, session: RemoteSession, customer_name: str) -> tuple[str, str, str]:
        paths = self.config.paths
        commands = [
            f"sudo cat {shlex.quote(paths.ca_cert)}",
            f"sudo cat {shlex.quote(paths.issued_cert(customer_name))}",
            f"sudo cat {shlex.quote(paths.private_key(customer_name))}",
        ]
        self.progress.publish("Collecting certificates and keys...")
        with ThreadPoolExecutor(max_workers=len(commands)) as pool:
            futures = [pool.submit(self._run, session, command) for command in commands]
            ca_cert, client_cert_raw, client_key = (future.result() for future in futures)
        return ca_cert, client_cert_raw, client_key

    def _assemble(
        self,
        request: ProvisioningRequest,
        ca_cert: str,
        client_cert_raw: str,
        client_key: str,
    ) -> ProvisioningResult:
        # Empty artifacts render as empty blocks; only unparseable text aborts
        if ca_cert.strip():
            check_certificate(ca_cert, "CA certificate")
        else:
            self._warn_missing("CA certificate", request.customer_name)
        if client_key.strip():
            check_private_key(client_key)
        else:
            self._warn_missing("client key", request.customer_name)

        client_cert = extract_certificate_block(client_cert_raw)
        serial_number = expiry = ""
        if client_cert:
            serial_number, expiry = certificate_summary(
                check_certificate(client_cert, "client certificate")
            )
            LOGGER.info(
                "Issued certificate for %s serial=%s expiry=%s",
                request.customer_name,
                serial_number,
                expiry,
            )
        else:
            self._warn_missing("certificate block", request.customer_name)

        profile = ClientProfile(
            server_endpoint=request.server.endpoint_host,
            transport_protocol=self.config.profile.protocol,
            port=self.config.profile.port,
            ca_cert=ca_cert,
            client_cert=client_cert,
            client_key=client_key,
        )
        return ProvisioningResult(
            customer_name=request.customer_name,
            profile=build_profile(profile),
            serial_number=serial_number,
            expiry=expiry,
        )

    def _warn_missing(self, artifact: str, customer_name: str) -> None:
        LOGGER.warning("No %s found for %s", artifact, customer_name)
        self.progress.publish(f"No {artifact} found for {customer_name}", Severity.WARNING)


def _quoted_name(customer_name: str) -> str:
    """Re-check a customer name against the allow-list and shell-quote it."""
    return shlex.quote(sanitize_name(customer_name, "customer name"))

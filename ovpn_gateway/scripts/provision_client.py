#!/usr/bin/env python3
"""Provision an OpenVPN client on a gateway and write its .ovpn profile."""

import argparse
import sys
from pathlib import Path

from ovpn_gateway.lib.config import GatewayConfig
from ovpn_gateway.lib.errors import ProvisioningError
from ovpn_gateway.lib.logging_config import LOGGER
from ovpn_gateway.lib.progress import LoggingProgressSink
from ovpn_gateway.lib.ssm_client import SSMClient
from ovpn_gateway.lib.workflow import ProvisioningWorkflow


def provision_client(
    server: str,
    customer_name: str,
    customer_network: str,
    azure_subnet: str,
    output_dir: Path,
    config: GatewayConfig,
    secrets: SSMClient,
) -> Path:
    """Run the provisioning workflow and write ``<customer_name>.ovpn``.

    Returns:
        Path of the written profile
    """
    workflow = ProvisioningWorkflow(config=config, secrets=secrets, progress=LoggingProgressSink())
    result = workflow.provision(
        server=server,
        customer_name=customer_name,
        customer_network=customer_network,
        azure_subnet=azure_subnet,
    )

    output_dir.mkdir(parents=True, exist_ok=True)
    profile_path = output_dir / result.filename
    profile_path.write_text(result.profile + "\n")
    profile_path.chmod(0o600)
    return profile_path


def main() -> int:
    """Provision client from command-line arguments.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(description="Provision OpenVPN client profile")
    parser.add_argument("--server", required=True, help="Server key (e.g., app1)")
    parser.add_argument(
        "--customer-name",
        required=True,
        help="Customer name, used as certificate CN and profile file name",
    )
    parser.add_argument("--customer-network", required=True, help="Customer network CIDR")
    parser.add_argument("--azure-subnet", required=True, help="Azure subnet CIDR pushed as route")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("output/profiles"),
        help="Output directory for .ovpn profiles (default: output/profiles)",
    )
    args = parser.parse_args()

    try:
        config = GatewayConfig.from_env()
        profile_path = provision_client(
            server=args.server,
            customer_name=args.customer_name,
            customer_network=args.customer_network,
            azure_subnet=args.azure_subnet,
            output_dir=args.output_dir,
            config=config,
            secrets=SSMClient(region=config.region),
        )
        LOGGER.info("Profile written: %s", profile_path)
        return 0

    except ProvisioningError as e:
        LOGGER.error("Provisioning failed (%s): %s", e.code, e.message)
        return 1
    except OSError as e:
        LOGGER.error("Could not write profile: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())

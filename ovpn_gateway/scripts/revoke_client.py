#!/usr/bin/env python3
"""Revoke an OpenVPN client certificate and remove its gateway configuration."""

import argparse
import sys

from ovpn_gateway.lib.config import GatewayConfig
from ovpn_gateway.lib.errors import ProvisioningError
from ovpn_gateway.lib.logging_config import LOGGER
from ovpn_gateway.lib.progress import LoggingProgressSink
from ovpn_gateway.lib.ssm_client import SSMClient
from ovpn_gateway.lib.workflow import ProvisioningWorkflow


def main() -> int:
    """Revoke client from command-line arguments.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(description="Revoke OpenVPN client")
    parser.add_argument("--server", required=True, help="Server key (e.g., app1)")
    parser.add_argument("--customer-name", required=True, help="Customer name (certificate CN)")
    parser.add_argument(
        "--customer-network",
        default=None,
        help="Customer network CIDR whose tunnel route should be removed",
    )
    args = parser.parse_args()

    try:
        config = GatewayConfig.from_env()
        workflow = ProvisioningWorkflow(
            config=config,
            secrets=SSMClient(region=config.region),
            progress=LoggingProgressSink(),
        )
        revoked = workflow.revoke(
            server=args.server,
            customer_name=args.customer_name,
            customer_network=args.customer_network,
        )
    except ProvisioningError as e:
        LOGGER.error("Revocation failed (%s): %s", e.code, e.message)
        return 1

    if revoked:
        LOGGER.info("Revoked certificate for %s", args.customer_name)
    else:
        LOGGER.info("No certificate to revoke for %s", args.customer_name)
    return 0


if __name__ == "__main__":
    sys.exit(main())

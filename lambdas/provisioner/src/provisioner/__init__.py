"""Provisioner Lambda - issues OpenVPN client profiles through remote gateways.

Entry point: ``provisioner.handler.handler``.
"""

from ._types import APIGatewayProxyEventV2, APIGatewayProxyResponseV2, LambdaContext

__all__ = [
    "APIGatewayProxyEventV2",
    "APIGatewayProxyResponseV2",
    "LambdaContext",
]

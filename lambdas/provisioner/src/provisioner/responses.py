"""Response builders for provisioner Lambda."""

import json
from typing import Any

from ovpn_gateway.lib.profile_builder import PROFILE_CONTENT_TYPE

from ._types import APIGatewayProxyResponseV2


def json_response(status_code: int, body: Any) -> APIGatewayProxyResponseV2:
    """Build JSON API Gateway response."""
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(body),
    }


def profile_response(filename: str, profile: str) -> APIGatewayProxyResponseV2:
    """Build the profile download response."""
    return {
        "statusCode": 200,
        "headers": {
            "Content-Type": PROFILE_CONTENT_TYPE,
            "Content-Disposition": f'attachment; filename="{filename}"',
        },
        "body": profile,
    }


def empty_response(status_code: int = 200) -> APIGatewayProxyResponseV2:
    """Bare status response for WebSocket route events."""
    return {"statusCode": status_code}

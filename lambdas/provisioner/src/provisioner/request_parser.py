"""Request body parsing for the provisioner Lambda."""

import base64
import binascii
import json
from urllib.parse import parse_qs

from ovpn_gateway.lib.errors import InvalidInputError

from ._types import APIGatewayProxyEventV2

# Each request field accepts the names used by both front-end generations.
FIELD_ALIASES = {
    "server": ("server", "serverName"),
    "customer_name": ("customerName", "clientName"),
    "customer_network": ("customerNetwork",),
    "azure_subnet": ("azureSubnet",),
}


def _header(event: APIGatewayProxyEventV2, name: str) -> str:
    headers = event.get("headers") or {}
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return ""


def parse_body(event: APIGatewayProxyEventV2) -> dict[str, str]:
    """Decode a JSON or form-encoded request body into a flat dict.

    Raises:
        InvalidInputError: If the body cannot be decoded
    """
    raw = event.get("body") or ""
    if event.get("isBase64Encoded"):
        try:
            raw = base64.b64decode(raw).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise InvalidInputError("Request body is not valid base64") from e

    if not raw:
        return {}

    content_type = _header(event, "content-type").split(";")[0].strip().lower()
    if content_type == "application/x-www-form-urlencoded":
        return {key: values[0] for key, values in parse_qs(raw).items()}

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidInputError("Request body is not valid JSON") from e
    if not isinstance(data, dict):
        raise InvalidInputError("Request body must be a JSON object")
    return data


def extract_fields(body: dict) -> dict[str, str]:
    """Map aliased request fields onto workflow argument names.

    Missing fields map to an empty string so validation reports them.
    """
    fields = {}
    for argument, aliases in FIELD_ALIASES.items():
        value = next((body[alias] for alias in aliases if body.get(alias) is not None), "")
        fields[argument] = value if isinstance(value, str) else str(value)
    return fields

"""CIDR parsing, netmask conversion and name sanitisation."""

import re

from .errors import InvalidCharactersError, InvalidFormatError
from .models import Cidr, NetworkMask

_CIDR_PATTERN = re.compile(r"([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})\.([0-9]{1,3})/([0-9]|[12][0-9]|3[0-2])")
_NAME_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


def validate_cidr(cidr_text: str) -> Cidr:
    """Parse ``a.b.c.d/n`` text into a Cidr.

    Args:
        cidr_text: CIDR as typed by the user

    Returns:
        Parsed Cidr

    Raises:
        InvalidFormatError: If the text does not match the CIDR pattern or an
            octet is above 255
    """
    if not isinstance(cidr_text, str):
        raise InvalidFormatError("Invalid CIDR format", {"value": repr(cidr_text)})

    match = _CIDR_PATTERN.fullmatch(cidr_text)
    if not match:
        raise InvalidFormatError("Invalid CIDR format", {"value": cidr_text})

    octets = tuple(int(part) for part in match.groups()[:4])
    if any(octet > 255 for octet in octets):
        raise InvalidFormatError("Invalid IP address in CIDR", {"value": cidr_text})

    return Cidr(octets=octets, prefix_length=int(match.group(5)))  # type: ignore[arg-type]


def prefix_to_mask(prefix_length: int) -> str:
    """Convert a prefix length to a dotted-decimal netmask (``20`` -> ``255.255.240.0``)."""
    mask_parts = []
    for index in range(4):
        remaining = max(0, min(8, prefix_length - index * 8))
        mask_parts.append(256 - 2 ** (8 - remaining) if remaining > 0 else 0)
    return ".".join(str(part) for part in mask_parts)


def to_network_and_mask(cidr: Cidr) -> NetworkMask:
    """Return the CIDR address and its netmask.

    Host bits of the address are kept as typed: ``10.8.0.5/24`` yields network
    ``10.8.0.5``. Gateways already configured through this service rely on it.
    """
    return NetworkMask(network=cidr.address, mask=prefix_to_mask(cidr.prefix_length))


def sanitize_name(text: str, label: str = "input") -> str:
    """Accept only letters, digits, dashes and underscores.

    Raises:
        InvalidCharactersError: If ``text`` is empty or contains anything else
    """
    if not isinstance(text, str) or not _NAME_PATTERN.fullmatch(text):
        raise InvalidCharactersError(
            f"Invalid {label}: only letters, numbers, dashes, and underscores are allowed",
            {"field": label},
        )
    return text

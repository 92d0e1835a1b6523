"""PEM extraction and sanity checks for artifacts fetched from the gateway."""

import re

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from .errors import AssemblyError

_CERTIFICATE_BLOCK = re.compile(r"-----BEGIN CERTIFICATE-----[\s\S]+?-----END CERTIFICATE-----")


def extract_certificate_block(text: str) -> str:
    """Return the first PEM certificate block in ``text``, or "" if there is none.

    Easy-RSA issued files carry an OpenSSL text dump ahead of the PEM block.
    """
    match = _CERTIFICATE_BLOCK.search(text or "")
    return match.group(0) if match else ""


def deserialize_certificate(pem_data: bytes) -> x509.Certificate:
    """Deserialize certificate from PEM bytes."""
    return x509.load_pem_x509_certificate(pem_data)


def get_certificate_serial_hex(cert: x509.Certificate) -> str:
    """Return certificate serial number as hex with colons (e.g., 3A:F2:B1:...)."""
    serial_hex = f"{cert.serial_number:X}"
    if len(serial_hex) % 2 != 0:
        serial_hex = "0" + serial_hex
    return ":".join(serial_hex[i : i + 2] for i in range(0, len(serial_hex), 2))


def check_certificate(pem_text: str, label: str) -> x509.Certificate:
    """Parse a PEM certificate fetched from the gateway.

    Raises:
        AssemblyError: If the text is not a parseable PEM certificate
    """
    try:
        return deserialize_certificate(pem_text.strip().encode("utf-8"))
    except ValueError as e:
        raise AssemblyError(f"{label} is not a valid PEM certificate", {"artifact": label}) from e


def check_private_key(pem_text: str, label: str = "client key") -> None:
    """Verify that ``pem_text`` is an unencrypted PEM private key.

    Raises:
        AssemblyError: If the key cannot be loaded without a password
    """
    try:
        serialization.load_pem_private_key(pem_text.strip().encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise AssemblyError(f"{label} is not a valid PEM private key", {"artifact": label}) from e


def certificate_summary(cert: x509.Certificate) -> tuple[str, str]:
    """Return (serial number hex, expiry ISO timestamp) for logging."""
    return get_certificate_serial_hex(cert), cert.not_valid_after_utc.isoformat()

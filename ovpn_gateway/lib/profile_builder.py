"""Client profile (.ovpn) rendering."""

from .models import ClientProfile

PROFILE_CONTENT_TYPE = "application/x-openvpn-profile"


def build_profile(profile: ClientProfile) -> str:
    """Render a client profile document with inline ca/cert/key blocks.

    Missing PEM fields render as empty blocks.
    """
    lines = [
        "client",
        "dev tun",
        f"proto {profile.transport_protocol}",
        f"remote {profile.server_endpoint} {profile.port}",
        "resolv-retry infinite",
        "nobind",
        "persist-key",
        "persist-tun",
        "remote-cert-tls server",
        "cipher AES-256-GCM",
        "auth SHA256",
        "key-direction 1",
        "verb 4",
        "",
        "<ca>",
        (profile.ca_cert or "").strip(),
        "</ca>",
        "<cert>",
        (profile.client_cert or "").strip(),
        "</cert>",
        "<key>",
        (profile.client_key or "").strip(),
        "</key>",
    ]
    return "\n".join(lines)

"""SSM client for reading gateway secrets from AWS Parameter Store."""

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import CredentialUnavailableError


class SSMClient:
    """Read-only secret store backed by SSM SecureString parameters."""

    def __init__(self, region: str = "eu-west-2") -> None:
        """Initialize SSM client.

        Args:
            region: AWS region for SSM client
        """
        self.client = boto3.client("ssm", region_name=region)

    def get_secret(self, name: str) -> str:
        """Fetch and decrypt one secret value by parameter name.

        Args:
            name: Parameter name (e.g., '/ovpn-gateway/ssh-private-key')

        Returns:
            Decrypted parameter value

        Raises:
            CredentialUnavailableError: If the parameter is missing, empty or
                the store cannot be reached
        """
        try:
            response = self.client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == "ParameterNotFound":
                raise CredentialUnavailableError(
                    f"Secret not found in SSM: {name}", {"secret": name}
                ) from e
            raise CredentialUnavailableError(
                f"Secret store rejected request for {name}: {error_code or 'unknown error'}",
                {"secret": name},
            ) from e
        except BotoCoreError as e:
            raise CredentialUnavailableError(
                f"Secret store unreachable while reading {name}", {"secret": name}
            ) from e

        value = response.get("Parameter", {}).get("Value", "")
        if not value:
            raise CredentialUnavailableError(f"Secret {name} is empty", {"secret": name})
        return value

    def get_ssh_private_key(self, name: str) -> str:
        """Fetch SSH private key material, checking it looks like PEM."""
        key = self.get_secret(name)
        if not key.startswith("-----BEGIN"):
            raise CredentialUnavailableError("Invalid SSH key format", {"secret": name})
        return key

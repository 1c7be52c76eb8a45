"""Input validation utilities."""

import ipaddress
import re
from typing import List

from hardn.exceptions import ValidationError

USERNAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]*[$]?$")
SSH_KEY_TYPES = (
    "ssh-rsa",
    "ssh-ed25519",
    "ecdsa-sha2-",
    "sk-ssh-ed25519@openssh.com",
    "sk-ecdsa-sha2-",
)


class Validator:
    """Validate inputs and system state."""

    @staticmethod
    def validate_port(port: int) -> None:
        """Validate port number.

        Args:
            port: Port number to validate

        Raises:
            ValidationError: If port is invalid
        """
        if not (1 <= port <= 65535):
            raise ValidationError(f"Invalid port: {port}. Must be between 1-65535")

    @staticmethod
    def validate_username(username: str) -> None:
        """Validate a login name for account creation.

        Raises:
            ValidationError: If the name is empty, too long or malformed
        """
        if not username or not username.strip():
            raise ValidationError("Empty username")
        if len(username) > 32:
            raise ValidationError(f"Username too long: {username}")
        if not USERNAME_PATTERN.match(username):
            raise ValidationError(f"Invalid username format: {username}")

    @staticmethod
    def validate_users(usernames: List[str]) -> List[str]:
        """Validate list of usernames.

        Args:
            usernames: List of usernames to validate

        Returns:
            List of validation error messages
        """
        errors: List[str] = []
        for username in usernames:
            try:
                Validator.validate_username(username)
            except ValidationError as e:
                errors.append(str(e))
        return errors

    @staticmethod
    def validate_ssh_key(key: str) -> bool:
        """Check that a line looks like an OpenSSH public key."""
        parts = key.strip().split()
        if len(parts) < 2:
            return False
        return parts[0].startswith(SSH_KEY_TYPES)

    @staticmethod
    def validate_nameserver(address: str) -> None:
        try:
            ipaddress.ip_address(address)
        except ValueError as e:
            raise ValidationError(f"Invalid nameserver address: {address}") from e

    @staticmethod
    def validate_subnet_prefix(prefix: str) -> None:
        """Validate a dotted /24 prefix such as 192.168.4.

        Raises:
            ValidationError: If the prefix is not three octets
        """
        octets = prefix.split(".")
        if len(octets) != 3 or not all(
            o.isdigit() and 0 <= int(o) <= 255 for o in octets
        ):
            raise ValidationError(
                f"Invalid subnet prefix: {prefix}. Expected three octets, e.g. 192.168.4"
            )

"""SSH server configuration and root-access revocation."""

from typing import List

from hardn.config import HardnConfig
from hardn.exceptions import SSHConfigMissing, ValidationError
from hardn.log import HardnLogger
from hardn.system_info import Platform
from hardn.utils.file import FileSteward

ALPINE_SSHD_CONFIG = "/etc/ssh/sshd_config"
SSH_SOCKET_OVERRIDE = "/etc/systemd/system/ssh.socket.d/listen.conf"

HOSTBASED_KEY_TYPES = "ecdsa-sha2-nistp256,ecdsa-sha2-nistp384,ecdsa-sha2-nistp521,ssh-ed25519"


def listen_address(address: str, port: int) -> str:
    """Append the port to an address that does not carry one."""
    if address.startswith("["):
        return address if "]:" in address else f"{address}:{port}"
    colons = address.count(":")
    if colons == 1:
        return address
    if colons > 1:
        return f"[{address}]:{port}"
    return f"{address}:{port}"


def allowed_users(config: HardnConfig) -> List[str]:
    """AllowUsers entries; root is dropped unless root login is permitted."""
    users = list(config.ssh_allowed_users)
    if not config.permit_root_login:
        users = [u for u in users if u != "root"]
    return users


def render_sshd_config(config: HardnConfig) -> str:
    """Render the full sshd configuration text."""
    lines = [
        "# SSH configuration managed by hardn",
        "",
        "Protocol 2",
        "StrictModes yes",
        "",
        f"Port {config.ssh_port}",
        f"ListenAddress {listen_address(config.ssh_listen_address, config.ssh_port)}",
        "",
        "AuthenticationMethods publickey",
        "PubkeyAuthentication yes",
        "",
        f"HostbasedAcceptedKeyTypes {HOSTBASED_KEY_TYPES}",
        "",
        f"PermitRootLogin {'yes' if config.permit_root_login else 'no'}",
    ]
    users = allowed_users(config)
    if users:
        lines.append(f"AllowUsers {' '.join(users)}")
    lines += [
        "",
        "PasswordAuthentication no",
        "PermitEmptyPasswords no",
        "",
        # %u is expanded by sshd
        f"AuthorizedKeysFile    .ssh/authorized_keys    {config.ssh_key_path}/authorized_keys",
    ]
    return "\n".join(lines) + "\n"


def render_socket_override(port: int) -> str:
    return f"[Socket]\nListenStream=\nListenStream={port}\n"


def revoke_root_login(text: str) -> str:
    """Disable root login in sshd config text.

    ``PermitRootLogin yes`` lines become ``PermitRootLogin no`` and ``root`` is
    removed from every ``AllowUsers`` line. A line left with no users is
    dropped. Text that is already revoked comes back unchanged.

    Args:
        text: sshd configuration

    Returns:
        Revoked configuration
    """
    out = []
    for line in text.splitlines(keepends=True):
        body = line.rstrip("\r\n")
        ending = line[len(body):]
        stripped = body.lstrip()
        indent = body[: len(body) - len(stripped)]

        if stripped.startswith("PermitRootLogin yes"):
            out.append(f"{indent}PermitRootLogin no{ending}")
            continue

        fields = stripped.split()
        if fields and fields[0] == "AllowUsers" and "root" in fields[1:]:
            users = [u for u in fields[1:] if u != "root"]
            if users:
                out.append(f"{indent}AllowUsers {' '.join(users)}{ending}")
            continue

        out.append(line)
    return "".join(out)


class SSHConfigurator:
    """Write sshd configuration and restart the SSH service."""

    def __init__(
        self,
        config: HardnConfig,
        platform: Platform,
        steward: FileSteward,
        logger: HardnLogger,
    ) -> None:
        self.config = config
        self.platform = platform
        self.steward = steward
        self.logger = logger
        self.runner = platform.runner
        self.services = platform.services

    @property
    def config_path(self) -> str:
        """The active sshd configuration file for this platform."""
        if self.platform.is_alpine:
            return ALPINE_SSHD_CONFIG
        return self.config.ssh_config_file

    def configure(self) -> None:
        """Write sshd configuration (and socket override) then restart."""
        self.logger.info(f"Configuring SSH on port {self.config.ssh_port}")
        if self.config.ssh_port == 22:
            self.logger.warning(
                "SSH is using the default port 22; consider a non-standard port"
            )

        if not self.platform.is_alpine:
            self.steward.write(
                SSH_SOCKET_OVERRIDE, render_socket_override(self.config.ssh_port)
            )
        self.steward.write(self.config_path, render_sshd_config(self.config))

        self.validate()
        self._restart()
        self.logger.success(f"SSH configured ({self.config_path})")

    def disable_root(self) -> bool:
        """Revoke root SSH access in the active configuration.

        Returns:
            True if the configuration changed

        Raises:
            SSHConfigMissing: If the configuration file does not exist
        """
        path = self.config_path
        if not self.steward.exists(path):
            if self.steward.dry_run:
                # Not yet written by an earlier previewed SSH step
                self.logger.dry_run(f"Revoke root login in {path}")
                return False
            raise SSHConfigMissing(f"SSH configuration {path} not found")

        changed = self.steward.transform(path, revoke_root_login)
        if not changed:
            self.logger.info("Root SSH access already disabled")
            return False

        self.validate()
        self._restart()
        self.logger.success("Root SSH access disabled")
        return True

    def validate(self) -> None:
        """Syntax-check the written configuration with ``sshd -t``.

        Raises:
            ValidationError: If sshd rejects the configuration
        """
        if self.steward.dry_run or not self.runner.available("sshd"):
            return

        args = ["-t"]
        if self.platform.is_alpine:
            args += ["-f", str(self.steward.host_path(self.config_path))]
        result = self.runner.query("sshd", *args)
        if not result.success:
            raise ValidationError(
                f"sshd rejected the configuration: {result.output.strip()}"
            )

    def _restart(self) -> None:
        if not self.platform.is_alpine:
            self.services.daemon_reload()
        self.services.restart(self.platform.ssh_service)

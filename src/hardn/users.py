"""Admin user provisioning and sudoers drop-ins."""

import getpass
import grp
import os
import pwd
import tempfile
from pathlib import Path
from typing import Optional, Tuple

from hardn.config import HardnConfig, RuntimeEnvironment
from hardn.exceptions import SudoersInvalid, ValidationError
from hardn.log import HardnLogger
from hardn.system_info import Platform
from hardn.utils.file import FileSteward
from hardn.utils.validation import Validator

SUDOERS_DIR = "/etc/sudoers.d"
SUDOERS_MODE = 0o440


def sudoers_line(username: str, no_password: bool) -> str:
    if no_password:
        return f"{username} ALL=(ALL) NOPASSWD: ALL\n"
    return f"{username} ALL=(ALL) ALL\n"


def env_keep_directive(username: str) -> str:
    return f'Defaults:{username} env_keep += "HARDN_CONFIG"'


def render_authorized_keys(keys: list) -> str:
    return "".join(f"{key.strip()}\n" for key in keys if key.strip())


class UserProvisioner:
    """Create the admin account, grant sudo and seed SSH keys."""

    def __init__(
        self,
        config: HardnConfig,
        platform: Platform,
        steward: FileSteward,
        logger: HardnLogger,
        environment: Optional[RuntimeEnvironment] = None,
    ) -> None:
        self.config = config
        self.platform = platform
        self.steward = steward
        self.logger = logger
        self.runner = platform.runner
        self.environment = environment or RuntimeEnvironment()

    @staticmethod
    def lookup(username: str) -> Optional[pwd.struct_passwd]:
        try:
            return pwd.getpwnam(username)
        except KeyError:
            return None

    @staticmethod
    def in_group(username: str, group: str) -> bool:
        try:
            return username in grp.getgrnam(group).gr_mem
        except KeyError:
            return False

    def create_user(self, username: Optional[str] = None) -> None:
        """Create or reconcile the admin account.

        An existing account is not recreated, but its group membership,
        sudoers drop-in and authorized keys are brought in line.

        Args:
            username: Account name, defaults to the configured username

        Raises:
            ValidationError: If the username is empty or malformed
            SudoersInvalid: If visudo rejects the sudoers drop-in
            CommandFailed: If account creation fails
        """
        username = username or self.config.username
        Validator.validate_username(username)
        if username == "root":
            raise ValidationError("Refusing to provision the root account")

        self.ensure_sudo()

        if self.lookup(username) is None:
            self.logger.info(f"Creating user {username}")
            self.platform.create_user(username)
        else:
            self.logger.info(f"User {username} already exists, reconciling sudo and keys")

        group = self.platform.admin_group
        if not self.in_group(username, group):
            self.platform.grant_admin_group(username)
            self.logger.info(f"Added {username} to {group} group")

        self.install_sudoers(
            f"{SUDOERS_DIR}/{username}",
            sudoers_line(username, self.config.sudo_no_password),
        )

        home, owner = self._home(username)
        self.seed_authorized_keys(home, owner)
        self.ensure_hushlogin(home, owner)
        self.logger.success(f"User {username} provisioned")

    def ensure_sudo(self) -> None:
        if self.runner.available("sudo"):
            return
        self.logger.info("sudo not found, installing")
        if not self.platform.is_alpine:
            self.platform.packages.update_index()
        self.platform.packages.install("sudo")
        if not self.steward.dry_run:
            self.logger.install("sudo")

    def _home(self, username: str) -> Tuple[Path, Optional[Tuple[int, int]]]:
        entry = self.lookup(username)
        if entry is None:
            # Only reachable in dry-run, before the account exists
            return Path("/home") / username, None
        return Path(entry.pw_dir), (entry.pw_uid, entry.pw_gid)

    def seed_authorized_keys(
        self, home: Path, owner: Optional[Tuple[int, int]] = None
    ) -> None:
        """Write ~/.ssh/authorized_keys with exactly the configured keys."""
        keys = self.config.ssh_keys
        if not keys:
            self.logger.warning("No SSH keys configured, leaving authorized_keys unchanged")
            return

        for key in keys:
            if not Validator.validate_ssh_key(key):
                self.logger.warning(f"SSH key does not look like a public key: {key[:40]}")

        ssh_dir = home / ".ssh"
        self.steward.ensure_dir(ssh_dir, 0o700, owner)
        self.steward.write(
            ssh_dir / "authorized_keys", render_authorized_keys(keys), 0o600, owner
        )
        self.logger.info(f"Seeded {len(keys)} SSH key(s) into {ssh_dir}/authorized_keys")

    def ensure_hushlogin(
        self, home: Path, owner: Optional[Tuple[int, int]] = None
    ) -> None:
        path = Path(home) / ".hushlogin"
        if self.steward.exists(path):
            return
        self.steward.write(path, "", 0o644, owner, backup=False)

    def validate_sudoers(self, content: str) -> None:
        """Syntax-check sudoers content with ``visudo -c -f``.

        Raises:
            SudoersInvalid: If visudo rejects the content
        """
        if not self.runner.available("visudo"):
            self.logger.warning("visudo not available, skipping sudoers validation")
            return

        fd, tmp = tempfile.mkstemp(prefix="hardn-sudoers-")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            result = self.runner.query("visudo", "-c", "-f", tmp)
        finally:
            os.unlink(tmp)

        if not result.success:
            raise SudoersInvalid(f"visudo rejected sudoers content: {result.output.strip()}")

    def install_sudoers(self, path: str, content: str) -> None:
        self.validate_sudoers(content)
        self.steward.write(path, content, SUDOERS_MODE, (0, 0) if os.geteuid() == 0 else None)
        self.logger.info(f"Sudoers drop-in written to {path}")

    def real_user(self, sudo_user: Optional[str] = None) -> str:
        """The human behind sudo: SUDO_USER, else the login name.

        Raises:
            ValidationError: If that resolves to root
        """
        user = sudo_user or self.environment.sudo_user or getpass.getuser()
        if user == "root":
            raise ValidationError(
                "Could not determine a non-root user; run this through sudo as that user"
            )
        return user

    def setup_sudo_env(self, sudo_user: Optional[str] = None) -> bool:
        """Install a drop-in that keeps HARDN_CONFIG across sudo.

        Returns:
            True if the drop-in was written, False if already present
        """
        user = self.real_user(sudo_user)
        Validator.validate_username(user)
        path = f"{SUDOERS_DIR}/hardn-env-{user}"
        directive = env_keep_directive(user)

        if self.steward.exists(path) and directive in self.steward.read_text(path):
            self.logger.info(f"sudo already preserves HARDN_CONFIG for {user}")
            return False

        self.install_sudoers(path, directive + "\n")
        self.logger.success(f"sudo will now preserve HARDN_CONFIG for {user}")
        return True

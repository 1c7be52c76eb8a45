"""Configuration management for hardn."""

import os
import sys
from pathlib import Path
from typing import Any, Callable, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from hardn.exceptions import ConfigMissing, ConfigParseError, FileIOError, ValidationError
from hardn.log import HardnLogger
from hardn.utils.command import CommandRunner
from hardn.utils.validation import Validator

SYSTEM_CONFIG_PATH = Path("/etc/hardn/hardn.yml")
EXAMPLE_CONFIG_PATH = Path("/etc/hardn/hardn.yml.example")

Policy = Literal["allow", "deny", "reject"]


def _split_csv(v: object) -> object:
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return v


def _check(validate: Callable[[Any], None], value: Any) -> None:
    """Run a Validator check, re-raising as ValueError for pydantic."""
    try:
        validate(value)
    except ValidationError as e:
        raise ValueError(str(e)) from e


class UfwAppProfile(BaseModel):
    """Named UFW application profile."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(min_length=1)
    title: str = ""
    description: str = ""
    ports: List[str] = Field(default_factory=list)

    @field_validator("ports", mode="before")
    @classmethod
    def parse_ports(cls, v: object) -> object:
        """Accept a comma-separated string, or bare integers meaning tcp."""
        v = _split_csv(v)
        if isinstance(v, list):
            return [f"{p}/tcp" if isinstance(p, int) else str(p) for p in v]
        return v


class HardnConfig(BaseModel):
    """Declarative hardening configuration, read-only once loaded."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    # Basic
    username: str = ""
    log_file: str = "/var/log/hardn.log"
    dry_run: bool = False
    enable_backups: bool = True
    backup_path: str = "/var/backups/hardn"

    # Network
    dmz_subnet: str = ""
    nameservers: List[str] = Field(default_factory=list)

    # SSH
    ssh_port: int = Field(default=22, ge=1, le=65535, description="SSH port number")
    permit_root_login: bool = False
    ssh_allowed_users: List[str] = Field(default_factory=list)
    ssh_listen_address: str = "0.0.0.0"
    ssh_key_path: str = ".ssh_%u"
    ssh_config_file: str = "/etc/ssh/sshd_config.d/hardn.conf"

    # User
    sudo_no_password: bool = True
    ssh_keys: List[str] = Field(default_factory=list)

    # Packages
    linux_core_packages: List[str] = Field(default_factory=list)
    linux_dmz_packages: List[str] = Field(default_factory=list)
    linux_lab_packages: List[str] = Field(default_factory=list)
    python_packages: List[str] = Field(default_factory=list)
    non_wsl_python_packages: List[str] = Field(default_factory=list)
    python_pip_packages: List[str] = Field(default_factory=list)
    alpine_core_packages: List[str] = Field(default_factory=list)
    alpine_dmz_packages: List[str] = Field(default_factory=list)
    alpine_lab_packages: List[str] = Field(default_factory=list)
    alpine_python_packages: List[str] = Field(default_factory=list)

    # Repositories
    debian_repos: List[str] = Field(default_factory=list)
    proxmox_src_repos: List[str] = Field(default_factory=list)
    proxmox_ceph_repo: List[str] = Field(default_factory=list)
    proxmox_enterprise_repo: List[str] = Field(default_factory=list)
    proxmox_package_patterns: List[str] = Field(
        default_factory=lambda: ["proxmox", "pve"]
    )
    alpine_testing_repo: bool = False

    # Firewall
    ufw_default_incoming_policy: Policy = "deny"
    ufw_default_outgoing_policy: Policy = "allow"
    ufw_allowed_ports: List[int] = Field(default_factory=list)
    ufw_app_profiles: List[UfwAppProfile] = Field(default_factory=list)

    # Feature toggles
    use_uv_package_manager: bool = False
    enable_app_armor: bool = False
    enable_lynis: bool = False
    enable_unattended_upgrades: bool = False
    enable_ufw_ssh_policy: bool = False
    configure_dns: bool = False
    disable_root: bool = False

    # Localization
    lang: str = ""
    language: str = ""
    lc_all: str = ""
    tz: str = ""
    python_unbuffered: str = "1"

    @field_validator("*", mode="before")
    @classmethod
    def null_means_default(cls, v: object, info: ValidationInfo) -> object:
        """An empty YAML key (``nameservers:``) falls back to the default."""
        if v is None and info.field_name is not None:
            return cls.model_fields[info.field_name].get_default(
                call_default_factory=True
            )
        return v

    @field_validator(
        "ssh_allowed_users", "nameservers", "proxmox_package_patterns", mode="before"
    )
    @classmethod
    def parse_comma_list(cls, v: object) -> object:
        """Parse comma-separated string or list."""
        return _split_csv(v)

    @field_validator("nameservers")
    @classmethod
    def check_nameservers(cls, v: List[str]) -> List[str]:
        """Each nameserver must be a literal IPv4 or IPv6 address."""
        for address in v:
            _check(Validator.validate_nameserver, address)
        return v

    @field_validator("ssh_allowed_users")
    @classmethod
    def check_allowed_users(cls, v: List[str]) -> List[str]:
        errors = Validator.validate_users(v)
        if errors:
            raise ValueError("; ".join(errors))
        return v

    @field_validator("ufw_allowed_ports")
    @classmethod
    def unique_ports(cls, v: List[int]) -> List[int]:
        """Validate each port and collapse duplicates, keeping first occurrence."""
        seen: List[int] = []
        for port in v:
            _check(Validator.validate_port, port)
            if port not in seen:
                seen.append(port)
        return seen

    @field_validator("dmz_subnet")
    @classmethod
    def check_subnet(cls, v: str) -> str:
        """Accept a /24 prefix such as 192.168.4, with or without the trailing dot."""
        v = v.strip().rstrip(".")
        if v:
            _check(Validator.validate_subnet_prefix, v)
        return v

    def rendered_key_path(self) -> str:
        """ssh_key_path with %u replaced by the configured username."""
        return self.ssh_key_path.replace("%u", self.username)


class RuntimeEnvironment(BaseSettings):
    """Process environment consulted by the resolver and the sudo helpers."""

    hardn_config: Optional[str] = None
    sudo_user: Optional[str] = None
    sudo_uid: Optional[str] = None
    wsl: Optional[str] = None

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def empty_is_unset(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def under_sudo(self) -> bool:
        return self.sudo_uid is not None

    @property
    def is_wsl(self) -> bool:
        return self.wsl is not None


def config_search_paths(
    explicit: Optional[Union[str, Path]] = None,
    environment: Optional[RuntimeEnvironment] = None,
) -> List[Path]:
    """Return candidate config paths in precedence order.

    An explicit path or HARDN_CONFIG yields a single candidate: there is no
    fallthrough to the default locations.
    """
    if explicit:
        return [Path(explicit)]

    environment = environment or RuntimeEnvironment()
    if environment.hardn_config:
        return [Path(environment.hardn_config)]

    home = Path.home()
    return [
        SYSTEM_CONFIG_PATH,
        home / ".config" / "hardn" / "hardn.yml",
        home / ".hardn.yml",
        Path("hardn.yml"),
    ]


def find_config_file(
    explicit: Optional[Union[str, Path]] = None,
    environment: Optional[RuntimeEnvironment] = None,
    logger: Optional[HardnLogger] = None,
) -> Optional[Path]:
    """Locate the configuration file.

    Args:
        explicit: Path given on the command line
        environment: Process environment (HARDN_CONFIG)
        logger: Optional run logger

    Returns:
        Path of the first existing candidate, or None

    Raises:
        ConfigMissing: If an explicit or environment path does not exist
    """
    environment = environment or RuntimeEnvironment()
    if environment.hardn_config and logger:
        logger.info(
            f"HARDN_CONFIG environment variable is set to: {environment.hardn_config}"
        )

    candidates = config_search_paths(explicit, environment)
    if explicit or environment.hardn_config:
        path = candidates[0]
        source = "command-line flag" if explicit else "HARDN_CONFIG environment variable"
        if not path.is_file():
            raise ConfigMissing(f"Configuration file specified by {source} not found: {path}")
        if logger:
            logger.info(f"Using configuration from {source}: {path}")
        return path

    for path in candidates:
        if path.is_file():
            if logger:
                logger.info(f"Using configuration from: {path}")
            return path

    if logger:
        logger.info("No configuration file found in any location")
    return None


def parse_config(path: Union[str, Path]) -> HardnConfig:
    """Parse a YAML file into a HardnConfig merged over the defaults.

    Raises:
        ConfigParseError: On read, YAML or validation errors
    """
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigParseError(f"Failed to read config file {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigParseError(f"Failed to parse YAML in config file {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigParseError(f"Config file {path} must contain a mapping at top level")

    try:
        return HardnConfig.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigParseError(f"Invalid configuration in {path}:\n{e}") from e


def default_config_location() -> Path:
    """Where a newly created config should live for the current user."""
    if os.geteuid() == 0:
        return SYSTEM_CONFIG_PATH
    return Path.home() / ".config" / "hardn" / "hardn.yml"


def save_config(config: HardnConfig, path: Union[str, Path]) -> None:
    """Write configuration as camelCase YAML."""
    path = Path(path)
    data = config.model_dump(by_alias=True, mode="json")
    try:
        path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        os.chmod(path, 0o644)
    except OSError as e:
        raise FileIOError(f"Failed to write config file to {path}: {e}") from e


def ensure_example_config(path: Optional[Union[str, Path]] = None) -> bool:
    """Write the bundled example configuration if it is absent.

    Returns:
        True if the file was written
    """
    path = Path(path or EXAMPLE_CONFIG_PATH)
    if path.exists():
        return False
    try:
        path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
        path.write_text(EXAMPLE_CONFIG, encoding="utf-8")
        os.chmod(path, 0o644)
    except OSError as e:
        raise FileIOError(f"Failed to write example config to {path}: {e}") from e
    return True


def _ask(prompt: Callable[[str], str], question: str) -> str:
    try:
        return prompt(question).strip()
    except EOFError:
        return ""


def create_default_config(
    path: Union[str, Path],
    prompt: Callable[[str], str] = input,
    logger: Optional[HardnLogger] = None,
) -> HardnConfig:
    """Interactively build and save a starter configuration.

    Args:
        path: Where to save the file
        prompt: Line reader, input() by default
        logger: Optional run logger

    Returns:
        The saved configuration
    """
    values: dict = {}

    username = _ask(prompt, "Enter default username [george]: ")
    values["username"] = username or "george"

    port = _ask(prompt, "Enter SSH port [22]: ")
    if port.isdigit() and 1 <= int(port) <= 65535:
        values["ssh_port"] = int(port)

    upgrades = _ask(prompt, "Enable automatic security updates? [y/N]: ").lower()
    values["enable_unattended_upgrades"] = upgrades in ("y", "yes")

    key = _ask(prompt, "Add SSH public key (optional, press Enter to skip): ")
    if key:
        values["ssh_keys"] = [key]

    config = HardnConfig(**values)
    save_config(config, path)
    if logger:
        logger.success(f"Created configuration file at {path}")

    try:
        if ensure_example_config() and logger:
            logger.info(
                f"A complete example configuration is available at {EXAMPLE_CONFIG_PATH}"
            )
    except FileIOError as e:
        if logger:
            logger.warning(str(e))
    return config


def load_config(
    explicit: Optional[Union[str, Path]] = None,
    environment: Optional[RuntimeEnvironment] = None,
    logger: Optional[HardnLogger] = None,
    interactive: Optional[bool] = None,
    prompt: Callable[[str], str] = input,
) -> HardnConfig:
    """Resolve, parse and default-merge the configuration.

    Args:
        explicit: Path given on the command line
        environment: Process environment
        logger: Optional run logger
        interactive: Whether a terminal is attached, detected when None
        prompt: Line reader for the create-default dialogue

    Returns:
        Loaded configuration

    Raises:
        ConfigMissing: If an explicit or environment path does not exist
        ConfigParseError: If the file cannot be parsed
    """
    path = find_config_file(explicit, environment, logger)
    if path is not None:
        return parse_config(path)

    if interactive is None:
        interactive = sys.stdin.isatty()

    if interactive:
        answer = _ask(prompt, "No configuration file found. Would you like to create one? [Y/n] ")
        if answer.lower() in ("", "y", "yes"):
            return create_default_config(default_config_location(), prompt, logger)

    if logger:
        logger.info("Using default configuration (no config file found)")
    return HardnConfig()


def detect_env_var_loss(
    environment: RuntimeEnvironment, runner: CommandRunner
) -> bool:
    """Check whether sudo dropped HARDN_CONFIG from the invoking user's environment.

    Returns:
        True if the variable is set in the user's login shell but not here
    """
    if not environment.under_sudo or environment.hardn_config:
        return False
    if not environment.sudo_user:
        return False

    result = runner.query("su", "-", environment.sudo_user, "-c", "echo $HARDN_CONFIG")
    return result.success and bool(result.output.strip())


EXAMPLE_CONFIG = """\
# hardn - Linux hardening configuration
#
# Keys are camelCase. Anything left out takes the built-in default.

# Basic
username: "george"                # Admin account to create
logFile: "/var/log/hardn.log"
dryRun: false                     # Preview changes without applying them
enableBackups: true               # Back up files before modifying them
backupPath: "/var/backups/hardn"

# Network
dmzSubnet: "192.168.4"            # Hosts in this /24 get the DMZ package set only
nameservers:
  - "1.1.1.1"
  - "1.0.0.1"

# SSH
sshPort: 22                       # Consider a non-standard port such as 2208
permitRootLogin: false
sshAllowedUsers:
  - "george"
sshListenAddress: "0.0.0.0"
sshKeyPath: ".ssh_%u"             # %u is replaced with the user name by sshd
sshConfigFile: "/etc/ssh/sshd_config.d/hardn.conf"

# User
sudoNoPassword: true
sshKeys:
  - "ssh-ed25519 AAAA... george@example"

# Packages (Debian family)
linuxCorePackages: ["apt-transport-https", "git", "jq", "htop", "sudo"]
linuxDmzPackages: ["dnsutils", "fail2ban"]
linuxLabPackages: ["iperf3", "mosh", "tree"]
pythonPackages: ["python3-pip", "python3-venv"]
nonWslPythonPackages: []
pythonPipPackages: []
useUvPackageManager: false

# Packages (Alpine)
alpineCorePackages: ["bash", "openssh", "shadow", "sudo", "ca-certificates"]
alpineDmzPackages: ["bind-tools", "htop", "jq"]
alpineLabPackages: ["iperf3", "mosh", "tree"]
alpinePythonPackages: ["python3", "py3-pip"]
alpineTestingRepo: false

# Repositories; CODENAME is replaced with the release codename
debianRepos:
  - "deb http://deb.debian.org/debian CODENAME main contrib non-free-firmware"
  - "deb http://deb.debian.org/debian CODENAME-updates main contrib non-free-firmware"
  - "deb http://security.debian.org/debian-security CODENAME-security main contrib non-free-firmware"
proxmoxSrcRepos:
  - "deb http://download.proxmox.com/debian/pve CODENAME pve-no-subscription"
proxmoxCephRepo:
  - "# deb https://enterprise.proxmox.com/debian/ceph-quincy CODENAME enterprise"
  - "deb http://download.proxmox.com/debian/ceph-quincy CODENAME no-subscription"
proxmoxEnterpriseRepo:
  - "# deb https://enterprise.proxmox.com/debian/pve CODENAME pve-enterprise"
proxmoxPackagePatterns: ["proxmox", "pve"]

# Firewall
enableUfwSshPolicy: false
ufwDefaultIncomingPolicy: "deny"  # Advisory; deny is always applied
ufwDefaultOutgoingPolicy: "allow" # Advisory; allow is always applied
ufwAllowedPorts: []
ufwAppProfiles:
  - name: "LabHTTPS"
    title: "Lab HTTPS"
    description: "TLS services on the lab network"
    ports: ["30443/tcp"]

# Features
configureDns: false
disableRoot: false
enableAppArmor: false
enableLynis: false
enableUnattendedUpgrades: false

# Localization
lang: "en_US.UTF-8"
language: "en_US:en"
lcAll: "en_US.UTF-8"
tz: "America/New_York"
pythonUnbuffered: "1"
"""

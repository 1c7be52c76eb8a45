"""CLI entry point for hardn."""

import argparse
import sys
from pathlib import Path
from typing import List, NoReturn, Optional, Sequence

from hardn import __build_date__, __commit__, __version__
from hardn.config import (
    HardnConfig,
    RuntimeEnvironment,
    detect_env_var_loss,
    ensure_example_config,
    find_config_file,
    load_config,
    parse_config,
)
from hardn.exceptions import FileIOError, HardnError
from hardn.hardener import Action, Hardener
from hardn.log import HardnLogger
from hardn.system_info import detect_platform, require_root
from hardn.utils.command import CommandRunner


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hardn",
        description="hardn - Linux hardening for Debian, Ubuntu, Proxmox and Alpine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Preview every configured step
  sudo hardn --run-all --dry-run

  # Create the admin user and configure SSH
  sudo hardn -f /etc/hardn/hardn.yml --create-user -u sysadmin

  # Keep HARDN_CONFIG when running through sudo
  sudo hardn setup-sudo-env

Environment variables:
  HARDN_CONFIG          - Configuration file path
  SUDO_USER             - Real user for setup-sudo-env
        """,
    )

    parser.add_argument("-f", "--config", type=Path, help="Path to configuration file (YAML)")
    parser.add_argument("-u", "--username", help="Admin username (overrides config)")

    actions = parser.add_argument_group("actions")
    actions.add_argument("-c", "--create-user", action="store_true", help="Create admin user and configure SSH")
    actions.add_argument("-d", "--disable-root", action="store_true", help="Disable root SSH access")
    actions.add_argument("-l", "--install-linux", action="store_true", help="Install Linux package sets")
    actions.add_argument("-i", "--install-python", action="store_true", help="Install Python packages")
    actions.add_argument("-a", "--install-all", action="store_true", help="Install Linux and Python packages")
    actions.add_argument("-g", "--configure-dns", action="store_true", help="Configure DNS resolvers")
    actions.add_argument("-w", "--configure-ufw", action="store_true", help="Configure UFW firewall")
    actions.add_argument("-s", "--configure-sources", action="store_true", help="Write package sources")
    actions.add_argument("-r", "--run-all", action="store_true", help="Run all configured hardening steps")
    actions.add_argument(
        "-e",
        "--setup-sudo-env",
        action="store_true",
        help="Preserve HARDN_CONFIG through sudo",
    )

    parser.add_argument("-n", "--dry-run", action="store_true", help="Preview changes without applying them")
    parser.add_argument("-p", "--print-logs", action="store_true", help="Print the log file and exit")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress console output")
    parser.add_argument("-v", "--version", action="store_true", help="Show version information and exit")

    subcommands = parser.add_subparsers(dest="command", metavar="command")
    subcommands.add_parser("setup-sudo-env", help="Preserve HARDN_CONFIG through sudo")
    return parser


def selected_actions(args: argparse.Namespace) -> List[Action]:
    """Map action flags onto orchestrator actions."""
    selected: List[Action] = []
    if args.configure_sources:
        selected.append(Action.SOURCES)
    if args.install_linux or args.install_all:
        selected.append(Action.LINUX_PACKAGES)
    if args.install_python or args.install_all:
        selected.append(Action.PYTHON_PACKAGES)
    if args.create_user:
        selected += [Action.USER, Action.SSH]
    if args.disable_root:
        selected.append(Action.DISABLE_ROOT)
    if args.configure_ufw:
        selected.append(Action.FIREWALL)
    if args.configure_dns:
        selected.append(Action.DNS)
    return selected


def version_text() -> str:
    return f"hardn version {__version__}\nBuild date: {__build_date__}\nCommit: {__commit__}"


def print_logs(args: argparse.Namespace, logger: HardnLogger) -> int:
    """Dump the configured log file."""
    log_file = HardnConfig().log_file
    try:
        path = find_config_file(args.config)
        if path is not None:
            log_file = parse_config(path).log_file
    except HardnError as e:
        logger.warning(f"Using default log file: {e}")
    return 0 if logger.print_logs(Path(log_file)) else 1


def apply_overrides(config: HardnConfig, args: argparse.Namespace) -> HardnConfig:
    updates = {}
    if args.username:
        updates["username"] = args.username
    if args.dry_run:
        updates["dry_run"] = True
    return config.model_copy(update=updates) if updates else config


def run(argv: Optional[Sequence[str]] = None) -> int:
    """Parse arguments and run the requested actions.

    Returns:
        Process exit code: 0 success, 1 fatal failure, 130 interrupted
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(version_text())
        return 0

    with HardnLogger(silent=args.quiet) as logger:
        if args.print_logs:
            return print_logs(args, logger)

        actions = selected_actions(args)
        setup_env = args.setup_sudo_env or args.command == "setup-sudo-env"
        if not (actions or args.run_all or setup_env):
            parser.print_help()
            return 0

        try:
            require_root()
            facts = detect_platform()
            environment = RuntimeEnvironment()
            runner = CommandRunner(logger)

            if detect_env_var_loss(environment, runner):
                logger.warning(
                    "HARDN_CONFIG is set in your user environment but is not preserved "
                    "by sudo. Run 'sudo hardn setup-sudo-env' and try again"
                )

            config = apply_overrides(
                load_config(args.config, environment, logger), args
            )
            runner.dry_run = config.dry_run
            logger.open(Path(config.log_file))

            try:
                ensure_example_config()
            except FileIOError as e:
                logger.warning(str(e))

            hardener = Hardener.create(
                config, logger, facts=facts, runner=runner, environment=environment
            )

            if setup_env:
                hardener.users.setup_sudo_env()

            if args.run_all:
                report = hardener.run_all()
            elif actions:
                report = hardener.run_selected(actions)
            else:
                return 0

        except KeyboardInterrupt:
            logger.warning("Interrupted by user")
            return 130

        except HardnError as e:
            logger.error(str(e))
            return 1

        if report.interrupted:
            return 130
        return 0 if report.ok else 1


def main() -> NoReturn:
    """Main entry point for CLI.

    Raises:
        SystemExit: Always exits with appropriate code
    """
    if not sys.platform.startswith("linux"):
        print("Error: hardn only supports Linux systems", file=sys.stderr)
        sys.exit(1)

    sys.exit(run())


if __name__ == "__main__":
    main()

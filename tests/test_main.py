"""Tests for the command-line entry point."""

import pytest
import yaml

from hardn import __version__, main as cli
from hardn.exceptions import NotRootError
from hardn.hardener import Action

from conftest import RecordingRunner


@pytest.fixture
def host(monkeypatch, debian_facts):
    """Pretend to be root on a Debian host without touching the real system."""
    monkeypatch.setattr(cli, "require_root", lambda: None)
    monkeypatch.setattr(cli, "detect_platform", lambda: debian_facts)
    monkeypatch.setattr(cli, "CommandRunner", RecordingRunner)
    monkeypatch.setattr(cli, "ensure_example_config", lambda: False)


@pytest.fixture
def config_file(tmp_path):
    def write(**values):
        path = tmp_path / "hardn.yml"
        values.setdefault("logFile", str(tmp_path / "run.log"))
        path.write_text(yaml.safe_dump(values))
        return path

    return write


def test_version(capsys):
    """Test --version prints version, build date and commit."""
    assert cli.run(["--version"]) == 0

    out = capsys.readouterr().out
    assert f"hardn version {__version__}" in out
    assert "Build date:" in out
    assert "Commit:" in out


def test_no_action_prints_usage(capsys):
    """Test running without an action prints help and succeeds."""
    assert cli.run(["-q"]) == 0

    assert "usage: hardn" in capsys.readouterr().out


def test_not_root(monkeypatch):
    """Test a non-root invocation exits 1."""
    def refuse():
        raise NotRootError("This program must be run as root")

    monkeypatch.setattr(cli, "require_root", refuse)

    assert cli.run(["-q", "--run-all"]) == 1


def test_missing_env_config(host, monkeypatch, tmp_path):
    """Test a HARDN_CONFIG path that does not exist exits 1."""
    monkeypatch.setenv("HARDN_CONFIG", str(tmp_path / "missing.yml"))

    assert cli.run(["-q", "--run-all"]) == 1


def test_invalid_config(host, config_file):
    """Test a configuration that fails validation exits 1."""
    path = config_file(sshPort=0)

    assert cli.run(["-q", "-f", str(path), "--configure-dns"]) == 1


def test_dry_run_end_to_end(host, config_file, tmp_path):
    """Test a dry-run from the command line logs previews and exits 0."""
    path = config_file(
        username="sysadmin",
        sshPort=2208,
        nameservers=["1.1.1.1"],
    )

    assert cli.run(["-q", "-f", str(path), "--dry-run", "--configure-dns", "--configure-ufw"]) == 0

    log = (tmp_path / "run.log").read_text()
    assert "[DRY-RUN] Run: ufw default deny incoming" in log
    assert "[DRY-RUN] Write /etc/systemd/resolved.conf" in log


def test_fatal_action_exits_1(host, config_file):
    """Test a fatal action failure gives exit code 1."""
    path = config_file(nameservers=[], dryRun=True)

    assert cli.run(["-q", "-f", str(path), "--configure-dns"]) == 1


def test_username_override(host, config_file, tmp_path):
    """Test -u replaces the configured username."""
    path = config_file(username="fromfile", dryRun=True)

    assert cli.run(["-q", "-f", str(path), "-u", "fromflag", "--create-user"]) == 0

    log = (tmp_path / "run.log").read_text()
    assert "sudoers.d/fromflag" in log
    assert "fromfile" not in log


def test_print_logs(config_file, tmp_path, capsys):
    """Test --print-logs dumps the configured log file."""
    path = config_file()
    (tmp_path / "run.log").write_text("2026/10/19 12:00:00 INFO: earlier run\n")

    assert cli.run(["-f", str(path), "--print-logs"]) == 0

    assert "INFO: earlier run" in capsys.readouterr().out


def test_selected_actions():
    """Test flags map onto orchestrator actions."""
    parser = cli.build_parser()

    args = parser.parse_args(["-c", "-a", "-w"])
    assert cli.selected_actions(args) == [
        Action.LINUX_PACKAGES,
        Action.PYTHON_PACKAGES,
        Action.USER,
        Action.SSH,
        Action.FIREWALL,
    ]

    args = parser.parse_args(["setup-sudo-env"])
    assert args.command == "setup-sudo-env"
    assert cli.selected_actions(args) == []


def test_config_source_is_logged(host, config_file, tmp_path):
    """Test the resolved configuration path reaches the run log."""
    path = config_file(dryRun=True, nameservers=["1.1.1.1"])

    assert cli.run(["-q", "-f", str(path), "--configure-dns"]) == 0

    assert f"Using configuration from command-line flag: {path}" in (
        tmp_path / "run.log"
    ).read_text()

"""Tests for the run logger."""

from pathlib import Path

from rich.console import Console

from hardn.log import HardnLogger


def test_file_lines_carry_level_and_timestamp(logger, read_log):
    """Every event is appended to the log file with its level label."""
    logger.info("Configuring SSH")
    logger.success("SSH configured")
    logger.warning("Default port")
    logger.error("Something broke")

    lines = read_log().splitlines()
    assert len(lines) == 4
    assert lines[0].endswith("INFO: Configuring SSH")
    assert lines[1].endswith("SUCCESS: SSH configured")
    assert lines[2].endswith("WARNING: Default port")
    assert lines[3].endswith("ERROR: Something broke")
    # YYYY/MM/DD HH:MM:SS prefix
    assert lines[0][4] == "/" and lines[0][13] == ":"


def test_dry_run_prefix(logger, read_log):
    """Dry-run previews are info lines carrying the [DRY-RUN] marker."""
    logger.dry_run("Write /etc/resolv.conf")

    assert "INFO: [DRY-RUN] Write /etc/resolv.conf" in read_log()


def test_structured_fields_render_as_key_value(logger, read_log):
    """Keyword arguments are appended as key=value pairs."""
    logger.info("action finished", action="ssh", state="succeeded")

    assert "action finished action=ssh state=succeeded" in read_log()


def test_console_output_unless_silent(tmp_path: Path):
    """Console output is produced only when not silent."""
    console = Console(record=True, width=200)
    logger = HardnLogger(console=console)
    logger.install("htop")
    assert "[INSTALLED] htop" in console.export_text()

    quiet_console = Console(record=True, width=200)
    quiet = HardnLogger(silent=True, console=quiet_console)
    quiet.info("hidden")
    assert quiet_console.export_text() == ""


def test_log_file_is_appended(log_path: Path):
    """Reopening the log file keeps earlier runs."""
    with HardnLogger(log_file=log_path, silent=True) as first:
        first.info("first run")
    with HardnLogger(log_file=log_path, silent=True) as second:
        second.header()

    content = log_path.read_text()
    assert "first run" in content
    assert "=== hardn run started ===" in content


def test_print_logs(log_path: Path):
    """print_logs dumps the file and reports a missing one."""
    console = Console(record=True, width=200)
    logger = HardnLogger(silent=True, console=console)

    assert logger.print_logs(log_path) is False

    log_path.write_text("2026/10/19 12:00:00 INFO: hello\n")
    assert logger.print_logs(log_path) is True
    assert "INFO: hello" in console.export_text()


def test_events_before_open_reach_the_file(tmp_path):
    """Events logged before the log file is opened are written first once it is."""
    logger = HardnLogger(silent=True)
    logger.info("Using configuration from: /etc/hardn/hardn.yml")

    logger.open(tmp_path / "hardn.log")
    logger.info("Configuring SSH")
    logger.close()

    lines = (tmp_path / "hardn.log").read_text().splitlines()
    assert len(lines) == 2
    assert lines[0].endswith("INFO: Using configuration from: /etc/hardn/hardn.yml")
    assert lines[1].endswith("INFO: Configuring SSH")

"""Run logger built on a structlog processor pipeline.

Every event is rendered twice: a coloured ``[LEVEL] message`` line on the
console (unless silent) and a timestamped ``LEVEL: message`` line appended to
the run's log file. Loggers are explicit objects handed to each component.
"""

from pathlib import Path
from typing import IO, Any, Dict, List, Optional

import structlog
from rich.console import Console
from rich.rule import Rule
from rich.text import Text

from hardn import __version__

DRY_RUN_PREFIX = "[DRY-RUN] "

_LEVELS = {
    "info": ("INFO", "blue"),
    "success": ("SUCCESS", "green"),
    "warning": ("WARNING", "yellow"),
    "error": ("ERROR", "bold red"),
    "install": ("INSTALLED", "cyan"),
}


class HardnLogger:
    """Explicit logger collaborator passed into the engine."""

    def __init__(
        self,
        log_file: Optional[Path] = None,
        silent: bool = False,
        console: Optional[Console] = None,
    ) -> None:
        self.silent = silent
        self.console = console or Console(highlight=False)
        self.log_file: Optional[Path] = None
        self._stream: Optional[IO[str]] = None
        self._pending: List[str] = []
        self._kv = structlog.processors.KeyValueRenderer(
            sort_keys=False, repr_native_str=False
        )
        self._log = structlog.wrap_logger(
            structlog.ReturnLogger(),
            wrapper_class=structlog.BoundLogger,
            processors=[
                structlog.processors.TimeStamper(fmt="%Y/%m/%d %H:%M:%S", utc=False),
                self._emit,
            ],
        )
        if log_file is not None:
            self.open(log_file)

    def open(self, log_file: Path) -> None:
        """Open the append-only log file, creating its directory."""
        self.close()
        log_file = Path(log_file)
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            self._stream = open(log_file, "a", encoding="utf-8")
            self.log_file = log_file
        except OSError as e:
            self._stream = None
            self.warning(f"Failed to open log file {log_file}: {e}")
            self._pending.clear()
            return
        # Events logged before the first open are written ahead of the rest
        if self._pending:
            self._stream.writelines(self._pending)
            self._stream.flush()
            self._pending.clear()

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def __enter__(self) -> "HardnLogger":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _emit(self, _logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Any:
        event = str(event_dict.pop("event", ""))
        timestamp = event_dict.pop("timestamp", "")
        label, style = _LEVELS.get(method_name, (method_name.upper(), ""))
        message = event
        if event_dict:
            message = f"{event} {self._kv(None, method_name, event_dict)}"

        if not self.silent:
            self.console.print(Text.assemble((f"[{label}] ", style), message))
        line = f"{timestamp} {label}: {message}\n"
        if self._stream is not None:
            self._stream.write(line)
            self._stream.flush()
        elif self.log_file is None:
            self._pending.append(line)

        raise structlog.DropEvent

    def info(self, event: str, **kw: Any) -> None:
        self._log.info(event, **kw)

    def success(self, event: str, **kw: Any) -> None:
        self._log.success(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._log.warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._log.error(event, **kw)

    def install(self, event: str, **kw: Any) -> None:
        self._log.install(event, **kw)

    def dry_run(self, event: str, **kw: Any) -> None:
        """Log a preview of a mutation that dry-run mode suppressed."""
        self._log.info(DRY_RUN_PREFIX + event, **kw)

    def header(self, title: str = "hardn") -> None:
        if not self.silent:
            self.console.print(Rule(f"{title} {__version__}", style="blue"))
        self.info(f"=== {title} run started ===")

    def print_logs(self, log_file: Optional[Path] = None) -> bool:
        """Dump the log file to the console."""
        path = Path(log_file or self.log_file or "")
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            self.error(f"Failed to read log file: {e}")
            return False

        self.console.print(f"\n# Contents of {path}:\n", markup=False)
        self.console.print(content, markup=False, highlight=False)
        return True

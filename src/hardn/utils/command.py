"""Command execution utilities."""

import os
import shlex
import shutil
import subprocess
from typing import Dict, List, Mapping, Optional

from hardn.exceptions import CommandFailed
from hardn.log import HardnLogger
from hardn.types import CommandResult


class CommandRunner:
    """Execute external tools with dry-run gating and combined output."""

    def __init__(
        self,
        logger: HardnLogger,
        dry_run: bool = False,
        timeout: Optional[int] = None,
    ) -> None:
        """Initialize command runner.

        Args:
            logger: Run logger
            dry_run: If True, mutating commands are only logged
            timeout: Optional timeout in seconds; local tools run unbounded by default
        """
        self.logger = logger
        self.dry_run = dry_run
        self.timeout = timeout

    def run(
        self,
        name: str,
        *args: str,
        check: bool = True,
        env: Optional[Mapping[str, str]] = None,
        input: Optional[str] = None,
    ) -> CommandResult:
        """Run a mutating command.

        Args:
            name: Program to execute
            *args: Program arguments
            check: Whether to raise on non-zero exit
            env: Extra environment variables
            input: Text passed on stdin

        Returns:
            CommandResult with combined output

        Raises:
            CommandFailed: If the command exits non-zero and check=True
        """
        argv = [name, *args]
        if self.dry_run:
            self.logger.dry_run(f"Run: {shlex.join(argv)}")
            return CommandResult("", 0)

        result = self._execute(argv, env=env, input=input)
        if check and not result.success:
            raise CommandFailed(name, args, result.output, result.return_code)
        return result

    def query(
        self,
        name: str,
        *args: str,
        env: Optional[Mapping[str, str]] = None,
        input: Optional[str] = None,
    ) -> CommandResult:
        """Run a read-only probe; executes in dry-run too and never raises."""
        return self._execute([name, *args], env=env, input=input)

    def available(self, command: str) -> bool:
        """Check if command is available on PATH."""
        return shutil.which(command) is not None

    def _execute(
        self,
        argv: List[str],
        env: Optional[Mapping[str, str]] = None,
        input: Optional[str] = None,
    ) -> CommandResult:
        full_env: Optional[Dict[str, str]] = None
        if env:
            full_env = {**os.environ, **env}

        try:
            result = subprocess.run(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                input=input,
                env=full_env,
                timeout=self.timeout,
                start_new_session=True,
                check=False,
            )
        except FileNotFoundError as e:
            return CommandResult(str(e), 127)
        except subprocess.TimeoutExpired:
            return CommandResult(f"Command timed out after {self.timeout}s", -1)

        return CommandResult(result.stdout or "", result.returncode)

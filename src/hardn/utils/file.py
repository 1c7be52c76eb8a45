"""File management utilities."""

import os
import shutil
import tempfile
from datetime import datetime, timedelta
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional, Tuple, Union

from hardn.exceptions import FileIOError
from hardn.log import HardnLogger
from hardn.types import MutationRecord

PathLike = Union[str, Path]
Owner = Tuple[int, int]

BACKUP_DATE_FORMAT = "%Y-%m-%d"
BACKUP_TIME_FORMAT = "%H%M%S"


class FileSteward:
    """Single path for mutating file I/O: dry-run gating, backups, atomic writes."""

    def __init__(
        self,
        logger: HardnLogger,
        backup_dir: PathLike,
        enable_backups: bool = True,
        dry_run: bool = False,
        root: PathLike = "/",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize file steward.

        Args:
            logger: Run logger
            backup_dir: Canonical directory for dated backups
            enable_backups: Whether to back up files before changing them
            dry_run: If True, only log intended mutations
            root: Prefix under which canonical absolute paths live
            clock: Source of the current time for backup names
        """
        self.logger = logger
        self.backup_dir = Path(backup_dir)
        self.enable_backups = enable_backups
        self.dry_run = dry_run
        self.root = Path(root)
        self.clock = clock
        self.mutations: List[MutationRecord] = []

    def host_path(self, path: PathLike) -> Path:
        """Map a canonical path onto the steward's root."""
        path = Path(path)
        if self.root == Path("/") or not path.is_absolute():
            return path
        return self.root / PurePosixPath(path).relative_to("/")

    def exists(self, path: PathLike) -> bool:
        return self.host_path(path).exists()

    def read_text(self, path: PathLike) -> str:
        try:
            return self.host_path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise FileIOError(f"Failed to read {path}: {e}") from e

    def ensure_dir(
        self, path: PathLike, mode: int = 0o755, owner: Optional[Owner] = None
    ) -> None:
        """Create a directory (and parents) if missing, then apply mode and owner."""
        if self.dry_run:
            if not self.exists(path):
                self.logger.dry_run(f"Create directory {path} (mode {mode:04o})")
            return

        target = self.host_path(path)
        try:
            target.mkdir(mode=mode, parents=True, exist_ok=True)
            os.chmod(target, mode)
            if owner is not None:
                os.chown(target, *owner)
        except OSError as e:
            raise FileIOError(f"Failed to create directory {path}: {e}") from e

    def backup(self, path: PathLike) -> Optional[Path]:
        """Copy a file to backup_dir/YYYY-MM-DD/<name>.<HHMMSS>.bak.

        Returns:
            Canonical path of the backup, or None when nothing was copied
        """
        if not self.enable_backups:
            self.logger.info(f"Backups disabled. Skipping backup of {path}")
            return None

        source = self.host_path(path)
        if not source.is_file():
            return None

        now = self.clock()
        day_dir = self.backup_dir / now.strftime(BACKUP_DATE_FORMAT)
        name = f"{Path(path).name}.{now.strftime(BACKUP_TIME_FORMAT)}.bak"

        if self.dry_run:
            self.logger.dry_run(f"Backup {path} to {day_dir / name}")
            return None

        host_dir = self.host_path(day_dir)
        try:
            host_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
            target = host_dir / name
            counter = 1
            while target.exists():
                target = host_dir / f"{name}.{counter}"
                counter += 1
            shutil.copyfile(source, target)
            os.chmod(target, 0o644)
        except OSError as e:
            raise FileIOError(f"Failed to back up {path}: {e}") from e

        backup_path = day_dir / target.name
        self.logger.info(f"Backed up {path} to {backup_path}")
        return backup_path

    def write(
        self,
        path: PathLike,
        content: Union[str, bytes],
        mode: int = 0o644,
        owner: Optional[Owner] = None,
        backup: bool = True,
    ) -> MutationRecord:
        """Atomically replace a file's content.

        Args:
            path: Canonical target path
            content: New file content
            mode: File mode applied before the file is moved into place
            owner: Optional (uid, gid)
            backup: Whether to back up the current content first

        Returns:
            MutationRecord describing the change
        """
        data = content.encode("utf-8") if isinstance(content, str) else content

        if self.dry_run:
            self.logger.dry_run(f"Write {path} (mode {mode:04o}, {len(data)} bytes)")
            record = MutationRecord(str(path), None, data, mode)
            self.mutations.append(record)
            return record

        parent = Path(path).parent
        if not self.exists(parent):
            self.ensure_dir(parent)
        backup_path = self.backup(path) if backup else None

        target = self.host_path(path)
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.chmod(tmp_name, mode)
            if owner is not None:
                os.chown(tmp_name, *owner)
            os.replace(tmp_name, target)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise FileIOError(f"Failed to write {path}: {e}") from e

        record = MutationRecord(
            str(path), str(backup_path) if backup_path else None, data, mode
        )
        self.mutations.append(record)
        return record

    def transform(
        self, path: PathLike, fn: Callable[[str], str], mode: Optional[int] = None
    ) -> bool:
        """Backup-then-rewrite a file through fn.

        Returns:
            True if the content changed
        """
        current = self.read_text(path)
        updated = fn(current)
        if updated == current:
            self.logger.info(f"{path} already up to date")
            return False

        if mode is None:
            mode = self.host_path(path).stat().st_mode & 0o7777
        self.write(path, updated, mode=mode)
        return True

    def list_backups(self, path: PathLike) -> List[Path]:
        """Return canonical paths of all backups of a file, oldest first."""
        name = Path(path).name
        host_dir = self.host_path(self.backup_dir)
        if not host_dir.is_dir():
            return []

        found = sorted(host_dir.glob(f"*/{name}.*.bak*"))
        return [self.backup_dir / p.relative_to(host_dir) for p in found]

    def restore(self, backup_path: PathLike, original_path: PathLike) -> MutationRecord:
        """Restore a file from a backup, backing up the current content first."""
        source = self.host_path(backup_path)
        if not source.is_file():
            raise FileIOError(f"Backup file {backup_path} does not exist")

        try:
            data = source.read_bytes()
        except OSError as e:
            raise FileIOError(f"Failed to read backup {backup_path}: {e}") from e

        record = self.write(original_path, data)
        if not self.dry_run:
            self.logger.success(f"Restored {original_path} from backup {backup_path}")
        return record

    def cleanup_old_backups(self, days_to_keep: int) -> List[Path]:
        """Remove dated backup directories older than days_to_keep."""
        host_dir = self.host_path(self.backup_dir)
        if not host_dir.is_dir():
            return []

        cutoff = (self.clock() - timedelta(days=days_to_keep)).date()
        removed: List[Path] = []
        for entry in sorted(host_dir.iterdir()):
            if not entry.is_dir():
                continue
            try:
                day = datetime.strptime(entry.name, BACKUP_DATE_FORMAT).date()
            except ValueError:
                continue
            if day >= cutoff:
                continue

            canonical = self.backup_dir / entry.name
            if self.dry_run:
                self.logger.dry_run(f"Remove old backup directory {canonical}")
            else:
                try:
                    shutil.rmtree(entry)
                except OSError as e:
                    raise FileIOError(f"Failed to remove {canonical}: {e}") from e
                self.logger.info(f"Removed old backup directory {canonical}")
            removed.append(canonical)
        return removed

    def verify_backup_dir(self) -> None:
        """Ensure the backup directory exists and is writable."""
        if self.dry_run:
            self.logger.dry_run(f"Verify backup directory {self.backup_dir}")
            return

        host_dir = self.host_path(self.backup_dir)
        probe = host_dir / ".write_test"
        try:
            host_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
            probe.write_text("test")
            probe.unlink()
        except OSError as e:
            raise FileIOError(
                f"Backup directory {self.backup_dir} is not writable: {e}"
            ) from e
        self.logger.info(f"Backup directory {self.backup_dir} verified")

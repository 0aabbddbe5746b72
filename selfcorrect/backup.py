"""
Backup Manager
==============

Snapshots files before a correction mutates them and restores them when the
correction fails.

Each backup id gets its own directory holding one snapshot per file and a
``correction-metadata.json`` record. Snapshot names embed the original file
name, a short digest of its full path and a UTC timestamp with microseconds,
so repeated backups of the same file never overwrite each other and the
lexicographically greatest snapshot is always the most recent.

Usage:
    from selfcorrect.backup import BackupManager

    backups = BackupManager(config.backup_dir)
    record = backups.backup("correction_x_1", ["/path/to/file.py"], descriptor)
    ...
    result = backups.rollback("correction_x_1")
"""

import hashlib
import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from selfcorrect.errors import NotFoundError
from selfcorrect.models import BackupRecord, BackupStatus, utc_now, utc_now_iso

logger = logging.getLogger(__name__)

METADATA_FILENAME = "correction-metadata.json"
DEFAULT_RETENTION = 50


@dataclass
class RollbackResult:
    """Result of a rollback operation."""
    success: bool
    backup_id: str
    message: str
    restored_files: list[str] = field(default_factory=list)
    missing_snapshots: list[str] = field(default_factory=list)


def snapshot_prefix(file_path: str) -> str:
    """Prefix shared by every snapshot of one file."""
    path = Path(file_path)
    digest = hashlib.sha1(str(path.resolve()).encode()).hexdigest()[:8]
    return f"{path.name}.{digest}.backup."


class BackupManager:
    """Manages correction backups on disk."""

    def __init__(self, backup_dir: Path, retention: int = DEFAULT_RETENTION):
        self.backup_dir = Path(backup_dir)
        self.retention = retention

    def _path(self, backup_id: str) -> Path:
        return self.backup_dir / backup_id

    def _metadata_path(self, backup_id: str) -> Path:
        return self._path(backup_id) / METADATA_FILENAME

    def _write_record(self, record: BackupRecord) -> None:
        # Write then rename so a crash never leaves a torn metadata file
        path = self._metadata_path(record.backup_id)
        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(record.to_dict(), f, indent=2)
        os.replace(tmp_path, path)

    def get_record(self, backup_id: str) -> Optional[BackupRecord]:
        """Load a backup's metadata, or None if it does not exist."""
        path = self._metadata_path(backup_id)
        if not path.exists():
            return None
        with open(path, "r") as f:
            return BackupRecord.from_dict(json.load(f))

    # -------------------------------------------------------------------------
    # Backup / rollback
    # -------------------------------------------------------------------------

    def backup(
        self,
        backup_id: str,
        files_to_modify: list[str],
        descriptor: Optional[dict] = None,
    ) -> BackupRecord:
        """
        Snapshot every existing file in files_to_modify.

        Files that do not exist yet are skipped; the metadata still lists them
        so a rollback reports them as having no snapshot.
        """
        backup_path = self._path(backup_id)
        backup_path.mkdir(parents=True, exist_ok=True)

        files = [str(f) for f in files_to_modify]
        snapshots = {}
        for file_path in files:
            source = Path(file_path)
            if not source.is_file():
                continue
            target = self._fresh_snapshot_path(backup_path, file_path)
            shutil.copy2(source, target)
            snapshots[file_path] = target.name

        correction_descriptor = dict(descriptor or {})
        correction_descriptor["files_to_modify"] = files

        record = BackupRecord(
            backup_id=backup_id,
            timestamp=utc_now_iso(),
            correction_descriptor=correction_descriptor,
            status=BackupStatus.CREATED,
            snapshots=snapshots,
        )
        self._write_record(record)
        logger.debug("Backup %s created with %d snapshots", backup_id, len(snapshots))
        return record

    @staticmethod
    def _fresh_snapshot_path(backup_path: Path, file_path: str) -> Path:
        prefix = snapshot_prefix(file_path)
        while True:
            stamp = utc_now().strftime("%Y%m%dT%H%M%S%fZ")
            target = backup_path / f"{prefix}{stamp}"
            if not target.exists():
                return target

    def mark_status(self, backup_id: str, status: BackupStatus) -> BackupRecord:
        """Update the status of an existing backup."""
        record = self.get_record(backup_id)
        if record is None:
            raise NotFoundError(f"Backup metadata not found for {backup_id}")
        record.status = status
        self._write_record(record)
        return record

    def rollback(self, backup_id: str) -> RollbackResult:
        """
        Restore every file of a backup from its most recent snapshot.

        Best effort per file: a missing snapshot is reported and the remaining
        files are still restored.

        Raises:
            NotFoundError: If the backup metadata does not exist.
        """
        record = self.get_record(backup_id)
        if record is None:
            raise NotFoundError(f"Cannot rollback: backup metadata not found for {backup_id}")

        backup_path = self._path(backup_id)
        restored = []
        missing = []

        for file_path in record.files_to_modify:
            prefix = snapshot_prefix(file_path)
            candidates = sorted(p.name for p in backup_path.iterdir() if p.name.startswith(prefix))
            if not candidates:
                missing.append(file_path)
                logger.warning("No snapshot of %s in backup %s", file_path, backup_id)
                continue
            try:
                Path(file_path).parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(backup_path / candidates[-1], file_path)
                restored.append(file_path)
            except OSError as e:
                missing.append(file_path)
                logger.error("Failed to restore %s from %s: %s", file_path, backup_id, e)

        record.status = BackupStatus.ROLLED_BACK
        record.rollback_time = utc_now_iso()
        record.restored_files = restored
        record.missing_snapshots = missing
        self._write_record(record)

        logger.info("Rollback completed for %s (%d restored)", backup_id, len(restored))
        return RollbackResult(
            success=not missing,
            backup_id=backup_id,
            message=f"Restored {len(restored)} of {len(record.files_to_modify)} files",
            restored_files=restored,
            missing_snapshots=missing,
        )

    # -------------------------------------------------------------------------
    # Listing and retention
    # -------------------------------------------------------------------------

    def _sort_key(self, backup_id: str) -> tuple[str, str]:
        try:
            record = self.get_record(backup_id)
        except (OSError, ValueError, KeyError, TypeError):
            record = None
        return (record.timestamp if record else "", backup_id)

    def list_backups(self) -> list[str]:
        """Backup ids, most recent first."""
        if not self.backup_dir.exists():
            return []
        ids = [p.name for p in self.backup_dir.iterdir() if p.is_dir()]
        return sorted(ids, key=self._sort_key, reverse=True)

    def list_records(self, limit: Optional[int] = None) -> list[BackupRecord]:
        """Readable backup records, most recent first. Unreadable ones are skipped."""
        records = []
        for backup_id in self.list_backups()[:limit]:
            try:
                record = self.get_record(backup_id)
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("Skipping backup %s with unreadable metadata: %s", backup_id, e)
                continue
            if record is not None:
                records.append(record)
        return records

    def cleanup_old_backups(self, keep: Optional[int] = None) -> int:
        """Delete all but the most recent backups. Returns the number removed."""
        keep = self.retention if keep is None else keep
        backups = self.list_backups()
        to_delete = backups[keep:]
        for backup_id in to_delete:
            shutil.rmtree(self._path(backup_id), ignore_errors=True)
        if to_delete:
            logger.info("Cleaned up %d old backups", len(to_delete))
        return len(to_delete)

    def recover_incomplete(self) -> list[str]:
        """Roll back every backup whose correction never finished applying."""
        recovered = []
        for record in self.list_records():
            if record.status == BackupStatus.APPLYING:
                logger.warning("Backup %s was left mid-correction; rolling back", record.backup_id)
                self.rollback(record.backup_id)
                recovered.append(record.backup_id)
        return recovered

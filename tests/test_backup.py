"""
Tests for the backup manager.
"""

import json

import pytest

from selfcorrect.backup import METADATA_FILENAME, BackupManager, snapshot_prefix
from selfcorrect.errors import NotFoundError
from selfcorrect.models import BackupStatus


@pytest.fixture
def manager(temp_dir):
    return BackupManager(temp_dir / "backups")


@pytest.fixture
def target(temp_dir):
    path = temp_dir / "src" / "config.json"
    path.parent.mkdir(parents=True)
    path.write_bytes(b'{"root": "lib"}\r\n\x00binary-tail')
    return path


# =============================================================================
# Backup
# =============================================================================

class TestBackup:
    """Tests for taking backups."""

    def test_writes_snapshot_and_metadata(self, manager, target):
        record = manager.backup("correction_fix_1", [str(target)], {"kind": "mechanism_config_fix"})

        backup_path = manager.backup_dir / "correction_fix_1"
        metadata = json.loads((backup_path / METADATA_FILENAME).read_text())
        assert metadata["status"] == "created"
        assert metadata["correction_descriptor"]["kind"] == "mechanism_config_fix"
        assert metadata["correction_descriptor"]["files_to_modify"] == [str(target)]

        snapshot = backup_path / record.snapshots[str(target)]
        assert snapshot.name.startswith(snapshot_prefix(str(target)))
        assert snapshot.read_bytes() == target.read_bytes()

    def test_missing_file_skipped(self, manager, temp_dir):
        missing = temp_dir / "nope.json"
        record = manager.backup("correction_fix_1", [str(missing)])
        assert record.snapshots == {}
        assert record.files_to_modify == [str(missing)]

    def test_repeated_backups_do_not_overwrite(self, manager, target):
        manager.backup("correction_fix_1", [str(target)])
        manager.backup("correction_fix_1", [str(target)])
        snapshots = [
            p for p in (manager.backup_dir / "correction_fix_1").iterdir()
            if p.name != METADATA_FILENAME
        ]
        assert len(snapshots) == 2

    def test_same_name_different_dirs(self, manager, temp_dir):
        first = temp_dir / "a" / "index.ts"
        second = temp_dir / "b" / "index.ts"
        for path in (first, second):
            path.parent.mkdir()
            path.write_text(str(path))
        assert snapshot_prefix(str(first)) != snapshot_prefix(str(second))

    def test_mark_status(self, manager, target):
        manager.backup("correction_fix_1", [str(target)])
        manager.mark_status("correction_fix_1", BackupStatus.APPLYING)
        assert manager.get_record("correction_fix_1").status == BackupStatus.APPLYING

    def test_mark_status_unknown(self, manager):
        with pytest.raises(NotFoundError):
            manager.mark_status("nope", BackupStatus.COMPLETED)


# =============================================================================
# Rollback
# =============================================================================

class TestRollback:
    """Tests for restoring backups."""

    def test_round_trip_is_byte_exact(self, manager, target):
        original = target.read_bytes()
        manager.backup("correction_fix_1", [str(target)])
        target.write_bytes(b"mutated")

        result = manager.rollback("correction_fix_1")

        assert result.success
        assert target.read_bytes() == original
        record = manager.get_record("correction_fix_1")
        assert record.status == BackupStatus.ROLLED_BACK
        assert record.rollback_time is not None
        assert record.restored_files == [str(target)]

    def test_latest_snapshot_wins(self, manager, target):
        target.write_text("first")
        manager.backup("correction_fix_1", [str(target)])
        target.write_text("second")
        manager.backup("correction_fix_1", [str(target)])
        target.write_text("third")

        manager.rollback("correction_fix_1")
        assert target.read_text() == "second"

    def test_missing_metadata(self, manager):
        with pytest.raises(NotFoundError):
            manager.rollback("correction_missing")

    def test_best_effort_per_file(self, manager, target, temp_dir):
        missing = temp_dir / "new.json"
        manager.backup("correction_fix_1", [str(missing), str(target)])
        target.write_text("mutated")

        result = manager.rollback("correction_fix_1")

        assert not result.success
        assert result.missing_snapshots == [str(missing)]
        assert result.restored_files == [str(target)]
        assert target.read_text() != "mutated"


# =============================================================================
# Retention and recovery
# =============================================================================

class TestRetention:
    def test_sixty_backups_leave_fifty_newest(self, manager, target):
        ids = [f"correction_fix_{i:03d}" for i in range(60)]
        for backup_id in ids:
            manager.backup(backup_id, [str(target)])

        removed = manager.cleanup_old_backups()

        assert removed == 10
        remaining = manager.list_backups()
        assert len(remaining) == 50
        assert set(remaining) == set(ids[10:])

    def test_list_newest_first(self, manager, target):
        for i in range(3):
            manager.backup(f"correction_fix_{i}", [str(target)])
        assert manager.list_backups() == ["correction_fix_2", "correction_fix_1", "correction_fix_0"]
        assert [r.backup_id for r in manager.list_records(limit=2)] == ["correction_fix_2", "correction_fix_1"]

    def test_list_without_directory(self, temp_dir):
        assert BackupManager(temp_dir / "absent").list_backups() == []

    def test_recover_incomplete(self, manager, target):
        original = target.read_bytes()
        manager.backup("correction_done", [str(target)])
        manager.mark_status("correction_done", BackupStatus.COMPLETED)
        manager.backup("correction_crashed", [str(target)])
        manager.mark_status("correction_crashed", BackupStatus.APPLYING)
        target.write_text("half-written")

        recovered = manager.recover_incomplete()

        assert recovered == ["correction_crashed"]
        assert target.read_bytes() == original
        assert manager.get_record("correction_done").status == BackupStatus.COMPLETED
        assert manager.get_record("correction_crashed").status == BackupStatus.ROLLED_BACK


class TestUnreadableMetadata:
    """A torn metadata file must not take the manager down."""

    def test_truncated_record_is_skipped(self, manager, target):
        original = target.read_bytes()
        manager.backup("correction_crashed", [str(target)])
        manager.mark_status("correction_crashed", BackupStatus.APPLYING)
        manager.backup("correction_torn", [str(target)])
        (manager.backup_dir / "correction_torn" / METADATA_FILENAME).write_text(
            '{"backup_id": "correction_torn", "stat'
        )
        target.write_text("half-written")

        assert [r.backup_id for r in manager.list_records()] == ["correction_crashed"]
        assert manager.recover_incomplete() == ["correction_crashed"]
        assert target.read_bytes() == original

    def test_metadata_written_without_leftovers(self, manager, target):
        manager.backup("correction_fix_1", [str(target)])
        manager.mark_status("correction_fix_1", BackupStatus.COMPLETED)

        names = [p.name for p in (manager.backup_dir / "correction_fix_1").iterdir()]
        assert METADATA_FILENAME in names
        assert not any(name.endswith(".tmp") for name in names)

"""
Tests for the selfcorrect command line.
"""

import asyncio
import json

import pytest

from selfcorrect.backup import BackupManager
from selfcorrect.cli.learning_cli import build_parser, main
from selfcorrect.config import LearningConfig
from selfcorrect.models import TaskStatus
from selfcorrect.system import create_learning_system


@pytest.fixture
def data_dir(temp_dir, monkeypatch):
    monkeypatch.chdir(temp_dir)
    for name in ("SELFCORRECT_DATA_DIR", "SELFCORRECT_ENABLED", "SELFCORRECT_BACKUP_DIR"):
        monkeypatch.delenv(name, raising=False)
    return temp_dir / "data"


def run(data_dir, *args):
    return main(["--data-dir", str(data_dir), *args])


def load_history(data_dir):
    async def _load():
        system = create_learning_system(LearningConfig(data_dir=data_dir))
        await system.initialize()
        try:
            return list(system.store.history), system.store.tasks_by_status(TaskStatus.PENDING)
        finally:
            await system.close()

    return asyncio.run(_load())


class TestParser:
    def test_subcommands(self):
        args = build_parser().parse_args(["monitor", "--once", "--interval", "5"])
        assert args.command == "monitor"
        assert args.once is True
        assert args.interval == 5.0

    def test_no_command(self, data_dir):
        assert main([]) == 1


class TestLearn:
    def test_invalid_json(self, data_dir):
        assert run(data_dir, "learn", "command_execution", "{not json") == 1

    def test_payload_must_be_object(self, data_dir):
        assert run(data_dir, "learn", "command_execution", "[1, 2]") == 1

    def test_unknown_activity_type(self, data_dir):
        assert run(data_dir, "learn", "telepathy", "{}") == 1

    def test_learns_and_normalizes_keys(self, data_dir):
        payload = json.dumps({
            "command": "build && deploy",
            "exitCode": 1,
            "error": "&& is not a valid statement separator",
        })

        assert run(data_dir, "learn", "command_execution", payload) == 0

        history, pending = load_history(data_dir)
        assert len(history) == 1
        assert history[0]["data"]["exit_code"] == 1
        assert len(pending) == 1


class TestInspection:
    def test_analyze_empty(self, data_dir):
        assert run(data_dir, "analyze") == 0

    def test_analyze_json(self, data_dir):
        assert run(data_dir, "analyze", "--json") == 0

    def test_monitor_once(self, data_dir):
        assert run(data_dir, "monitor", "--once") == 0

    def test_backups_empty(self, data_dir):
        assert run(data_dir, "backups") == 0


class TestBackupCommands:
    def test_rollback_unknown_id(self, data_dir):
        assert run(data_dir, "rollback", "correction_missing") == 1

    def test_rollback_restores(self, data_dir, temp_dir):
        target = temp_dir / "deploy.sh"
        target.write_text("build && deploy\n")
        manager = BackupManager(LearningConfig(data_dir=data_dir).backup_dir)
        manager.backup("correction_command_syntax_fix_1", [str(target)])
        target.write_text("build; deploy\n")

        assert run(data_dir, "rollback", "correction_command_syntax_fix_1") == 0
        assert target.read_text() == "build && deploy\n"

    def test_cleanup_keeps_most_recent(self, data_dir, temp_dir):
        manager = BackupManager(LearningConfig(data_dir=data_dir).backup_dir)
        for i in range(3):
            manager.backup(f"correction_fix_{i:03d}", [str(temp_dir / "nothing.txt")])

        assert run(data_dir, "backups") == 0
        assert run(data_dir, "cleanup", "--keep", "1") == 0
        assert len(manager.list_backups()) == 1

#!/usr/bin/env python
"""
Learning CLI - Inspect and drive the self-correction learning system.

Usage:
    selfcorrect analyze [--json]
    selfcorrect monitor [--interval SECONDS] [--once]
    selfcorrect learn ACTIVITY_TYPE [JSON_PAYLOAD]
    selfcorrect backups [--limit N]
    selfcorrect rollback BACKUP_ID
    selfcorrect cleanup [--keep N]
"""

import argparse
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from dotenv import load_dotenv

from selfcorrect import __version__
from selfcorrect.backup import BackupManager
from selfcorrect.config import LearningConfig
from selfcorrect.errors import NotFoundError, SelfCorrectError
from selfcorrect.models import ActivityType, normalize_payload
from selfcorrect.output import (
    console,
    create_table,
    print_error,
    print_header,
    print_info,
    print_json_data,
    print_key_value,
    print_key_value_table,
    print_muted,
    print_subheader,
    print_success,
    print_warning,
    setup_rich_logging,
    severity_style,
    spinner,
    icon,
)
from selfcorrect.system import LearningSystem, create_learning_system

load_dotenv()

logger = logging.getLogger(__name__)


def load_config(args) -> LearningConfig:
    return LearningConfig.load(data_dir=args.data_dir, config_path=args.config)


@asynccontextmanager
async def open_system(config: LearningConfig) -> AsyncIterator[LearningSystem]:
    """Initialize a learning system and always close it afterwards."""
    system = create_learning_system(config)
    await system.initialize()
    try:
        yield system
    finally:
        await system.close()


# =============================================================================
# analyze
# =============================================================================

async def _analyze(config: LearningConfig):
    async with open_system(config) as system:
        return system.run_analysis()


def cmd_analyze(args):
    """Show what has been learned so far."""
    config = load_config(args)
    with spinner("Loading learning data..."):
        summary = asyncio.run(_analyze(config))

    if args.json:
        print_json_data(summary.to_dict())
        return 0

    print_header("Self-Correction Learning Analysis")
    console.print(f"[sc.muted]Total activities tracked:[/] [sc.number]{summary.total_activities}[/]")
    console.print()

    table = create_table(title="Error patterns by category", columns=["Category", "Patterns"])
    for category, count in summary.pattern_counts.items():
        table.add_row(category, f"[sc.number]{count}[/]")
    console.print(table)

    print_subheader("Top Error Patterns")
    if not summary.top_patterns:
        print_muted("  No error patterns recorded yet")
    for i, pattern in enumerate(summary.top_patterns, 1):
        console.print(
            f"  [sc.accent]{i}.[/] {pattern.key} [sc.muted]({pattern.category})[/]: "
            f"[sc.number]{pattern.count}[/] occurrences"
        )
        if pattern.primary_cause:
            console.print(f"     [sc.muted]Primary cause:[/] {pattern.primary_cause}")

    console.print()
    print_key_value_table({
        "Issues handled": summary.issues_logged,
        "Prevention rules": summary.prevention_rules,
        "Scheduled (pending)": summary.scheduled_pending,
        "Scheduled (executed)": summary.scheduled_executed,
        "Success patterns": summary.success_patterns,
    }, title="Corrections")

    console.print()
    print_success("Analysis complete")
    return 0


# =============================================================================
# monitor
# =============================================================================

async def _monitor(config: LearningConfig, interval: float, once: bool) -> int:
    async with open_system(config) as system:
        scheduler = system.scheduler
        scheduler.interval_seconds = interval
        if once:
            executed = await scheduler.sweep()
            print_info(f"Executed {len(executed)} scheduled corrections")
            return len(executed)

        stop = asyncio.Event()
        try:
            await scheduler.run(stop)
        except asyncio.CancelledError:
            stop.set()
        return 0


def cmd_monitor(args):
    """Run the scheduled-correction sweep until interrupted."""
    config = load_config(args)
    interval = args.interval if args.interval is not None else config.sweep_interval_seconds

    if not args.once:
        console.print(f"[sc.info]{icon('clock')} Self-correction monitoring started (every {interval:g}s)[/]")
        print_muted("Press Ctrl+C to stop")
    try:
        asyncio.run(_monitor(config, interval, args.once))
    except KeyboardInterrupt:
        console.print()
        print_info("Monitoring stopped")
    return 0


# =============================================================================
# learn
# =============================================================================

async def _learn(config: LearningConfig, activity_type: ActivityType, payload: dict):
    async with open_system(config) as system:
        diagnosis = await system.monitor_activity(activity_type, payload)
        return diagnosis, system.last_result


def cmd_learn(args):
    """Feed one activity to the learning system."""
    try:
        payload = json.loads(args.payload) if args.payload else {}
    except json.JSONDecodeError as e:
        print_error(f"Invalid JSON payload: {e}")
        return 1
    if not isinstance(payload, dict):
        print_error("JSON payload must be an object")
        return 1

    try:
        activity_type = ActivityType(args.activity_type)
    except ValueError:
        valid = ", ".join(t.value for t in ActivityType)
        print_error(f"Unknown activity type '{args.activity_type}' (expected one of: {valid})")
        return 1

    config = load_config(args)
    try:
        diagnosis, result = asyncio.run(_learn(config, activity_type, normalize_payload(payload)))
    except (SelfCorrectError, OSError) as e:
        print_error(f"Learning failed: {e}")
        return 1

    if diagnosis.has_issue:
        style = severity_style(diagnosis.severity.value)
        print_warning(f"Issue detected: {diagnosis.description}")
        print_key_value_table({
            "Root cause": diagnosis.root_cause,
            "Severity": f"[{style}]{diagnosis.severity.value}[/]",
            "Confidence": f"{diagnosis.confidence * 100:.1f}%",
            "Action": result.action if result else "none",
        })
    print_success("Activity monitored and learned from")
    return 0


# =============================================================================
# backups / rollback / cleanup
# =============================================================================

def _backup_manager(args) -> BackupManager:
    config = load_config(args)
    return BackupManager(config.backup_dir, retention=config.backup_retention)


def cmd_backups(args):
    """List correction backups, most recent first."""
    records = _backup_manager(args).list_records(limit=args.limit)
    if not records:
        print_info("No correction backups found")
        return 0

    print_header(f"Correction Backups ({len(records)})")
    table = create_table(columns=["ID", "Timestamp", "Kind", "Files", "Status"])
    for record in records:
        table.add_row(
            f"[sc.accent]{record.backup_id}[/]",
            f"[sc.muted]{record.timestamp[:19]}[/]",
            str(record.correction_descriptor.get("kind", "unknown")),
            str(len(record.files_to_modify)),
            record.status.value,
        )
    console.print(table)
    return 0


def cmd_rollback(args):
    """Restore the files of a correction backup."""
    manager = _backup_manager(args)
    try:
        with spinner("Rolling back..."):
            result = manager.rollback(args.backup_id)
    except NotFoundError as e:
        print_error(str(e))
        return 1
    except (ValueError, KeyError) as e:
        print_error(f"Backup metadata for {args.backup_id} is unreadable: {e}")
        return 1

    if result.success:
        print_success(f"Rollback successful: {result.message}")
        for path in result.restored_files:
            print_key_value("restored", path, indent=1)
        return 0
    print_warning(f"Rollback incomplete: {result.message}")
    for path in result.missing_snapshots:
        console.print(f"  [sc.err]-[/] [sc.path]{path}[/]")
    return 1


def cmd_cleanup(args):
    """Delete all but the most recent backups."""
    manager = _backup_manager(args)
    keep = args.keep if args.keep is not None else manager.retention
    removed = manager.cleanup_old_backups(keep)
    if removed:
        print_success(f"Removed {removed} old backups (kept {keep})")
    else:
        print_info(f"Nothing to remove (keeping up to {keep})")
    return 0


# =============================================================================
# Entry point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="selfcorrect",
        description="Self-correction learning system",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Learning data directory (default: memory-bank/learning-data)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON config file (default: selfcorrect_config.json in the current dir)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    analyze_parser = subparsers.add_parser("analyze", help="Run learning analysis and show insights")
    analyze_parser.add_argument("--json", action="store_true", help="Print the summary as JSON")

    monitor_parser = subparsers.add_parser("monitor", help="Run the scheduled-correction sweep")
    monitor_parser.add_argument("--interval", type=float, default=None, help="Seconds between sweeps")
    monitor_parser.add_argument("--once", action="store_true", help="Run a single sweep and exit")

    learn_parser = subparsers.add_parser("learn", help="Manually learn from one activity")
    learn_parser.add_argument("activity_type", help="Activity type, e.g. command_execution")
    learn_parser.add_argument("payload", nargs="?", default=None, help="Activity data as a JSON object")

    backups_parser = subparsers.add_parser("backups", help="List correction backups")
    backups_parser.add_argument("--limit", "-n", type=int, default=20, help="Max backups to show")

    rollback_parser = subparsers.add_parser("rollback", help="Restore files from a correction backup")
    rollback_parser.add_argument("backup_id", help="Backup ID to restore")

    cleanup_parser = subparsers.add_parser("cleanup", help="Remove old correction backups")
    cleanup_parser.add_argument("--keep", "-k", type=int, default=None, help="Number of backups to keep")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_rich_logging(logging.DEBUG if args.verbose else logging.WARNING)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "analyze": cmd_analyze,
        "monitor": cmd_monitor,
        "learn": cmd_learn,
        "backups": cmd_backups,
        "rollback": cmd_rollback,
        "cleanup": cmd_cleanup,
    }

    handler = commands.get(args.command)
    if handler:
        return handler(args)
    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())

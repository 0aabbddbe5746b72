"""
Correction Engine
=================

Decides what to do about a diagnosed issue and performs corrections.

Policy for an issue (see handle()):
- always log it to the issue history
- confidence >= auto threshold and severity high   -> correct immediately
- confidence >= auto threshold and severity medium -> schedule a correction
- otherwise                                        -> log and learn only
- always derive a prevention rule and update the learning-pattern map

Every correction that touches files is preceded by a backup. The backup is
marked ``applying`` before mutation and ``completed`` only on success, so a
crash in between is picked up by BackupManager.recover_incomplete().
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from selfcorrect.backup import BackupManager
from selfcorrect.config import LearningConfig
from selfcorrect.corrections import CorrectionRegistry, create_default_registry
from selfcorrect.errors import CorrectionError, NotFoundError
from selfcorrect.models import (
    Activity,
    ActivityType,
    BackupStatus,
    CorrectionTask,
    Diagnosis,
    Severity,
    TaskStatus,
    generate_id,
    utc_now,
    utc_now_iso,
)
from selfcorrect.prevention import PreventionRuleGenerator
from selfcorrect.store import LearningStore

logger = logging.getLogger(__name__)

# (activity type, root-cause substrings) -> correction kind, first match wins
CORRECTION_DISPATCH: list[tuple[ActivityType, tuple[str, ...], str]] = [
    (ActivityType.COMMAND_EXECUTION, ("chaining",), "command_syntax_fix"),
    (ActivityType.COMMAND_EXECUTION, ("path", "permission", "destructive"), "path_validation_add"),
    (ActivityType.TEMPLATE_INSTANTIATION, ("dependency",), "template_import_fix"),
    (ActivityType.TEMPLATE_INSTANTIATION, ("type-compilation",), "type_validation_add"),
    (ActivityType.MECHANISM_EXECUTION, ("file-missing", "structured-data"), "mechanism_config_fix"),
]


@dataclass
class HandlingResult:
    """What handle() did with an issue."""
    action: str                     # immediate, scheduled, logged, ignored
    success: bool = True
    task_id: Optional[str] = None
    rule_id: Optional[str] = None


def resolve_correction_kind(activity: Activity, diagnosis: Diagnosis) -> Optional[str]:
    """Map an activity type and root cause to a correction kind."""
    for activity_type, needles, kind in CORRECTION_DISPATCH:
        if activity.type == activity_type and any(n in diagnosis.root_cause for n in needles):
            return kind
    return None


def correction_descriptor(activity: Activity) -> Optional[dict]:
    """The host-supplied correction target carried by an activity, if any."""
    descriptor = activity.data.get("correction")
    if descriptor is None:
        context = activity.data.get("context")
        if isinstance(context, dict):
            descriptor = context.get("correction")
    return dict(descriptor) if isinstance(descriptor, dict) else None


class CorrectionEngine:
    """Applies, schedules or logs corrections for diagnosed issues."""

    def __init__(
        self,
        store: LearningStore,
        backups: BackupManager,
        registry: Optional[CorrectionRegistry] = None,
        prevention: Optional[PreventionRuleGenerator] = None,
        config: Optional[LearningConfig] = None,
    ):
        self.store = store
        self.backups = backups
        self.registry = registry or create_default_registry()
        self.prevention = prevention or PreventionRuleGenerator(store)
        self.config = config or store.config

    async def handle(self, activity: Activity, diagnosis: Diagnosis) -> HandlingResult:
        """Act on a diagnosed issue according to its confidence and severity."""
        if not diagnosis.has_issue:
            return HandlingResult(action="ignored")

        logger.info("Handling issue: %s", diagnosis.description)
        await self.store.log_issue(activity, diagnosis)

        result = HandlingResult(action="logged")
        if diagnosis.confidence >= self.config.auto_correct_confidence:
            if diagnosis.severity == Severity.HIGH:
                success = await self.apply_immediate_correction(activity, diagnosis)
                result = HandlingResult(action="immediate", success=success)
            elif diagnosis.severity == Severity.MEDIUM:
                task = await self.schedule_correction(activity, diagnosis)
                result = HandlingResult(action="scheduled", task_id=task.id)

        rule = await self.prevention.generate(activity, diagnosis)
        result.rule_id = rule.id

        await self.store.update_learning_pattern(activity, diagnosis)
        return result

    async def schedule_correction(self, activity: Activity, diagnosis: Diagnosis) -> CorrectionTask:
        """Persist a correction task due after the configured delay."""
        due = utc_now() + timedelta(hours=self.config.schedule_delay_hours)
        task = CorrectionTask(
            id=generate_id("task"),
            activity=activity,
            diagnosis=diagnosis,
            scheduled_for=due.isoformat(),
        )
        await self.store.add_scheduled_task(task)
        self.store.log_correction(
            "scheduled_fix",
            f"Scheduled correction for {diagnosis.description}",
            diagnosis.confidence,
        )
        return task

    async def apply_immediate_correction(self, activity: Activity, diagnosis: Diagnosis) -> bool:
        """Resolve and apply the correction for an issue right now."""
        kind = resolve_correction_kind(activity, diagnosis)
        descriptor = correction_descriptor(activity)

        if kind is None or descriptor is None:
            reason = "no correction kind" if kind is None else "no correction target"
            self.store.log_correction(
                "correction_skipped",
                f"{reason} for {diagnosis.description}",
                diagnosis.confidence,
            )
            return False

        success = self.apply_correction(kind, descriptor)
        confidence = diagnosis.confidence if success else self.config.failed_correction_confidence
        self.store.log_correction(
            "immediate_fix",
            f"{'Applied' if success else 'Failed'} correction for {diagnosis.description}",
            confidence,
        )
        return success

    def apply_correction(self, kind: str, descriptor: dict) -> bool:
        """
        Back up, validate and apply one correction.

        On any failure the backup is rolled back and the attempt is logged
        with a dampened confidence. Returns whether the correction applied.
        """
        handler = self.registry.get(kind)
        if handler is None:
            logger.warning("Unknown correction type: %s", kind)
            return False

        stamp = utc_now().strftime("%Y%m%dT%H%M%S%fZ")
        backup_id = f"correction_{kind}_{stamp}"
        descriptor = dict(descriptor, kind=kind)

        try:
            self.backups.backup(backup_id, handler.files(descriptor), descriptor)
            self.backups.mark_status(backup_id, BackupStatus.APPLYING)
            handler.validate(descriptor)
            result = handler.apply(descriptor)
            self.backups.mark_status(backup_id, BackupStatus.COMPLETED)
        except (CorrectionError, OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Correction %s failed: %s", kind, e)
            self._rollback(backup_id)
            self.store.log_correction(
                "correction_failed",
                f"Failed to apply {kind}: {e}",
                self.config.failed_correction_confidence,
            )
            return False

        self.store.log_correction(
            "applied_fix",
            f"Successfully applied {kind} correction ({result.message})",
            self.config.applied_correction_confidence,
        )
        self.backups.cleanup_old_backups()
        return True

    def _rollback(self, backup_id: str) -> None:
        try:
            result = self.backups.rollback(backup_id)
        except NotFoundError as e:
            logger.error("Rollback failed: %s", e)
            return
        if result.missing_snapshots:
            logger.warning("Rollback of %s incomplete: %s", backup_id, result.message)

    async def execute_task(self, task: CorrectionTask) -> CorrectionTask:
        """Run a scheduled correction and mark it executed."""
        if task.status != TaskStatus.PENDING:
            return task
        success = await self.apply_immediate_correction(task.activity, task.diagnosis)
        task.status = TaskStatus.EXECUTED
        task.executed_at = utc_now_iso()
        task.result = success
        await self.store.update_task(task)
        return task

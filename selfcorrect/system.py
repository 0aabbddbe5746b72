"""
Learning System
===============

Wires the store, analysis engine, correction engine, backups, prevention
rules and scheduler into one object with explicit startup and teardown.

Usage:
    from selfcorrect.system import create_learning_system

    system = create_learning_system(config)
    await system.initialize()
    diagnosis = await system.monitor_activity("command_execution", {
        "command": "npm test",
        "exit_code": 1,
        "error": "Cannot find path 'src'",
    })
    summary = system.run_analysis()
    await system.close()
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from selfcorrect.analysis import AnalysisEngine
from selfcorrect.backup import BackupManager
from selfcorrect.config import LearningConfig
from selfcorrect.correction_engine import CorrectionEngine, HandlingResult
from selfcorrect.corrections import CorrectionRegistry, create_default_registry
from selfcorrect.models import (
    Activity,
    ActivityType,
    Diagnosis,
    PatternCategory,
    TaskStatus,
    generate_id,
    normalize_payload,
)
from selfcorrect.prevention import ApplyHook, PreventionRuleGenerator
from selfcorrect.scheduler import CorrectionScheduler
from selfcorrect.store import (
    CorrectionLog,
    DocumentBackend,
    LearningStore,
    SqliteDocumentBackend,
)

logger = logging.getLogger(__name__)


@dataclass
class PatternSummary:
    """One row of the top-patterns listing."""
    category: str
    key: str
    count: int
    primary_cause: Optional[str] = None


@dataclass
class AnalysisSummary:
    """Snapshot of what the system has learned so far."""
    total_activities: int = 0
    pattern_counts: dict[str, int] = field(default_factory=dict)
    top_patterns: list[PatternSummary] = field(default_factory=list)
    issues_logged: int = 0
    prevention_rules: int = 0
    scheduled_pending: int = 0
    scheduled_executed: int = 0
    success_patterns: int = 0

    def to_dict(self) -> dict:
        return {
            "total_activities": self.total_activities,
            "pattern_counts": dict(self.pattern_counts),
            "top_patterns": [
                {"category": p.category, "key": p.key, "count": p.count, "primary_cause": p.primary_cause}
                for p in self.top_patterns
            ],
            "issues_logged": self.issues_logged,
            "prevention_rules": self.prevention_rules,
            "scheduled_pending": self.scheduled_pending,
            "scheduled_executed": self.scheduled_executed,
            "success_patterns": self.success_patterns,
        }


class LearningSystem:
    """
    The single owner of learning state for one process.

    Build it with create_learning_system(), call initialize() before use and
    close() on shutdown. Hooks and the CLI receive the instance explicitly.
    """

    def __init__(
        self,
        config: LearningConfig,
        store: LearningStore,
        analysis: AnalysisEngine,
        engine: CorrectionEngine,
        scheduler: CorrectionScheduler,
    ):
        self.config = config
        self.store = store
        self.analysis = analysis
        self.engine = engine
        self.scheduler = scheduler
        self.session_id = generate_id("session")
        self.last_result: Optional[HandlingResult] = None

    @property
    def backups(self) -> BackupManager:
        return self.engine.backups

    @property
    def prevention(self) -> PreventionRuleGenerator:
        return self.engine.prevention

    async def initialize(self) -> None:
        """Load or create the stores and roll back interrupted corrections."""
        await self.store.initialize()
        recovered = self.backups.recover_incomplete()
        if recovered:
            logger.warning("Rolled back %d interrupted corrections", len(recovered))
            for backup_id in recovered:
                self.store.log_correction(
                    "recovered_rollback",
                    f"Rolled back interrupted correction {backup_id}",
                    self.config.failed_correction_confidence,
                )

    async def close(self) -> None:
        await self.store.close()

    def is_monitored(self, activity_type: ActivityType) -> bool:
        """Whether the monitoring scope covers this activity type."""
        scope = self.config.monitoring_scope
        if activity_type == ActivityType.COMMAND_EXECUTION:
            return scope.all_commands
        if activity_type == ActivityType.TEMPLATE_INSTANTIATION:
            return scope.all_templates
        if activity_type == ActivityType.MECHANISM_EXECUTION:
            return scope.all_mechanisms
        return scope.any

    async def monitor_activity(self, activity_type, data: Optional[dict] = None) -> Diagnosis:
        """
        Record one activity: diagnose it, handle any issue and append it to
        the history.

        Args:
            activity_type: ActivityType or its string value
            data: Activity payload; camelCase keys are accepted

        Returns:
            The diagnosis. Out-of-scope activities are not recorded and get a
            no-issue diagnosis.

        Raises:
            ValueError: If activity_type is not a known activity type.
        """
        activity_type = ActivityType(activity_type)
        self.last_result = None
        if not self.config.enabled or not self.is_monitored(activity_type):
            return Diagnosis.none()

        activity = Activity.create(activity_type, normalize_payload(data or {}), session_id=self.session_id)
        diagnosis = await self.analysis.analyze(activity)

        if diagnosis.has_issue:
            logger.warning("Issue detected in %s: %s", activity_type.value, diagnosis.description)
            self.last_result = await self.engine.handle(activity, diagnosis)

        await self.store.append_history(activity)
        return diagnosis

    def run_analysis(self, top: int = 5) -> AnalysisSummary:
        """Summarize patterns, issues, rules and scheduled corrections."""
        store = self.store
        return AnalysisSummary(
            total_activities=len(store.history),
            pattern_counts={
                category.value: len(store.patterns.get(category.value, {}))
                for category in PatternCategory
            },
            top_patterns=[
                PatternSummary(category, key, entry.count, entry.primary_cause)
                for category, key, entry in store.top_patterns(top)
            ],
            issues_logged=len(store.issues),
            prevention_rules=len(store.prevention_rules),
            scheduled_pending=len(store.tasks_by_status(TaskStatus.PENDING)),
            scheduled_executed=len(store.tasks_by_status(TaskStatus.EXECUTED)),
            success_patterns=len(store.success_patterns),
        )


def create_learning_system(
    config: Optional[LearningConfig] = None,
    backend: Optional[DocumentBackend] = None,
    apply_hook: Optional[ApplyHook] = None,
    registry: Optional[CorrectionRegistry] = None,
    correction_log: Optional[CorrectionLog] = None,
) -> LearningSystem:
    """
    Build a LearningSystem.

    Args:
        config: Configuration (defaults to LearningConfig.load())
        backend: Document backend (defaults to SQLite under config.data_dir)
        apply_hook: Host callback that enforces prevention rules
        registry: Correction-kind registry (defaults to the built-in kinds)
        correction_log: Correction log (defaults to corrections.log in data_dir)

    Returns:
        An uninitialized LearningSystem
    """
    config = config or LearningConfig.load()
    backend = backend or SqliteDocumentBackend(config.database_path)
    correction_log = correction_log or CorrectionLog(config.correction_log_path)

    store = LearningStore(backend, config, correction_log)
    backups = BackupManager(config.backup_dir, retention=config.backup_retention)
    prevention = PreventionRuleGenerator(store, apply_hook=apply_hook)
    engine = CorrectionEngine(
        store,
        backups,
        registry=registry or create_default_registry(),
        prevention=prevention,
        config=config,
    )
    return LearningSystem(
        config=config,
        store=store,
        analysis=AnalysisEngine(store, config),
        engine=engine,
        scheduler=CorrectionScheduler(engine, store, config.sweep_interval_seconds),
    )

"""
Learning Store (Persistence Layer)
==================================

Durable storage for error patterns, activity history, scheduled corrections,
prevention rules and the human-readable correction log.

Each store is one mapping, loaded fully into memory by initialize() and
rewritten fully after every mutation. Every mutation re-reads its document
first, so entries appended by another process (a hook call while `monitor`
runs) are kept; reload() refreshes both for readers such as the sweep. The
design assumes a single writer at a time; a host running several processes
must serialize access itself.

Usage:
    from selfcorrect.store import LearningStore, SqliteDocumentBackend, CorrectionLog

    store = LearningStore(
        SqliteDocumentBackend(config.database_path),
        config,
        CorrectionLog(config.correction_log_path),
    )
    await store.initialize()
    await store.record_pattern("command_errors", "npm test", diagnosis)
    await store.close()
"""

import copy
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from selfcorrect.config import LearningConfig
from selfcorrect.db.connection import init_db
from selfcorrect.db.models import LearningDocument
from selfcorrect.errors import PersistenceError
from selfcorrect.models import (
    Activity,
    CorrectionTask,
    Diagnosis,
    IssueRecord,
    PatternCategory,
    PatternEntry,
    PreventionRule,
    SuccessPattern,
    TaskStatus,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

PATTERNS_DOCUMENT = "patterns"
ERRORS_DOCUMENT = "errors"
LOG_HEADER = "# Self-Correction Learning Log\n\n"


# =============================================================================
# Document Backends
# =============================================================================

class DocumentBackend(ABC):
    """Loads and saves whole named JSON documents."""

    async def open(self) -> None:
        """Prepare the backend for use."""

    async def close(self) -> None:
        """Release resources held by the backend."""

    @abstractmethod
    async def load(self, name: str) -> Optional[dict]:
        """Return the document, or None if it was never written."""

    @abstractmethod
    async def save(self, name: str, payload: dict) -> None:
        """Replace the document with payload."""


class SqliteDocumentBackend(DocumentBackend):
    """Documents stored as rows of the learning_documents table."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._engine = None
        self._session_maker = None

    async def open(self) -> None:
        try:
            self._engine, self._session_maker = await init_db(self.db_path)
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Cannot open learning database {self.db_path}: {e}") from e

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None

    def _maker(self):
        if self._session_maker is None:
            raise PersistenceError("Learning database not opened. Call open() first.")
        return self._session_maker

    async def load(self, name: str) -> Optional[dict]:
        try:
            async with self._maker()() as session:
                result = await session.execute(
                    select(LearningDocument).where(LearningDocument.name == name)
                )
                row = result.scalar_one_or_none()
                return row.payload if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load '{name}': {e}") from e

    async def save(self, name: str, payload: dict) -> None:
        try:
            async with self._maker()() as session:
                row = await session.get(LearningDocument, name)
                if row is None:
                    session.add(LearningDocument(name=name, payload=payload, revision=1))
                else:
                    row.payload = payload
                    row.revision = (row.revision or 0) + 1
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to save '{name}': {e}") from e


class MemoryDocumentBackend(DocumentBackend):
    """In-process substitute used by tests and dry runs."""

    def __init__(self, documents: Optional[dict] = None):
        self.documents: dict[str, dict] = copy.deepcopy(documents or {})
        self.writes = 0

    async def load(self, name: str) -> Optional[dict]:
        document = self.documents.get(name)
        return copy.deepcopy(document) if document is not None else None

    async def save(self, name: str, payload: dict) -> None:
        self.documents[name] = copy.deepcopy(payload)
        self.writes += 1


# =============================================================================
# Correction Log
# =============================================================================

class CorrectionLog:
    """
    Append-only, human-readable log of correction actions.

    One line per action: ``<timestamp> | <action> | Confidence: <pct>% | <detail>``.
    Without a path the lines are only kept in memory.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self.lines: list[str] = []

    def ensure_exists(self) -> None:
        if self.path is not None and not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(LOG_HEADER)

    def log(self, action: str, detail: str, confidence: float = 0.8) -> str:
        """Append one entry and return the written line."""
        line = f"{utc_now_iso()} | {action} | Confidence: {confidence * 100:.1f}% | {detail}"
        self.lines.append(line)
        if self.path is not None:
            self.ensure_exists()
            with open(self.path, "a") as f:
                f.write(line + "\n")
        logger.info("Correction logged: %s", action)
        return line

    def read_lines(self) -> list[str]:
        """Return all entries, skipping the header."""
        if self.path is None or not self.path.exists():
            return list(self.lines)
        return [
            line for line in self.path.read_text().splitlines()
            if line and not line.startswith("#")
        ]


# =============================================================================
# Learning Store
# =============================================================================

def empty_patterns() -> dict[str, dict[str, PatternEntry]]:
    return {category.value: {} for category in PatternCategory}


class LearningStore:
    """
    Owner of the patterns and errors stores.

    Other components never touch the in-memory mappings directly; every
    mutation goes through a method here and ends with a full rewrite of the
    affected document.
    """

    def __init__(
        self,
        backend: DocumentBackend,
        config: Optional[LearningConfig] = None,
        correction_log: Optional[CorrectionLog] = None,
    ):
        self.backend = backend
        self.config = config or LearningConfig()
        self.correction_log = correction_log or CorrectionLog()

        self.patterns: dict[str, dict[str, PatternEntry]] = empty_patterns()
        self.history: list[dict] = []
        self.learning_patterns: dict[str, dict] = {}
        self.success_patterns: list[SuccessPattern] = []
        self.issues: list[IssueRecord] = []
        self.scheduled: list[CorrectionTask] = []
        self.prevention_rules: dict[str, PreventionRule] = {}

        self._initialized = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load both stores, creating or reinitializing them when needed."""
        await self.backend.open()
        self.correction_log.ensure_exists()

        patterns_doc = await self._load_document(PATTERNS_DOCUMENT)
        if patterns_doc is None:
            self.patterns = empty_patterns()
            await self.save_patterns()
        else:
            try:
                self.patterns = self._parse_patterns(patterns_doc)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Patterns store is corrupt (%s); reinitializing", e)
                self.patterns = empty_patterns()
                await self.save_patterns()

        errors_doc = await self._load_document(ERRORS_DOCUMENT)
        if errors_doc is None:
            self._reset_errors()
            await self.save_errors()
        else:
            try:
                self._parse_errors(errors_doc)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Errors store is corrupt (%s); reinitializing", e)
                self._reset_errors()
                await self.save_errors()

        self._initialized = True

    async def close(self) -> None:
        """
        Release the backend.

        Nothing is flushed here: every mutation has already been written, and
        rewriting from this copy would drop what other processes saved since.
        """
        await self.backend.close()
        self._initialized = False

    async def reload(self) -> None:
        """Re-read both documents from the backend."""
        await self._reload_patterns()
        await self._reload_errors()

    async def _reload_patterns(self) -> None:
        if not self._initialized:
            return
        doc = await self._load_document(PATTERNS_DOCUMENT)
        if doc is None:
            return
        try:
            self.patterns = self._parse_patterns(doc)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Patterns store unreadable on reload (%s); keeping loaded copy", e)

    async def _reload_errors(self) -> None:
        if not self._initialized:
            return
        doc = await self._load_document(ERRORS_DOCUMENT)
        if doc is None:
            return
        try:
            self._parse_errors(doc)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Errors store unreadable on reload (%s); keeping loaded copy", e)

    async def _load_document(self, name: str) -> Optional[dict]:
        try:
            return await self.backend.load(name)
        except PersistenceError as e:
            logger.warning("Could not load %s store (%s); starting empty", name, e)
            return None

    def _reset_errors(self) -> None:
        self.history = []
        self.learning_patterns = {}
        self.success_patterns = []
        self.issues = []
        self.scheduled = []
        self.prevention_rules = {}

    @staticmethod
    def _parse_patterns(doc: dict) -> dict[str, dict[str, PatternEntry]]:
        patterns = empty_patterns()
        for category, entries in doc.items():
            patterns[category] = {
                key: PatternEntry.from_dict(entry) for key, entry in entries.items()
            }
        return patterns

    def _parse_errors(self, doc: dict) -> None:
        # Parse everything before assigning so a bad document leaves state untouched
        corrections = doc.get("corrections", {})
        history = list(doc.get("history", []))
        learning_patterns = dict(doc.get("patterns", {}))
        success_patterns = [SuccessPattern.from_dict(p) for p in doc.get("success_patterns", [])]
        issues = [IssueRecord.from_dict(i) for i in corrections.get("issues", [])]
        scheduled = [CorrectionTask.from_dict(t) for t in corrections.get("scheduled", [])]
        prevention_rules = {
            rule_id: PreventionRule.from_dict(rule)
            for rule_id, rule in doc.get("prevention_rules", {}).items()
        }

        self.history = history
        self.learning_patterns = learning_patterns
        self.success_patterns = success_patterns
        self.issues = issues
        self.scheduled = scheduled
        self.prevention_rules = prevention_rules

    def patterns_document(self) -> dict:
        return {
            category: {key: entry.to_dict() for key, entry in entries.items()}
            for category, entries in self.patterns.items()
        }

    def errors_document(self) -> dict:
        return {
            "history": copy.deepcopy(self.history),
            "patterns": copy.deepcopy(self.learning_patterns),
            "success_patterns": [p.to_dict() for p in self.success_patterns],
            "corrections": {
                "issues": [i.to_dict() for i in self.issues],
                "scheduled": [t.to_dict() for t in self.scheduled],
            },
            "prevention_rules": {
                rule_id: rule.to_dict() for rule_id, rule in self.prevention_rules.items()
            },
        }

    async def save_patterns(self) -> None:
        await self.backend.save(PATTERNS_DOCUMENT, self.patterns_document())

    async def save_errors(self) -> None:
        await self.backend.save(ERRORS_DOCUMENT, self.errors_document())

    # -------------------------------------------------------------------------
    # Error patterns
    # -------------------------------------------------------------------------

    async def record_pattern(self, category: str, key: str, diagnosis: Diagnosis) -> PatternEntry:
        """Merge a diagnosis into the (category, key) pattern entry."""
        await self._reload_patterns()
        entries = self.patterns.setdefault(category, {})
        entry = entries.get(key)
        if entry is None:
            entry = PatternEntry()
            entries[key] = entry
        entry.merge(diagnosis)
        await self.save_patterns()
        return entry

    def get_pattern(self, category: str, key: str) -> Optional[PatternEntry]:
        return self.patterns.get(category, {}).get(key)

    def top_patterns(
        self,
        limit: int = 5,
        categories: Optional[list[str]] = None,
    ) -> list[tuple[str, str, PatternEntry]]:
        """Patterns with the highest counts across the given categories."""
        rows = [
            (category, key, entry)
            for category, entries in self.patterns.items()
            if categories is None or category in categories
            for key, entry in entries.items()
        ]
        rows.sort(key=lambda row: row[2].count, reverse=True)
        return rows[:limit]

    # -------------------------------------------------------------------------
    # History and learning patterns
    # -------------------------------------------------------------------------

    async def append_history(self, activity: Activity) -> None:
        """Append an activity, truncating to the newest entries past the cap."""
        await self._reload_errors()
        self.history.append(activity.to_dict())
        if len(self.history) > self.config.history_limit:
            self.history = self.history[-self.config.history_keep:]
        await self.save_errors()

    async def add_success_pattern(self, pattern: SuccessPattern) -> None:
        await self._reload_errors()
        self.success_patterns.append(pattern)
        if len(self.success_patterns) > self.config.success_pattern_limit:
            self.success_patterns = self.success_patterns[-self.config.success_pattern_keep:]
        await self.save_errors()

    async def update_learning_pattern(self, activity: Activity, diagnosis: Diagnosis) -> dict:
        """Count an (activity type, root cause) occurrence in the learning map."""
        await self._reload_errors()
        key = f"{activity.type.value}_{'_'.join(diagnosis.root_cause.split())}"
        entry = self.learning_patterns.get(key)
        if entry is None:
            entry = {
                "occurrences": 0,
                "confidence": diagnosis.confidence,
                "fixes": list(diagnosis.suggested_fixes),
                "last_updated": utc_now_iso(),
            }
            self.learning_patterns[key] = entry
        entry["occurrences"] += 1
        entry["last_updated"] = utc_now_iso()
        await self.save_errors()
        return entry

    # -------------------------------------------------------------------------
    # Issues and scheduled corrections
    # -------------------------------------------------------------------------

    async def log_issue(self, activity: Activity, diagnosis: Diagnosis) -> IssueRecord:
        await self._reload_errors()
        record = IssueRecord(timestamp=utc_now_iso(), activity=activity, diagnosis=diagnosis)
        self.issues.append(record)
        await self.save_errors()
        return record

    async def add_scheduled_task(self, task: CorrectionTask) -> None:
        await self._reload_errors()
        self.scheduled.append(task)
        await self.save_errors()

    async def update_task(self, task: CorrectionTask) -> None:
        """Replace the stored task with the same id."""
        await self._reload_errors()
        for i, existing in enumerate(self.scheduled):
            if existing.id == task.id:
                self.scheduled[i] = task
                break
        else:
            self.scheduled.append(task)
        await self.save_errors()

    def get_task(self, task_id: str) -> Optional[CorrectionTask]:
        for task in self.scheduled:
            if task.id == task_id:
                return task
        return None

    def tasks_by_status(self, status: TaskStatus) -> list[CorrectionTask]:
        return [task for task in self.scheduled if task.status == status]

    # -------------------------------------------------------------------------
    # Prevention rules
    # -------------------------------------------------------------------------

    async def save_prevention_rule(self, rule: PreventionRule) -> None:
        await self._reload_errors()
        self.prevention_rules[rule.id] = rule
        await self.save_errors()

    def get_prevention_rule(self, rule_id: str) -> Optional[PreventionRule]:
        return self.prevention_rules.get(rule_id)

    def find_prevention_rule(self, trigger: str, condition: str) -> Optional[PreventionRule]:
        for rule in self.prevention_rules.values():
            if rule.key == (trigger, condition):
                return rule
        return None

    # -------------------------------------------------------------------------
    # Correction log
    # -------------------------------------------------------------------------

    def log_correction(self, action: str, detail: str, confidence: float = 0.8) -> str:
        return self.correction_log.log(action, detail, confidence)

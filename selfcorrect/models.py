"""
Learning Data Model
===================

Records exchanged between the hook collector, the analysis engine, the
correction engine and the persistence layer.

Activities and diagnoses are transient values; pattern entries, correction
tasks, prevention rules and issue records are owned by the LearningStore and
serialized through their to_dict()/from_dict() pairs.
"""

import copy
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC string."""
    return utc_now().isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO timestamp, treating naive values as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_id(prefix: str) -> str:
    """Generate a unique id such as ``task_20251018T101500_1a2b3c4d5``."""
    stamp = utc_now().strftime("%Y%m%dT%H%M%S")
    return f"{prefix}_{stamp}_{uuid.uuid4().hex[:9]}"


class ActivityType(Enum):
    """Kinds of observed activity."""
    COMMAND_EXECUTION = "command_execution"
    TEMPLATE_INSTANTIATION = "template_instantiation"
    MECHANISM_EXECUTION = "mechanism_execution"
    USER_FEEDBACK = "user_feedback"
    PERFORMANCE_METRIC = "performance_metric"


class Severity(Enum):
    """Severity of a diagnosed issue."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PatternCategory(Enum):
    """Categories of the error-pattern store."""
    COMMAND_ERRORS = "command_errors"
    TEMPLATE_FAILURES = "template_failures"
    MECHANISM_ISSUES = "mechanism_issues"
    CONFIGURATION_ERRORS = "configuration_errors"
    USER_FEEDBACK = "user_feedback"
    PERFORMANCE_REGRESSIONS = "performance_regressions"


class TaskStatus(Enum):
    """Lifecycle of a scheduled correction."""
    PENDING = "pending"
    EXECUTED = "executed"
    CANCELLED = "cancelled"


class BackupStatus(Enum):
    """Lifecycle of a correction backup."""
    CREATED = "created"
    APPLYING = "applying"      # mutation in progress; rolled back by the recovery scan
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class Activity:
    """
    One observed event.

    Immutable once created; ``data`` is deep-copied so later changes to the
    caller's payload never leak into recorded history.
    """
    type: ActivityType
    timestamp: str
    session_id: str
    success: bool = True
    data: dict = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        activity_type: ActivityType,
        data: Optional[dict] = None,
        session_id: str = "",
        timestamp: Optional[str] = None,
    ) -> "Activity":
        """Build an activity; success defaults to True unless data says False."""
        payload = copy.deepcopy(data or {})
        return cls(
            type=ActivityType(activity_type),
            timestamp=timestamp or utc_now_iso(),
            session_id=session_id,
            success=payload.get("success") is not False,
            data=payload,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "success": self.success,
            "data": copy.deepcopy(self.data),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Activity":
        """Create from dictionary."""
        return cls(
            type=ActivityType(data["type"]),
            timestamp=data["timestamp"],
            session_id=data.get("session_id", ""),
            success=data.get("success", True),
            data=copy.deepcopy(data.get("data", {})),
        )


@dataclass
class Diagnosis:
    """Result of analyzing one activity."""
    has_issue: bool = False
    description: str = ""
    severity: Severity = Severity.LOW
    root_cause: str = ""
    suggested_fixes: list[str] = field(default_factory=list)
    confidence: float = 0.5

    # Pattern bookkeeping
    category: Optional[str] = None
    pattern_key: Optional[str] = None

    # Findings from earlier checks that a later check overwrote
    superseded: list[dict] = field(default_factory=list)

    @classmethod
    def none(cls) -> "Diagnosis":
        """A diagnosis with no issue."""
        return cls()

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "has_issue": self.has_issue,
            "description": self.description,
            "severity": self.severity.value,
            "root_cause": self.root_cause,
            "suggested_fixes": list(self.suggested_fixes),
            "confidence": self.confidence,
            "category": self.category,
            "pattern_key": self.pattern_key,
            "superseded": copy.deepcopy(self.superseded),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Diagnosis":
        """Create from dictionary."""
        return cls(
            has_issue=data.get("has_issue", False),
            description=data.get("description", ""),
            severity=Severity(data.get("severity", "low")),
            root_cause=data.get("root_cause", ""),
            suggested_fixes=list(data.get("suggested_fixes", [])),
            confidence=data.get("confidence", 0.5),
            category=data.get("category"),
            pattern_key=data.get("pattern_key"),
            superseded=list(data.get("superseded", [])),
        )


@dataclass
class PatternEntry:
    """Running aggregate of how often and how a (category, key) has failed."""
    count: int = 0
    first_seen: str = field(default_factory=utc_now_iso)
    last_seen: str = field(default_factory=utc_now_iso)
    root_causes: list[str] = field(default_factory=list)
    fixes: list[str] = field(default_factory=list)

    def merge(self, diagnosis: Diagnosis) -> None:
        """Fold one diagnosis into the aggregate."""
        self.count += 1
        self.last_seen = utc_now_iso()
        if diagnosis.root_cause and diagnosis.root_cause not in self.root_causes:
            self.root_causes.append(diagnosis.root_cause)
        for fix in diagnosis.suggested_fixes:
            if fix not in self.fixes:
                self.fixes.append(fix)

    @property
    def primary_cause(self) -> Optional[str]:
        return self.root_causes[0] if self.root_causes else None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PatternEntry":
        return cls(
            count=data.get("count", 0),
            first_seen=data.get("first_seen", utc_now_iso()),
            last_seen=data.get("last_seen", utc_now_iso()),
            root_causes=list(data.get("root_causes", [])),
            fixes=list(data.get("fixes", [])),
        )


@dataclass
class SuccessPattern:
    """A successful activity kept to reinforce what worked."""
    type: str
    timestamp: str
    command: Optional[str] = None
    duration: Optional[float] = None
    factors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SuccessPattern":
        return cls(
            type=data["type"],
            timestamp=data["timestamp"],
            command=data.get("command"),
            duration=data.get("duration"),
            factors=list(data.get("factors", [])),
        )


@dataclass
class CorrectionTask:
    """A deferred correction, executed by the scheduler sweep once due."""
    id: str
    activity: Activity
    diagnosis: Diagnosis
    scheduled_for: str
    status: TaskStatus = TaskStatus.PENDING
    executed_at: Optional[str] = None
    result: Optional[bool] = None

    def is_due(self, now: Optional[datetime] = None) -> bool:
        """Check whether a pending task's time has come."""
        if self.status != TaskStatus.PENDING:
            return False
        return parse_timestamp(self.scheduled_for) <= (now or utc_now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": "scheduled_correction",
            "activity": self.activity.to_dict(),
            "diagnosis": self.diagnosis.to_dict(),
            "scheduled_for": self.scheduled_for,
            "status": self.status.value,
            "executed_at": self.executed_at,
            "result": self.result,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CorrectionTask":
        return cls(
            id=data["id"],
            activity=Activity.from_dict(data["activity"]),
            diagnosis=Diagnosis.from_dict(data["diagnosis"]),
            scheduled_for=data["scheduled_for"],
            status=TaskStatus(data.get("status", "pending")),
            executed_at=data.get("executed_at"),
            result=data.get("result"),
        )


@dataclass
class PreventionRule:
    """A standing guard derived from a diagnosis."""
    id: str
    trigger: str                    # ActivityType value the rule watches
    condition: str                  # normalized root cause it matches
    confidence: float
    created: str = field(default_factory=utc_now_iso)
    action: str = "prevent"
    effectiveness: float = 0.0
    occurrences: int = 1
    outcomes: dict = field(default_factory=lambda: {"success": 0, "failure": 0})
    applied: bool = False

    @property
    def key(self) -> tuple[str, str]:
        return (self.trigger, self.condition)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "PreventionRule":
        return cls(
            id=data["id"],
            trigger=data["trigger"],
            condition=data["condition"],
            confidence=data.get("confidence", 0.0),
            created=data.get("created", utc_now_iso()),
            action=data.get("action", "prevent"),
            effectiveness=data.get("effectiveness", 0.0),
            occurrences=data.get("occurrences", 1),
            outcomes=dict(data.get("outcomes", {"success": 0, "failure": 0})),
            applied=data.get("applied", False),
        )


@dataclass
class BackupRecord:
    """Metadata of a backup taken before a correction touches files."""
    backup_id: str
    timestamp: str
    correction_descriptor: dict
    status: BackupStatus = BackupStatus.CREATED
    snapshots: dict = field(default_factory=dict)   # original path -> snapshot file name
    rollback_time: Optional[str] = None
    restored_files: list[str] = field(default_factory=list)
    missing_snapshots: list[str] = field(default_factory=list)

    @property
    def files_to_modify(self) -> list[str]:
        return list(self.correction_descriptor.get("files_to_modify", []))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "BackupRecord":
        return cls(
            backup_id=data["backup_id"],
            timestamp=data["timestamp"],
            correction_descriptor=data.get("correction_descriptor", {}),
            status=BackupStatus(data.get("status", "created")),
            snapshots=dict(data.get("snapshots", {})),
            rollback_time=data.get("rollback_time"),
            restored_files=list(data.get("restored_files", [])),
            missing_snapshots=list(data.get("missing_snapshots", [])),
        )

    def summary(self) -> str:
        """Return a brief summary string."""
        kind = self.correction_descriptor.get("kind", "unknown")
        return (
            f"[{self.backup_id}] {kind} at {self.timestamp[:19]} "
            f"({len(self.files_to_modify)} files, {self.status.value})"
        )


@dataclass
class IssueRecord:
    """One entry of the issue history."""
    timestamp: str
    activity: Activity
    diagnosis: Diagnosis
    status: str = "logged"

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "activity": self.activity.to_dict(),
            "diagnosis": self.diagnosis.to_dict(),
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IssueRecord":
        return cls(
            timestamp=data["timestamp"],
            activity=Activity.from_dict(data["activity"]),
            diagnosis=Diagnosis.from_dict(data["diagnosis"]),
            status=data.get("status", "logged"),
        )


def camel_to_snake(name: str) -> str:
    """Convert ``exitCode`` style keys to ``exit_code``."""
    chars = []
    for i, ch in enumerate(name):
        if ch.isupper() and i > 0:
            chars.append("_")
        chars.append(ch.lower())
    return "".join(chars)


def _snake_keys(data: dict) -> dict:
    return {camel_to_snake(key) if isinstance(key, str) else key: value for key, value in data.items()}


def normalize_payload(data: dict[str, Any]) -> dict[str, Any]:
    """
    Normalize payload keys to snake_case.

    Top-level keys and the keys of a correction descriptor (at the top level or
    under ``context``) are converted. Free-form mappings such as ``parameters``
    keep their keys.
    """
    payload = _snake_keys(data)
    if isinstance(payload.get("correction"), dict):
        payload["correction"] = _snake_keys(payload["correction"])
    context = payload.get("context")
    if isinstance(context, dict) and isinstance(context.get("correction"), dict):
        payload["context"] = {**context, "correction": _snake_keys(context["correction"])}
    return payload

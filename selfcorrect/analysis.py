"""
Analysis Engine
===============

Classifies an Activity into a Diagnosis.

Each activity kind has an ordered table of DiagnosisRule entries evaluated top
to bottom; the first matching rule wins. Template and mechanism activities also
run independent checks (slow execution, empty output). When several of those
fire, the last one evaluated becomes the diagnosis and the earlier findings are
kept in ``Diagnosis.superseded``.

Usage:
    from selfcorrect.analysis import AnalysisEngine

    engine = AnalysisEngine(store, config)
    diagnosis = await engine.analyze(activity)
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Optional

from selfcorrect.config import LearningConfig
from selfcorrect.errors import AnalysisError
from selfcorrect.models import (
    Activity,
    ActivityType,
    Diagnosis,
    PatternCategory,
    Severity,
    SuccessPattern,
)
from selfcorrect.store import LearningStore

logger = logging.getLogger(__name__)


@dataclass
class DiagnosisRule:
    """One row of a rule table: predicate over text -> diagnosis template."""
    name: str
    predicate: Callable[[str, str], bool]   # (error_text, subject_text) -> matched
    description: str
    root_cause: str
    suggested_fixes: list[str] = field(default_factory=list)
    confidence: float = 0.5

    def build(self, severity: Severity) -> Diagnosis:
        return Diagnosis(
            has_issue=True,
            description=self.description,
            severity=severity,
            root_cause=self.root_cause,
            suggested_fixes=list(self.suggested_fixes),
            confidence=self.confidence,
        )


def _contains_any(*needles: str) -> Callable[[str], bool]:
    return lambda text: any(needle in text for needle in needles)


_TS_ERROR_CODE = re.compile(r"\bTS\d{3,5}\b")
_has_path_error = _contains_any("Cannot find path", "does not exist", "No such file or directory")
_has_permission_error = _contains_any("Access denied", "Permission denied")
_has_missing_module = _contains_any("Cannot find module", "Module not found", "No module named")
_has_missing_file = _contains_any("ENOENT", "file not found")
_has_bad_json = _contains_any("JSON.parse", "Unexpected token", "JSONDecodeError")


def _is_destructive(command: str) -> bool:
    return ("rm -rf" in command or "rm -fr" in command) and "safety_check" not in command


COMMAND_RULES: list[DiagnosisRule] = [
    DiagnosisRule(
        name="chaining_syntax",
        predicate=lambda error, command: "&&" in error and "is not a valid statement separator" in error,
        description="Shell chaining syntax error detected",
        root_cause="chaining-syntax misuse",
        suggested_fixes=[
            "Use ';' for command chaining in shells without '&&'",
            "Run complex commands as separate invocations",
            "Validate shell syntax before execution",
        ],
        confidence=0.95,
    ),
    DiagnosisRule(
        name="path_not_found",
        predicate=lambda error, command: _has_path_error(error),
        description="File or directory path error",
        root_cause="path-not-found",
        suggested_fixes=[
            "Verify path construction logic",
            "Add path existence checks before operations",
            "Resolve paths to absolute form for cross-platform compatibility",
        ],
        confidence=0.85,
    ),
    DiagnosisRule(
        name="permission_denied",
        predicate=lambda error, command: _has_permission_error(error),
        description="File system permission error",
        root_cause="permission-denied",
        suggested_fixes=[
            "Check file permissions before operations",
            "Use appropriate user permissions",
            "Add permission validation checks",
        ],
        confidence=0.9,
    ),
    DiagnosisRule(
        name="destructive_command",
        predicate=lambda error, command: _is_destructive(command),
        description="Potentially dangerous recursive delete command",
        root_cause="destructive-command",
        suggested_fixes=[
            "Add confirmation prompts for destructive operations",
            "Back up files before deletion",
            "Add safety validation checks",
        ],
        confidence=0.95,
    ),
]

COMMAND_FALLBACK = DiagnosisRule(
    name="command_failed",
    predicate=lambda error, command: True,
    description="Command failed",
    root_cause="command-failed",
    suggested_fixes=["Inspect the command output for the failure reason"],
    confidence=0.5,
)

TEMPLATE_RULES: list[DiagnosisRule] = [
    DiagnosisRule(
        name="missing_dependency",
        predicate=lambda error, template_id: _has_missing_module(error),
        description="Template dependency error",
        root_cause="missing-dependency",
        suggested_fixes=[
            "Verify all imports exist and are correct",
            "Add dependency validation to template instantiation",
            "Update template import paths",
        ],
        confidence=0.9,
    ),
    DiagnosisRule(
        name="type_compilation",
        predicate=lambda error, template_id: "TypeScript error" in error or bool(_TS_ERROR_CODE.search(error)),
        description="Type compilation error in template",
        root_cause="type-compilation-error",
        suggested_fixes=[
            "Fix types in the template",
            "Add type validation before template generation",
            "Update template type definitions",
        ],
        confidence=0.85,
    ),
]

TEMPLATE_FALLBACK = DiagnosisRule(
    name="template_failed",
    predicate=lambda error, template_id: True,
    description="Template instantiation failed",
    root_cause="template-failed",
    suggested_fixes=["Review the template instantiation errors"],
    confidence=0.5,
)

MECHANISM_RULES: list[DiagnosisRule] = [
    DiagnosisRule(
        name="mechanism_file_missing",
        predicate=lambda error, mechanism_id: _has_missing_file(error),
        description="Mechanism file access error",
        root_cause="mechanism-file-missing",
        suggested_fixes=[
            "Verify mechanism files exist",
            "Check file permissions",
            "Update mechanism file paths",
        ],
        confidence=0.9,
    ),
    DiagnosisRule(
        name="invalid_structured_data",
        predicate=lambda error, mechanism_id: _has_bad_json(error),
        description="Mechanism configuration error",
        root_cause="invalid-structured-data",
        suggested_fixes=[
            "Validate JSON syntax in config files",
            "Add JSON validation before loading configs",
            "Use schema validation for configs",
        ],
        confidence=0.95,
    ),
]

MECHANISM_FALLBACK = DiagnosisRule(
    name="mechanism_failed",
    predicate=lambda error, mechanism_id: True,
    description="Mechanism execution failed",
    root_cause="mechanism-failed",
    suggested_fixes=["Review the mechanism errors"],
    confidence=0.5,
)

SLOW_TEMPLATE = DiagnosisRule(
    name="slow_template",
    predicate=lambda error, subject: True,
    description="Template instantiation performance issue",
    root_cause="slow-template",
    suggested_fixes=[
        "Optimize template generation logic",
        "Cache frequently used template parts",
        "Add performance monitoring to templates",
    ],
    confidence=0.8,
)

SLOW_MECHANISM = DiagnosisRule(
    name="slow_mechanism",
    predicate=lambda error, subject: True,
    description="Mechanism performance issue",
    root_cause="slow-mechanism",
    suggested_fixes=[
        "Optimize mechanism algorithms",
        "Add caching to expensive operations",
        "Report progress for long operations",
    ],
    confidence=0.8,
)

EMPTY_OUTPUT = DiagnosisRule(
    name="empty_output",
    predicate=lambda error, subject: True,
    description="Mechanism produced no output",
    root_cause="empty-output",
    suggested_fixes=[
        "Add output validation to mechanisms",
        "Improve error handling and logging",
        "Add fallback behaviors for empty results",
    ],
    confidence=0.7,
)

METRIC_EXCEEDED = DiagnosisRule(
    name="metric_threshold_exceeded",
    predicate=lambda error, subject: True,
    description="Performance metric exceeded its threshold",
    root_cause="metric-threshold-exceeded",
    suggested_fixes=[
        "Profile the operation behind this metric",
        "Compare against the last run within threshold",
    ],
    confidence=0.7,
)

NEGATIVE_FEEDBACK = DiagnosisRule(
    name="negative_feedback",
    predicate=lambda error, subject: True,
    description="Negative user feedback received",
    root_cause="negative-feedback",
    suggested_fixes=["Review the feedback and the activity it refers to"],
    confidence=0.6,
)

NEGATIVE_FEEDBACK_TYPES = {"negative", "correction", "bug", "complaint"}


def first_match(rules: list[DiagnosisRule], error_text: str, subject: str) -> Optional[DiagnosisRule]:
    """Return the first rule whose predicate matches, or None."""
    for rule in rules:
        if rule.predicate(error_text, subject):
            return rule
    return None


def success_factors(activity: Activity) -> list[str]:
    """Heuristic tags describing what a successful command did."""
    factors = []
    command = activity.data.get("command")
    if isinstance(command, str) and command:
        if "cd" in command and "." in command:
            factors.append("used_relative_paths")
        if "&&" in command:
            factors.append("bash_chaining_worked")
    return factors


def _require_text(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise AnalysisError(f"Payload is missing '{key}'")
    return value


def _error_list(data: dict) -> list[str]:
    errors = data.get("errors") or []
    if isinstance(errors, str):
        return [errors]
    if not isinstance(errors, (list, tuple)):
        raise AnalysisError("'errors' must be a list")
    return [str(e) for e in errors]


def _duration(data: dict) -> float:
    value = data.get("duration")
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise AnalysisError("'duration' must be a number")
    return float(value)


class AnalysisEngine:
    """
    Diagnoses activities and learns error and success patterns.

    analyze() never mutates the activity and never raises: a malformed payload
    yields a no-issue diagnosis.
    """

    def __init__(self, store: LearningStore, config: Optional[LearningConfig] = None):
        self.store = store
        self.config = config or store.config

        self._diagnosers = {
            ActivityType.COMMAND_EXECUTION: self.diagnose_command,
            ActivityType.TEMPLATE_INSTANTIATION: self.diagnose_template,
            ActivityType.MECHANISM_EXECUTION: self.diagnose_mechanism,
            ActivityType.PERFORMANCE_METRIC: self.diagnose_metric,
            ActivityType.USER_FEEDBACK: self.diagnose_feedback,
        }

    async def analyze(self, activity: Activity) -> Diagnosis:
        """Diagnose one activity and update pattern storage."""
        diagnoser = self._diagnosers.get(activity.type)
        if diagnoser is None:
            return Diagnosis.none()

        try:
            diagnosis = diagnoser(activity)
        except AnalysisError as e:
            logger.warning("Malformed %s activity: %s", activity.type.value, e)
            return Diagnosis.none()

        if diagnosis.has_issue:
            if activity.data.get("priority") == "high" or activity.data.get("emergency"):
                diagnosis.severity = Severity.HIGH
            await self.store.record_pattern(diagnosis.category, diagnosis.pattern_key, diagnosis)
        elif activity.success:
            await self.learn_from_success(activity)

        return diagnosis

    async def learn_from_success(self, activity: Activity) -> SuccessPattern:
        """Record a successful activity as a success pattern."""
        pattern = SuccessPattern(
            type=activity.type.value,
            timestamp=activity.timestamp,
            command=activity.data.get("command"),
            duration=activity.data.get("duration"),
            factors=success_factors(activity),
        )
        await self.store.add_success_pattern(pattern)
        return pattern

    # -------------------------------------------------------------------------
    # Diagnosers
    # -------------------------------------------------------------------------

    def diagnose_command(self, activity: Activity) -> Diagnosis:
        data = activity.data
        command = _require_text(data, "command")
        exit_code = data.get("exit_code")
        error = data.get("error")
        error_text = str(error) if error else ""

        failed = (exit_code is not None and exit_code != 0) or bool(error)
        if not failed:
            return Diagnosis.none()

        rule = first_match(COMMAND_RULES, error_text, command) or COMMAND_FALLBACK
        diagnosis = rule.build(Severity.MEDIUM)
        return self._tag(diagnosis, PatternCategory.COMMAND_ERRORS, command)

    def diagnose_template(self, activity: Activity) -> Diagnosis:
        data = activity.data
        template_id = _require_text(data, "template_id")
        errors = _error_list(data)
        duration = _duration(data)

        findings = []
        if errors:
            error_text = " ".join(errors)
            rule = first_match(TEMPLATE_RULES, error_text, template_id) or TEMPLATE_FALLBACK
            findings.append(rule.build(Severity.HIGH))
        if duration > self.config.template_duration_threshold_ms:
            findings.append(SLOW_TEMPLATE.build(Severity.MEDIUM))

        return self._tag(self._last_wins(findings), PatternCategory.TEMPLATE_FAILURES, template_id)

    def diagnose_mechanism(self, activity: Activity) -> Diagnosis:
        data = activity.data
        mechanism_id = _require_text(data, "mechanism_id")
        errors = _error_list(data)
        duration = _duration(data)
        output = data.get("output")

        findings = []
        if errors:
            error_text = " ".join(errors)
            rule = first_match(MECHANISM_RULES, error_text, mechanism_id) or MECHANISM_FALLBACK
            findings.append(rule.build(Severity.HIGH))
        if duration > self.config.mechanism_duration_threshold_ms:
            findings.append(SLOW_MECHANISM.build(Severity.MEDIUM))
        if not output:
            findings.append(EMPTY_OUTPUT.build(Severity.LOW))

        return self._tag(self._last_wins(findings), PatternCategory.MECHANISM_ISSUES, mechanism_id)

    def diagnose_metric(self, activity: Activity) -> Diagnosis:
        data = activity.data
        metric_type = _require_text(data, "metric_type")
        value = data.get("metric_value")
        threshold = data.get("threshold")
        if not isinstance(value, (int, float)) or not isinstance(threshold, (int, float)):
            raise AnalysisError("'metric_value' and 'threshold' must be numbers")

        if value <= threshold:
            return Diagnosis.none()
        diagnosis = METRIC_EXCEEDED.build(Severity.MEDIUM)
        diagnosis.description = f"{metric_type} at {value} exceeded threshold {threshold}"
        return self._tag(diagnosis, PatternCategory.PERFORMANCE_REGRESSIONS, metric_type)

    def diagnose_feedback(self, activity: Activity) -> Diagnosis:
        feedback_type = _require_text(activity.data, "feedback_type")
        if feedback_type.lower() not in NEGATIVE_FEEDBACK_TYPES:
            return Diagnosis.none()
        diagnosis = NEGATIVE_FEEDBACK.build(Severity.LOW)
        return self._tag(diagnosis, PatternCategory.USER_FEEDBACK, feedback_type)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _tag(diagnosis: Diagnosis, category: PatternCategory, key: str) -> Diagnosis:
        if diagnosis.has_issue:
            diagnosis.category = category.value
            diagnosis.pattern_key = key
        return diagnosis

    @staticmethod
    def _last_wins(findings: list[Diagnosis]) -> Diagnosis:
        """Keep the last finding as the diagnosis; remember what it replaced."""
        if not findings:
            return Diagnosis.none()
        diagnosis = findings[-1]
        if len(findings) > 1:
            diagnosis.superseded = [
                {
                    "root_cause": f.root_cause,
                    "severity": f.severity.value,
                    "confidence": f.confidence,
                    "description": f.description,
                }
                for f in findings[:-1]
            ]
            logger.warning(
                "%d issues detected; keeping '%s' and superseding %s",
                len(findings),
                diagnosis.root_cause,
                [f.root_cause for f in findings[:-1]],
            )
        return diagnosis

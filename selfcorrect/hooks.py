"""
Self-Correction Hooks
=====================

The API host code calls around its own operations. Each ``begin_*`` returns a
StartMarker; the matching ``complete_*`` turns the outcome into exactly one
Activity and feeds it to the learning system.

Hooks never raise into the host: any learning failure is logged and dropped,
so an instrumented operation is never blocked by this package.

Usage:
    from selfcorrect.hooks import SelfCorrectionHooks

    hooks = SelfCorrectionHooks(system)

    marker = await hooks.begin_command("npm test")
    result = subprocess.run(...)
    await hooks.complete_command("npm test", result.returncode, result.stdout, result.stderr, marker)
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from selfcorrect.models import ActivityType, Diagnosis, utc_now_iso
from selfcorrect.system import AnalysisSummary, LearningSystem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartMarker:
    """Returned by begin_* and passed back to complete_* to time the operation."""
    kind: str
    subject: str
    timestamp: str
    started_ms: float

    def elapsed_ms(self) -> float:
        return max(0.0, time.monotonic() * 1000 - self.started_ms)


def _marker(kind: str, subject: str) -> StartMarker:
    return StartMarker(kind=kind, subject=subject, timestamp=utc_now_iso(), started_ms=time.monotonic() * 1000)


def _duration(marker: Optional[StartMarker]) -> float:
    return marker.elapsed_ms() if marker is not None else 0.0


def _error_text(error: Any) -> Optional[str]:
    if error is None or error == "":
        return None
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return str(error)


class SelfCorrectionHooks:
    """Hook collector bound to one LearningSystem."""

    def __init__(self, system: LearningSystem):
        self.system = system
        self._enabled = system.config.enabled

    # -------------------------------------------------------------------------
    # Toggle
    # -------------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True
        logger.info("Self-correction learning enabled")

    def disable(self) -> None:
        self._enabled = False
        logger.info("Self-correction learning disabled")

    async def _record(self, activity_type: ActivityType, data: dict) -> Optional[Diagnosis]:
        if not self._enabled:
            return None
        try:
            return await self.system.monitor_activity(activity_type, data)
        except Exception:
            logger.exception("Learning from %s failed", activity_type.value)
            return None

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def begin_command(self, command: str, context: Optional[dict] = None) -> StartMarker:
        return _marker("command", command)

    async def complete_command(
        self,
        command: str,
        exit_code: Optional[int],
        output: Any = None,
        error: Any = None,
        marker: Optional[StartMarker] = None,
        context: Optional[dict] = None,
    ) -> Optional[Diagnosis]:
        """Record a finished command. Success means exit code 0 and no error."""
        error_text = _error_text(error)
        return await self._record(ActivityType.COMMAND_EXECUTION, {
            "command": command,
            "exit_code": exit_code,
            "output": output,
            "error": error_text,
            "success": exit_code == 0 and not error_text,
            "duration": _duration(marker),
            "context": context or {},
        })

    # -------------------------------------------------------------------------
    # Templates
    # -------------------------------------------------------------------------

    async def begin_template(
        self,
        template_id: str,
        parameters: Optional[dict] = None,
        context: Optional[dict] = None,
    ) -> StartMarker:
        return _marker("template", template_id)

    async def complete_template(
        self,
        template_id: str,
        success: bool,
        errors: Optional[list] = None,
        output: Any = None,
        marker: Optional[StartMarker] = None,
        parameters: Optional[dict] = None,
        context: Optional[dict] = None,
    ) -> Optional[Diagnosis]:
        return await self._record(ActivityType.TEMPLATE_INSTANTIATION, {
            "template_id": template_id,
            "parameters": parameters or {},
            "success": success,
            "errors": [str(e) for e in errors or []],
            "output": output,
            "duration": _duration(marker),
            "context": context or {},
        })

    # -------------------------------------------------------------------------
    # Mechanisms
    # -------------------------------------------------------------------------

    async def begin_mechanism(
        self,
        mechanism_id: str,
        operation: str,
        parameters: Optional[dict] = None,
        context: Optional[dict] = None,
    ) -> StartMarker:
        return _marker("mechanism", f"{mechanism_id}:{operation}")

    async def complete_mechanism(
        self,
        mechanism_id: str,
        operation: str,
        success: bool,
        errors: Optional[list] = None,
        output: Any = None,
        marker: Optional[StartMarker] = None,
        parameters: Optional[dict] = None,
        context: Optional[dict] = None,
    ) -> Optional[Diagnosis]:
        return await self._record(ActivityType.MECHANISM_EXECUTION, {
            "mechanism_id": mechanism_id,
            "operation": operation,
            "parameters": parameters or {},
            "success": success,
            "errors": [str(e) for e in errors or []],
            "output": output,
            "duration": _duration(marker),
            "context": context or {},
        })

    # -------------------------------------------------------------------------
    # Feedback and metrics
    # -------------------------------------------------------------------------

    async def report_user_feedback(
        self,
        feedback_type: str,
        feedback: Any,
        context: Optional[dict] = None,
    ) -> Optional[Diagnosis]:
        """Record user feedback. Feedback is always a successful input."""
        return await self._record(ActivityType.USER_FEEDBACK, {
            "feedback_type": feedback_type,
            "feedback": feedback,
            "success": True,
            "context": context or {},
        })

    async def report_performance_metric(
        self,
        metric_type: str,
        value: float,
        threshold: float,
        context: Optional[dict] = None,
    ) -> Optional[Diagnosis]:
        exceeded = value > threshold
        return await self._record(ActivityType.PERFORMANCE_METRIC, {
            "metric_type": metric_type,
            "metric_value": value,
            "threshold": threshold,
            "exceeded": exceeded,
            "success": not exceeded,
            "context": context or {},
        })

    # -------------------------------------------------------------------------
    # Manual triggers
    # -------------------------------------------------------------------------

    async def trigger_emergency_correction(self, activity_type, data: dict) -> Optional[Diagnosis]:
        """Feed an activity flagged for high-priority handling."""
        logger.warning("Emergency correction triggered")
        try:
            activity_type = ActivityType(activity_type)
        except ValueError:
            logger.error("Unknown activity type: %s", activity_type)
            return None
        return await self._record(activity_type, {**data, "emergency": True, "priority": "high"})

    async def learn_from_activity(self, activity_type, data: dict) -> Optional[Diagnosis]:
        try:
            activity_type = ActivityType(activity_type)
        except ValueError:
            logger.error("Unknown activity type: %s", activity_type)
            return None
        return await self._record(activity_type, data)

    def get_insights(self) -> AnalysisSummary:
        return self.system.run_analysis()

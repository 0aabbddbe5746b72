"""
selfcorrect
===========

Self-correction learning: observes the outcomes of commands, template
instantiations and mechanism runs, diagnoses recurring failures, and applies,
schedules or rolls back corrections while keeping evidence for later.

Usage:
    from selfcorrect import create_learning_system, SelfCorrectionHooks

    system = create_learning_system()
    await system.initialize()
    hooks = SelfCorrectionHooks(system)
"""

__version__ = "0.1.0"

from selfcorrect.config import LearningConfig
from selfcorrect.hooks import SelfCorrectionHooks, StartMarker
from selfcorrect.models import Activity, ActivityType, Diagnosis, Severity
from selfcorrect.system import AnalysisSummary, LearningSystem, create_learning_system

__all__ = [
    "__version__",
    "Activity",
    "ActivityType",
    "AnalysisSummary",
    "Diagnosis",
    "LearningConfig",
    "LearningSystem",
    "SelfCorrectionHooks",
    "Severity",
    "StartMarker",
    "create_learning_system",
]

"""
Error Taxonomy
==============

Exceptions raised inside the self-correction core. None of these ever reach a
host operation: the hook collector converts them into logged facts.
"""


class SelfCorrectError(Exception):
    """Base class for all self-correction errors."""


class NotFoundError(SelfCorrectError, FileNotFoundError):
    """A required file, text anchor or backup record is absent."""


class CorrectionError(SelfCorrectError):
    """A correction precondition failed or its write could not complete."""


class AnalysisError(SelfCorrectError):
    """An activity payload is missing a field its diagnoser needs."""


class PersistenceError(SelfCorrectError):
    """A learning store could not be loaded or saved."""

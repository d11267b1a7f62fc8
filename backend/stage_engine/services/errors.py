"""
Domain errors raised by the scheduling, bracket and ranking services.

Routes translate these into HTTP responses; services never raise HTTPException.
"""


class StageEngineError(Exception):
    """Base class for stage engine failures"""

    pass


class ConfigurationError(StageEngineError):
    """Raised when caller input is structurally invalid (fix input and resubmit, never retry)"""

    pass


class SchedulingInvariantError(StageEngineError):
    """Raised when the slot fallback ladder is exhausted. Indicates a scheduler defect."""

    pass

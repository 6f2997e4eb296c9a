"""Exception taxonomy for trace analysis."""


class AnalysisError(Exception):
    """Base class for analysis failures."""


class InsufficientBaselineError(AnalysisError, ValueError):
    """Trace too short for the configured baseline window; fatal for the group."""


class InvalidTraceError(AnalysisError, ValueError):
    """All-NaN or non-finite ROI trace; the ROI is excluded, the group continues."""

    def __init__(self, message: str, roi: int = None):
        super().__init__(message)
        self.roi = roi


class CacheValidationError(AnalysisError, RuntimeError):
    """Threshold cache failed completeness or invariant checks; fatal for the group."""

    def __init__(self, message: str, problems=None):
        super().__init__(message)
        self.problems = list(problems or [])

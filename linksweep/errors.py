"""Exceptions raised by the cleanup engine."""


class CleanupError(Exception):
    """Base class for all engine errors."""
    pass


class AnalysisMissingError(CleanupError):
    """Raised when a job is started without a fresh redirect analysis."""
    pass


class RollbackError(CleanupError):
    """Raised when a rollback cannot be performed; nothing is restored."""
    pass


class JobNotFoundError(CleanupError):
    """Raised when a job id has no record."""
    pass


class InvalidJobStateError(CleanupError):
    """Raised when an operation does not fit the job's current status."""
    pass


class InvalidOptionsError(CleanupError):
    """Raised when job options fail validation."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class JobLockedError(CleanupError):
    """Raised when another live job already holds the mutation lock."""
    pass

class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class SchedulerError(AppError):
    """Raised when the scheduler encounters a logical error or invalid state."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)

class DataIncompleteError(SchedulerError):
    """Raised when the academic setup cannot be turned into planning units.

    Fatal for the run; retrying without fixing the setup gives the same result.
    """
    def __init__(self, message: str, problems: list[str] | None = None):
        problems = list(problems or [])
        super().__init__(message, details={"problems": problems})
        self.problems = problems

class InfeasibleConstraintError(SchedulerError):
    """Raised when demand provably exceeds room x time-slot capacity.

    The engine records it as a warning and still returns its best effort.
    """
    def __init__(self, message: str, required: int, available: int):
        super().__init__(message, details={"required": required, "available": available})
        self.required = required
        self.available = available

class GenerationTimeoutError(SchedulerError, TimeoutError):
    """Raised when a run exceeds its wall-clock deadline before producing a result."""
    def __init__(self, timeout_seconds: float | None = None):
        message = "Timetable generation timed out"
        if timeout_seconds is not None:
            message = f"{message} after {timeout_seconds:g} second(s)"
        super().__init__(message, details={"timeout_seconds": timeout_seconds})

class GenerationCancelledError(SchedulerError):
    """Raised when a run is cancelled before any population was evaluated."""
    def __init__(self, message: str = "Timetable generation was cancelled"):
        super().__init__(message)

class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)

class ConfigurationError(AppError):
    """Raised when system configuration is invalid."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)

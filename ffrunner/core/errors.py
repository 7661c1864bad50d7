"""Custom errors for ffrunner."""
from typing import Iterable, Optional


class FFRunnerError(RuntimeError):
    pass


class PlanningError(FFRunnerError):
    """A command could not be turned into an execution plan."""


class EmptyCommandError(PlanningError):
    def __init__(self) -> None:
        super().__init__("Command is empty.")


class ValidationFailedError(PlanningError):
    def __init__(self, details: Iterable[str], validation: Optional[object] = None) -> None:
        self.details = list(details)
        self.validation = validation
        super().__init__("Validation failed: " + "; ".join(self.details))


class RenderingFailedError(PlanningError):
    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = list(missing)
        super().__init__("Missing values for: " + ", ".join(self.missing))


class ExecutionError(FFRunnerError):
    """The engine refused or failed to start a process."""


class AlreadyRunningError(ExecutionError):
    def __init__(self) -> None:
        super().__init__("A command is already running.")


class ExecutableUnavailableError(ExecutionError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"FFmpeg is not available at '{path}'." if path else "FFmpeg is not available.")


class SpawnFailedError(ExecutionError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Could not start process: {reason}")


class ConfigError(FFRunnerError):
    """The user configuration holds a value that cannot be used."""

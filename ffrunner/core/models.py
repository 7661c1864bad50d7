# ffrunner/core/models.py
# Execution plans, results, states and the events an engine publishes.
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from ffrunner.core.binding import ParameterBinding, TemplateBinding
from ffrunner.core.renderer import DEFAULT_PROGRAM, RenderedCommand
from ffrunner.core.tokenizer import program_name, tokenize

HISTORY_TITLE_LENGTH = 50


@dataclass(frozen=True)
class ExecutionPlan:
    """
    The one thing an engine will execute.

    `arguments` never contains the program itself. `program` names it
    (`ffmpeg` or `ffprobe`) and the engine prepends the resolved executable
    path at spawn time.
    """
    arguments: Tuple[str, ...]
    display_command: str
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    program: str = DEFAULT_PROGRAM
    bindings: Optional[Tuple[ParameterBinding, ...]] = field(default=None, compare=False)
    created_at: datetime = field(default_factory=datetime.now, compare=False)

    @property
    def is_from_template(self) -> bool:
        return self.template_id is not None

    def full_arguments(self, executable_path: str) -> List[str]:
        return [executable_path, *self.arguments]

    @classmethod
    def from_binding(
        cls, binding: TemplateBinding, rendered: RenderedCommand, program: str = DEFAULT_PROGRAM
    ) -> "ExecutionPlan":
        return cls(
            arguments=tuple(rendered.arguments),
            display_command=rendered.display_string,
            template_id=binding.template.id,
            template_name=binding.template.name,
            program=program,
            bindings=binding.bindings,
        )

    @classmethod
    def from_command(cls, command: str) -> "ExecutionPlan":
        """Wraps a validated raw command; the leading executable token is dropped."""
        tokens = tokenize(command)
        return cls(
            arguments=tuple(tokens[1:]),
            display_command=command,
            program=program_name(command) or DEFAULT_PROGRAM,
        )


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m {seconds % 60}s"


@dataclass(frozen=True)
class ExecutionResult:
    command: str
    exit_code: int
    stdout: str
    stderr: str
    start_time: datetime
    end_time: datetime

    @property
    def is_success(self) -> bool:
        return self.exit_code == 0

    @property
    def duration(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    @property
    def formatted_duration(self) -> str:
        return format_duration(self.duration)


class ExecutionStatus(str, Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    RUNNING = "running"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


ACTIVE_STATUSES = frozenset(
    {ExecutionStatus.PREPARING, ExecutionStatus.RUNNING, ExecutionStatus.CANCELLING}
)


@dataclass(frozen=True)
class ExecutionState:
    status: ExecutionStatus = ExecutionStatus.IDLE
    result: Optional[ExecutionResult] = None
    error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return not self.is_active

    @classmethod
    def idle(cls) -> "ExecutionState":
        return cls(ExecutionStatus.IDLE)

    @classmethod
    def preparing(cls) -> "ExecutionState":
        return cls(ExecutionStatus.PREPARING)

    @classmethod
    def running(cls) -> "ExecutionState":
        return cls(ExecutionStatus.RUNNING)

    @classmethod
    def cancelling(cls) -> "ExecutionState":
        return cls(ExecutionStatus.CANCELLING)

    @classmethod
    def completed(cls, result: ExecutionResult) -> "ExecutionState":
        return cls(ExecutionStatus.COMPLETED, result=result)

    @classmethod
    def cancelled(cls, result: Optional[ExecutionResult] = None) -> "ExecutionState":
        return cls(ExecutionStatus.CANCELLED, result=result)

    @classmethod
    def failed(cls, message: str) -> "ExecutionState":
        return cls(ExecutionStatus.ERROR, error=message)


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    DEBUG = "debug"

    @property
    def display_name(self) -> str:
        return {"info": "INFO", "warning": "WARN", "error": "ERROR", "debug": "DEBUG"}[self.value]


class OutputStream(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class LogEntry:
    level: LogLevel
    message: str
    stream: Optional[OutputStream] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_stderr(self) -> bool:
        return self.stream is OutputStream.STDERR

    @property
    def formatted_timestamp(self) -> str:
        return self.timestamp.strftime("%H:%M:%S.%f")[:-3]

    @property
    def display_string(self) -> str:
        return f"[{self.formatted_timestamp}] [{self.level.display_name}] {self.message}"


@dataclass(frozen=True)
class HistoryEntry:
    """Fact emitted after every finished run, for whoever keeps history."""
    command: str
    success: bool
    executed_at: datetime = field(default_factory=datetime.now)

    @property
    def title(self) -> str:
        trimmed = self.command.strip()
        if len(trimmed) > HISTORY_TITLE_LENGTH:
            return trimmed[:HISTORY_TITLE_LENGTH] + "..."
        return trimmed

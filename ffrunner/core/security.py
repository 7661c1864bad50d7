# ffrunner/core/security.py
# Allow-list check on the executable a command would launch.
from enum import Enum
from typing import Collection, Optional

from ffrunner.core.tokenizer import program_name

ALLOWED_EXECUTABLES = ("ffmpeg", "ffprobe")


class CommandValidation(str, Enum):
    VALID = "valid"
    EMPTY_COMMAND = "empty_command"
    NOT_ALLOWED_EXECUTABLE = "not_allowed_executable"

    @property
    def is_valid(self) -> bool:
        return self is CommandValidation.VALID

    @property
    def error_message(self) -> Optional[str]:
        if self is CommandValidation.EMPTY_COMMAND:
            return "Command cannot be empty."
        if self is CommandValidation.NOT_ALLOWED_EXECUTABLE:
            return f"Only {' or '.join(ALLOWED_EXECUTABLES)} commands may be run."
        return None


def validate_command(
    command: str, allowed: Collection[str] = ALLOWED_EXECUTABLES
) -> CommandValidation:
    """
    Accepts a command only if its first token names an allowed executable.

    The command is tokenized, never handed to a shell, so `;`, `|` or `&&`
    inside later arguments are plain data and need no inspection. Only the
    base name of the first token is compared, and it must match exactly:
    `ffmpeg;` is not `ffmpeg`.
    """
    trimmed = command.strip()
    if not trimmed:
        return CommandValidation.EMPTY_COMMAND

    executable = program_name(trimmed)
    if executable is None:
        return CommandValidation.EMPTY_COMMAND

    if executable not in allowed:
        return CommandValidation.NOT_ALLOWED_EXECUTABLE

    return CommandValidation.VALID

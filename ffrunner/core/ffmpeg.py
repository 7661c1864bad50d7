#!/usr/bin/env python3
# ffrunner/core/ffmpeg.py
import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from ffrunner.core.models import ExecutionPlan

logger = logging.getLogger(__name__)

NON_INTERACTIVE_FLAG = "-nostdin"

# Checked when the executable is not on PATH
SYSTEM_SEARCH_PATHS = (
    "/opt/homebrew/bin",
    "/usr/local/bin",
    "/usr/bin",
    "/opt/local/bin",
)


class FFmpegSource(str, Enum):
    SYSTEM = "system"
    CUSTOM = "custom"


@dataclass(frozen=True)
class ExecutableTarget:
    """
    A resolved executable for the engine to launch.

    `non_interactive_flag` is injected ahead of the plan's arguments so the
    child never waits on stdin; None disables the injection.
    """
    path: str
    available: bool
    non_interactive_flag: Optional[str] = NON_INTERACTIVE_FLAG


def is_executable(path: str) -> bool:
    return bool(path) and os.path.isfile(path) and os.access(path, os.X_OK)


def find_system_executable(name: str = "ffmpeg") -> Optional[str]:
    found = shutil.which(name)
    if found:
        return os.path.abspath(found)
    for directory in SYSTEM_SEARCH_PATHS:
        candidate = os.path.join(directory, name)
        if is_executable(candidate):
            return candidate
    return None


def resolve_executable(
    source: FFmpegSource = FFmpegSource.SYSTEM,
    custom_path: Optional[str] = None,
    name: str = "ffmpeg",
) -> ExecutableTarget:
    """
    Resolves where the executable lives for the configured source.

    Never raises: an unresolvable executable comes back with
    `available=False` so callers can report it.
    """
    if source is FFmpegSource.CUSTOM:
        path = str(Path(custom_path).expanduser()) if custom_path else ""
    else:
        path = find_system_executable(name) or ""

    available = is_executable(path)
    logger.debug("Resolved %s (%s) -> %r, available=%s", name, source.value, path, available)
    return ExecutableTarget(path=path, available=available)


def sibling_target(target: ExecutableTarget, name: str) -> ExecutableTarget:
    """
    The executable `name` installed next to `target`, the way ffprobe ships
    beside ffmpeg. Only ffmpeg itself gets the non-interactive flag.
    """
    path = os.path.join(os.path.dirname(target.path), name) if target.path else ""
    flag = target.non_interactive_flag if name == "ffmpeg" else None
    return ExecutableTarget(path=path, available=is_executable(path), non_interactive_flag=flag)


def build_process_arguments(target: ExecutableTarget, plan: ExecutionPlan) -> List[str]:
    """
    Assembles the full argv for spawning: executable path first, then the
    non-interactive flag (unless already present), then the plan's arguments
    in their original order.
    """
    command_list = plan.full_arguments(target.path)
    flag = target.non_interactive_flag
    if flag and flag not in plan.arguments:
        command_list.insert(1, flag)
    return command_list


async def probe_version(target: ExecutableTarget) -> str:
    """Runs `<ffmpeg> -version` and returns the first line of its output."""
    process = await asyncio.create_subprocess_exec(
        target.path,
        "-version",
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    stdout, _ = await process.communicate()
    output = stdout.decode("utf-8", "ignore").strip()
    return output.splitlines()[0] if output else ""

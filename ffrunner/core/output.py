# ffrunner/core/output.py
# Capturing and interpreting child process output.
import codecs
import re
import threading
from dataclasses import dataclass
from typing import List, Optional

from ffrunner.core.models import LogLevel, OutputStream

DEFAULT_BUFFER_LIMIT = 1_000_000  # bytes kept per stream

LINE_BREAK_PATTERN = re.compile(r"\r\n|\r|\n")
ERROR_KEYWORDS = ("error", "failed", "invalid", "no such file")
WARNING_KEYWORDS = ("warning", "deprecated", "discarding")
PROGRESS_KEYWORDS = ("frame=", "size=", "time=")


class OutputBuffer:
    """
    Thread-safe byte buffer capped at `limit` bytes.

    When full, the oldest bytes are dropped so the tail of the output (where
    FFmpeg reports what went wrong) is always kept.
    """

    def __init__(self, limit: int = DEFAULT_BUFFER_LIMIT):
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.limit = limit
        self._data = bytearray()
        self._lock = threading.Lock()

    def append(self, chunk: bytes) -> None:
        with self._lock:
            self._data.extend(chunk)
            overflow = len(self._data) - self.limit
            if overflow > 0:
                del self._data[:overflow]

    def getvalue(self) -> bytes:
        with self._lock:
            return bytes(self._data)

    def text(self) -> str:
        return self.getvalue().decode("utf-8", errors="replace")

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class LineSplitter:
    """Turns a stream of byte chunks into complete text lines."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> List[str]:
        text = self._pending + self._decoder.decode(chunk)
        parts = LINE_BREAK_PATTERN.split(text)
        # Last part is unterminated until the next chunk (or the end) says otherwise
        self._pending = parts.pop()
        return parts

    def flush(self) -> List[str]:
        text = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        if not text:
            return []
        return LINE_BREAK_PATTERN.split(text)


def classify_line(line: str, stream: OutputStream) -> LogLevel:
    """Guesses a severity for one line of FFmpeg output from its wording."""
    lowered = line.lower()
    if any(keyword in lowered for keyword in ERROR_KEYWORDS):
        return LogLevel.ERROR
    if any(keyword in lowered for keyword in WARNING_KEYWORDS):
        return LogLevel.WARNING
    if any(keyword in lowered for keyword in PROGRESS_KEYWORDS):
        return LogLevel.DEBUG
    return LogLevel.WARNING if stream is OutputStream.STDERR else LogLevel.INFO


@dataclass(frozen=True)
class Progress:
    frame: int = 0
    fps: float = 0.0
    size: str = ""
    time: str = ""
    bitrate: str = ""
    speed: str = ""


def _field(line: str, name: str) -> Optional[str]:
    match = re.search(rf"{name}=\s*(\S+)", line)
    return match.group(1) if match else None


def parse_progress(line: str) -> Optional[Progress]:
    """
    Reads an FFmpeg status line such as
    `frame=  240 fps= 60 q=28.0 size=  1024kB time=00:00:08.00 bitrate=1048.6kbits/s speed=2.01x`.

    Returns None for lines that carry no progress.
    """
    if "frame=" not in line and "size=" not in line:
        return None

    frame = _field(line, "frame")
    fps = _field(line, "fps")
    try:
        frame_number = int(frame) if frame else 0
    except ValueError:
        frame_number = 0
    try:
        fps_number = float(fps) if fps else 0.0
    except ValueError:
        fps_number = 0.0

    return Progress(
        frame=frame_number,
        fps=fps_number,
        size=_field(line, "size") or "",
        time=_field(line, "time") or "",
        bitrate=_field(line, "bitrate") or "",
        speed=_field(line, "speed") or "",
    )

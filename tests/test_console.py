"""Tests for the rich rendering helpers."""

from ffrunner.core.output import Progress, parse_progress
from ffrunner.ui.console import describe_progress


class TestDescribeProgress:
    """Tests for describe_progress()."""

    def test_full_status_line(self):
        progress = parse_progress(
            "frame=  240 fps= 60 q=28.0 size=  1024kB time=00:00:08.00 bitrate=1048.6kbits/s speed=2.01x"
        )
        text = describe_progress(progress)
        assert "frame 240  60 fps  time 00:00:08.00  size 1024kB  speed 2.01x" in text

    def test_missing_fields_are_left_out(self):
        text = describe_progress(Progress(size="512kB"))
        assert text.endswith("frame 0  size 512kB")
        assert "fps" not in text

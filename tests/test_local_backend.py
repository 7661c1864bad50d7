"""Tests for running plans as local processes."""

import asyncio
import json
import signal
import sys
import textwrap
import time

import pytest

from ffrunner.backends.local import LocalBackend
from ffrunner.core.errors import (
    AlreadyRunningError,
    ExecutableUnavailableError,
    SpawnFailedError,
    ValidationFailedError,
)
from ffrunner.core.ffmpeg import ExecutableTarget
from ffrunner.core.models import (
    ExecutionPlan,
    ExecutionState,
    ExecutionStatus,
    HistoryEntry,
    LogEntry,
    LogLevel,
    OutputStream,
)
from ffrunner.core.parameters import ParameterDefinition
from ffrunner.core.templates import Template

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="relies on POSIX signals and shebangs")

ECHO_ARGS = """
import json, sys
print(json.dumps(sys.argv[1:]))
"""

CHATTY = """
import sys
print("hello from stdout", flush=True)
sys.stderr.write("frame=   10 fps=25 size=     1kB time=00:00:00.40\\n")
sys.stderr.write("Stream mapping:\\n")
"""

FAILING = """
import sys
sys.stderr.write("in.mp4: No such file or directory\\n")
sys.exit(1)
"""

STUBBORN = """
import signal, time
signal.signal(signal.SIGINT, signal.SIG_IGN)
print("ready", flush=True)
time.sleep(30)
"""

SPAWNS_STUBBORN_CHILD = """
import signal, subprocess, sys, time
signal.signal(signal.SIGINT, signal.SIG_IGN)
subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
print("ready", flush=True)
time.sleep(30)
"""

LEAVES_DETACHED_CHILD = """
import subprocess, sys
subprocess.Popen([sys.executable, "-c", "import time; time.sleep(5)"], start_new_session=True)
print("done", flush=True)
"""

GRACEFUL = """
import signal, sys, time
def stop(signum, frame):
    print("stopping", flush=True)
    sys.exit(255)
signal.signal(signal.SIGINT, stop)
print("ready", flush=True)
time.sleep(30)
"""


def write_script(tmp_path, name, body, interpreter=sys.executable):
    path = tmp_path / name
    path.write_text(f"#!{interpreter}\n" + textwrap.dedent(body))
    path.chmod(0o755)
    return ExecutableTarget(path=str(path), available=True)


def plan_for(*arguments):
    return ExecutionPlan(arguments=tuple(arguments), display_command="ffmpeg " + " ".join(arguments))


def drain_events(queue):
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


def of_type(events, kind):
    return [e for e in events if isinstance(e, kind)]


async def wait_for_line(queue, text, timeout=5.0):
    async def scan():
        while True:
            event = await queue.get()
            if isinstance(event, LogEntry) and event.message == text:
                return event

    return await asyncio.wait_for(scan(), timeout)


class TestExecute:
    """Tests for LocalBackend.execute()."""

    @pytest.mark.asyncio
    async def test_arguments_are_passed_in_order(self, tmp_path):
        """Test that the executable receives -nostdin and then the plan's arguments."""
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", ECHO_ARGS))
        result = await backend.execute(plan_for("-i", "my clip.mp4", "-vf", "scale=640:-2", "out.mp4"))

        assert result.is_success
        assert json.loads(result.stdout) == ["-nostdin", "-i", "my clip.mp4", "-vf", "scale=640:-2", "out.mp4"]

    @pytest.mark.asyncio
    async def test_non_interactive_flag_is_not_duplicated(self, tmp_path):
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", ECHO_ARGS))
        result = await backend.execute(plan_for("-nostdin", "-version"))
        assert json.loads(result.stdout) == ["-nostdin", "-version"]

    @pytest.mark.asyncio
    async def test_success_streams_logs_and_history(self, tmp_path):
        """Test state transitions, classified log lines and the history entry."""
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", CHATTY))
        queue = backend.subscribe()
        result = await backend.execute(plan_for("-i", "a.mp4", "b.mp4"))
        events = drain_events(queue)

        states = [e.status for e in of_type(events, ExecutionState)]
        assert states == [ExecutionStatus.RUNNING, ExecutionStatus.COMPLETED]
        assert backend.state.result == result
        assert "hello from stdout" in result.stdout
        assert "Stream mapping:" in result.stderr

        logs = {e.message: e for e in of_type(events, LogEntry)}
        assert logs["hello from stdout"].level is LogLevel.INFO
        assert logs["hello from stdout"].stream is OutputStream.STDOUT
        assert logs["Stream mapping:"].level is LogLevel.WARNING
        assert logs["Stream mapping:"].is_stderr
        progress = [e for e in of_type(events, LogEntry) if e.message.startswith("frame=")]
        assert progress[0].level is LogLevel.DEBUG
        assert logs["Started: ffmpeg -i a.mp4 b.mp4"].stream is None

        history = of_type(events, HistoryEntry)
        assert len(history) == 1
        assert history[0].success
        assert history[0].command == "ffmpeg -i a.mp4 b.mp4"

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_completed_not_raised(self, tmp_path):
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", FAILING))
        queue = backend.subscribe()
        result = await backend.execute(plan_for("-i", "in.mp4", "out.mp4"))
        events = drain_events(queue)

        assert result.exit_code == 1
        assert not result.is_success
        assert backend.state.status is ExecutionStatus.COMPLETED
        errors = [e.message for e in of_type(events, LogEntry) if e.level is LogLevel.ERROR]
        assert "in.mp4: No such file or directory" in errors
        assert any(m.startswith("Failed with exit code 1") for m in errors)
        assert [h.success for h in of_type(events, HistoryEntry)] == [False]

    @pytest.mark.asyncio
    async def test_output_is_bounded(self, tmp_path):
        """Test that only the newest bytes of a long output are kept."""
        body = """
        import sys
        sys.stdout.write("x" * 10000)
        sys.stdout.write("END")
        """
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", body), buffer_limit=100)
        result = await backend.execute(plan_for())

        assert len(result.stdout) == 100
        assert result.stdout.endswith("xxxEND")

    @pytest.mark.asyncio
    async def test_detached_descendant_does_not_block_completion(self, tmp_path):
        """Test that output left open by a process in another session stops being read."""
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", LEAVES_DETACHED_CHILD))
        queue = backend.subscribe()

        started = time.monotonic()
        result = await asyncio.wait_for(backend.execute(plan_for()), timeout=4)
        events = drain_events(queue)

        assert time.monotonic() - started < 3
        assert result.is_success
        assert "done" in result.stdout
        assert backend.state.status is ExecutionStatus.COMPLETED
        assert any("stayed open" in e.message for e in of_type(events, LogEntry))

    @pytest.mark.asyncio
    async def test_unavailable_executable(self, tmp_path):
        target = ExecutableTarget(path=str(tmp_path / "ffmpeg"), available=False)
        backend = LocalBackend(target)

        with pytest.raises(ExecutableUnavailableError):
            await backend.execute(plan_for("-version"))
        assert backend.state.status is ExecutionStatus.ERROR
        assert not backend.is_running

    @pytest.mark.asyncio
    async def test_spawn_failure(self, tmp_path):
        """Test that an executable the OS refuses to start fails cleanly."""
        target = write_script(tmp_path, "ffmpeg", "", interpreter="/nonexistent/interpreter")
        backend = LocalBackend(target)
        queue = backend.subscribe()

        with pytest.raises(SpawnFailedError):
            await backend.execute(plan_for("-version"))
        events = drain_events(queue)

        assert backend.state.status is ExecutionStatus.ERROR
        assert [h.success for h in of_type(events, HistoryEntry)] == [False]
        # The engine is usable again afterwards
        backend = LocalBackend(write_script(tmp_path, "ffmpeg2", ECHO_ARGS))
        assert (await backend.execute(plan_for())).is_success

    @pytest.mark.asyncio
    async def test_already_running(self, tmp_path):
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", STUBBORN), kill_timeout=0.1)
        queue = backend.subscribe()
        task = asyncio.ensure_future(backend.execute(plan_for()))
        await wait_for_line(queue, "ready")

        with pytest.raises(AlreadyRunningError):
            await backend.execute(plan_for())
        assert not backend.reset()

        backend.cancel()
        await asyncio.wait_for(task, timeout=5)


class TestCancel:
    """Tests for two-stage cancellation."""

    @pytest.mark.asyncio
    async def test_interrupt_is_enough_for_cooperative_process(self, tmp_path):
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", GRACEFUL), kill_timeout=5.0)
        queue = backend.subscribe()
        task = asyncio.ensure_future(backend.execute(plan_for()))
        await wait_for_line(queue, "ready")

        assert backend.cancel()
        assert backend.state.status is ExecutionStatus.CANCELLING
        assert not backend.cancel()

        result = await asyncio.wait_for(task, timeout=5)
        events = drain_events(queue)

        assert result.exit_code == 255
        assert "stopping" in result.stdout
        assert backend.state.status is ExecutionStatus.CANCELLED
        assert backend.state.result == result
        assert of_type(events, HistoryEntry) == []
        assert not any("was killed" in e.message for e in of_type(events, LogEntry))

    @pytest.mark.asyncio
    async def test_kill_after_timeout(self, tmp_path):
        """Test that a process ignoring SIGINT is killed after the kill timeout."""
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", STUBBORN), kill_timeout=0.2)
        queue = backend.subscribe()
        task = asyncio.ensure_future(backend.execute(plan_for()))
        await wait_for_line(queue, "ready")

        started = time.monotonic()
        assert backend.cancel()
        result = await asyncio.wait_for(task, timeout=5)
        elapsed = time.monotonic() - started
        events = drain_events(queue)

        assert result.exit_code == -signal.SIGKILL
        assert 0.15 <= elapsed < 3
        assert backend.state.status is ExecutionStatus.CANCELLED
        assert any("was killed" in e.message for e in of_type(events, LogEntry))

    @pytest.mark.asyncio
    async def test_kill_reaches_grandchildren(self, tmp_path):
        """Test that a grandchild sharing the output pipes does not keep the run in cancelling."""
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", SPAWNS_STUBBORN_CHILD), kill_timeout=0.2)
        queue = backend.subscribe()
        task = asyncio.ensure_future(backend.execute(plan_for()))
        await wait_for_line(queue, "ready")

        started = time.monotonic()
        assert backend.cancel()
        result = await asyncio.wait_for(task, timeout=5)

        assert result.exit_code == -signal.SIGKILL
        assert time.monotonic() - started < 3
        assert backend.state.status is ExecutionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_when_idle(self, tmp_path):
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", ECHO_ARGS))
        assert not backend.cancel()
        assert backend.state.status is ExecutionStatus.IDLE

    @pytest.mark.asyncio
    async def test_cancelling_the_awaiting_task_kills_the_child(self, tmp_path):
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", STUBBORN))
        queue = backend.subscribe()
        task = asyncio.ensure_future(backend.execute(plan_for()))
        await wait_for_line(queue, "ready")

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert backend.state.status is ExecutionStatus.CANCELLED
        assert not backend.is_running


class TestPlanAndRun:
    """Tests for the planning entry points and reset()."""

    @pytest.mark.asyncio
    async def test_run_template(self, tmp_path):
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", ECHO_ARGS))
        template = Template(
            id="copy",
            name="Copy",
            command_template="ffmpeg -i {{input}} -c copy {{output}}",
            parameters=(ParameterDefinition(key="input"), ParameterDefinition(key="output")),
        )
        result = await backend.run_template(template, {"input": "in put.mp4", "output": "out.mp4"})

        assert json.loads(result.stdout) == ["-nostdin", "-i", "in put.mp4", "-c", "copy", "out.mp4"]
        assert result.command == "ffmpeg -i 'in put.mp4' -c copy out.mp4"

    @pytest.mark.asyncio
    async def test_ffprobe_command_runs_ffprobe(self, tmp_path):
        """Test that an ffprobe command runs the ffprobe next to ffmpeg, without -nostdin."""
        write_script(tmp_path, "ffprobe", ECHO_ARGS)
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", FAILING))
        result = await backend.run_command("ffprobe -v error a.mp4")

        assert result.is_success
        assert json.loads(result.stdout) == ["-v", "error", "a.mp4"]

    @pytest.mark.asyncio
    async def test_ffprobe_template_runs_ffprobe(self, tmp_path):
        write_script(tmp_path, "ffprobe", ECHO_ARGS)
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", FAILING))
        template = Template(
            id="streams",
            name="Streams",
            command_template="ffprobe -show_streams {{input}}",
            parameters=(ParameterDefinition(key="input"),),
        )
        result = await backend.run_template(template, {"input": "in put.mp4"})

        assert json.loads(result.stdout) == ["-show_streams", "in put.mp4"]

    @pytest.mark.asyncio
    async def test_run_command_rejects_other_programs(self, tmp_path):
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", ECHO_ARGS))
        queue = backend.subscribe()

        with pytest.raises(ValidationFailedError):
            await backend.run_command("rm -rf /")
        states = [e.status for e in of_type(drain_events(queue), ExecutionState)]
        assert states == [ExecutionStatus.PREPARING, ExecutionStatus.ERROR]

    @pytest.mark.asyncio
    async def test_reset_after_run(self, tmp_path):
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", ECHO_ARGS))
        await backend.run_command("ffmpeg -version")

        assert backend.state.status is ExecutionStatus.COMPLETED
        assert backend.reset()
        assert backend.state == ExecutionState.idle()

    @pytest.mark.asyncio
    async def test_unsubscribed_queue_gets_nothing(self, tmp_path):
        backend = LocalBackend(write_script(tmp_path, "ffmpeg", ECHO_ARGS))
        queue = backend.subscribe()
        backend.unsubscribe(queue)
        await backend.execute(plan_for())
        assert queue.empty()

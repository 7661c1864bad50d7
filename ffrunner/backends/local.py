# ffrunner/backends/local.py
import asyncio
import contextlib
import logging
import os
import signal
from datetime import datetime
from typing import Callable, List, Mapping, Optional, Sequence, Union

from ffrunner.backends.base import Backend
from ffrunner.core.errors import (
    AlreadyRunningError,
    ExecutableUnavailableError,
    PlanningError,
    SpawnFailedError,
)
from ffrunner.core.ffmpeg import ExecutableTarget, build_process_arguments, is_executable, sibling_target
from ffrunner.core.models import (
    ExecutionPlan,
    ExecutionResult,
    ExecutionState,
    ExecutionStatus,
    HistoryEntry,
    LogEntry,
    LogLevel,
    OutputStream,
)
from ffrunner.core.output import DEFAULT_BUFFER_LIMIT, LineSplitter, OutputBuffer, classify_line
from ffrunner.core.planner import CommandPlanner
from ffrunner.core.renderer import DEFAULT_PROGRAM
from ffrunner.core.templates import Template

logger = logging.getLogger(__name__)

DEFAULT_KILL_TIMEOUT = 0.5  # seconds between SIGINT and SIGKILL
DRAIN_TIMEOUT = 1.0  # seconds to finish reading output once the process has exited
EXIT_POLL_INTERVAL = 0.1
READ_CHUNK_SIZE = 4096

Event = Union[ExecutionState, LogEntry, HistoryEntry]


def _signal_group(process: asyncio.subprocess.Process, sig: int) -> None:
    # The child leads its own session, so its pid is also the group id
    os.killpg(process.pid, sig)


class LocalBackend(Backend):
    """
    Runs execution plans as local child processes, one at a time.

    Must be driven from a single event loop: state changes, the process
    handle and cancellation all live on that loop. Progress is published to
    subscriber queues as ExecutionState, LogEntry and HistoryEntry values.
    """

    def __init__(
        self,
        target: ExecutableTarget,
        planner: Optional[CommandPlanner] = None,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        buffer_limit: int = DEFAULT_BUFFER_LIMIT,
    ):
        self.target = target
        self.planner = planner or CommandPlanner()
        self.kill_timeout = kill_timeout
        self.buffer_limit = buffer_limit

        self._state = ExecutionState.idle()
        self._process: Optional[asyncio.subprocess.Process] = None
        self._escalation: Optional[asyncio.Future] = None
        self._subscribers: List[asyncio.Queue] = []

    # --- State & events ---

    @property
    def state(self) -> ExecutionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state.is_active

    def subscribe(self) -> "asyncio.Queue[Event]":
        """Returns an unbounded queue that receives every event from now on."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _publish(self, event: Event) -> None:
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    def _set_state(self, state: ExecutionState) -> None:
        logger.debug("State %s -> %s", self._state.status.value, state.status.value)
        self._state = state
        self._publish(state)

    def _log(self, level: LogLevel, message: str, stream: Optional[OutputStream] = None) -> None:
        self._publish(LogEntry(level=level, message=message, stream=stream))

    def reset(self) -> bool:
        """Returns to idle from a finished state. Refused while a run is active."""
        if self._state.is_active:
            return False
        self._set_state(ExecutionState.idle())
        return True

    # --- Execution ---

    async def execute(self, plan: ExecutionPlan) -> ExecutionResult:
        """
        Runs `plan` and returns its result once the process has exited and
        both output streams are drained.

        A non-zero exit or a cancellation is reported through the state, not
        raised.

        Raises:
            AlreadyRunningError: another run is active.
            ExecutableUnavailableError: the target cannot be executed.
            SpawnFailedError: the OS refused to start the process.
        """
        if self._state.is_active or self._process is not None:
            raise AlreadyRunningError()
        return await self._run(plan)

    async def run_template(self, template: Template, values: Mapping[str, str]) -> ExecutionResult:
        return await self._plan_and_run(lambda: self.planner.prepare_template(template, values))

    async def run_command(self, command: str) -> ExecutionResult:
        return await self._plan_and_run(lambda: self.planner.prepare_command(command))

    async def _plan_and_run(self, make_plan: Callable[[], ExecutionPlan]) -> ExecutionResult:
        if self._state.is_active or self._process is not None:
            raise AlreadyRunningError()

        self._set_state(ExecutionState.preparing())
        try:
            plan = make_plan()
        except PlanningError as e:
            self._log(LogLevel.ERROR, str(e))
            self._set_state(ExecutionState.failed(str(e)))
            raise
        return await self._run(plan)

    def _target_for(self, plan: ExecutionPlan) -> ExecutableTarget:
        if plan.program == DEFAULT_PROGRAM:
            return self.target
        return sibling_target(self.target, plan.program)

    async def _run(self, plan: ExecutionPlan) -> ExecutionResult:
        target = self._target_for(plan)
        if not target.available or not is_executable(target.path):
            error = ExecutableUnavailableError(target.path)
            self._log(LogLevel.ERROR, str(error))
            self._set_state(ExecutionState.failed(str(error)))
            raise error

        argv = build_process_arguments(target, plan)
        self._set_state(ExecutionState.running())
        start_time = datetime.now()

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                # Own process group, so signals also reach anything the child spawns
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            # Nothing was started: no drains exist yet, only the state to roll back
            reason = getattr(e, "strerror", None) or str(e)
            self._process = None
            self._log(LogLevel.ERROR, f"Could not start process: {reason}")
            self._publish(HistoryEntry(command=plan.display_command, success=False))
            self._set_state(ExecutionState.failed(reason))
            raise SpawnFailedError(reason) from e

        self._process = process
        logger.debug("Spawned pid %s: %s", process.pid, argv)
        self._log(LogLevel.INFO, f"Started: {plan.display_command}")

        stdout_buffer = OutputBuffer(self.buffer_limit)
        stderr_buffer = OutputBuffer(self.buffer_limit)
        drains = [
            asyncio.ensure_future(self._drain(process.stdout, OutputStream.STDOUT, stdout_buffer)),
            asyncio.ensure_future(self._drain(process.stderr, OutputStream.STDERR, stderr_buffer)),
        ]

        # cancel() may have arrived while the process was being spawned
        if self._state.status is ExecutionStatus.CANCELLING:
            self._interrupt(process)

        try:
            exit_code = await self._wait_for_exit(process)
            await self._finish_drains(drains)
        except asyncio.CancelledError:
            await self._abort(process, drains)
            self._log(LogLevel.WARNING, "Execution cancelled")
            self._set_state(ExecutionState.cancelled())
            raise
        except Exception as e:
            await self._abort(process, drains)
            self._log(LogLevel.ERROR, f"Execution failed: {e}")
            self._set_state(ExecutionState.failed(str(e)))
            raise
        finally:
            self._stop_escalation()
            self._process = None

        result = ExecutionResult(
            command=plan.display_command,
            exit_code=exit_code,
            stdout=stdout_buffer.text(),
            stderr=stderr_buffer.text(),
            start_time=start_time,
            end_time=datetime.now(),
        )

        if self._state.status is ExecutionStatus.CANCELLING:
            self._log(LogLevel.WARNING, f"Execution cancelled after {result.formatted_duration}")
            self._set_state(ExecutionState.cancelled(result))
            return result

        if result.is_success:
            self._log(LogLevel.INFO, f"Finished successfully in {result.formatted_duration}")
        else:
            self._log(
                LogLevel.ERROR,
                f"Failed with exit code {result.exit_code} after {result.formatted_duration}",
            )
        self._publish(HistoryEntry(command=plan.display_command, success=result.is_success))
        self._set_state(ExecutionState.completed(result))
        return result

    async def _drain(
        self, stream: asyncio.StreamReader, source: OutputStream, buffer: OutputBuffer
    ) -> None:
        splitter = LineSplitter()
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            buffer.append(chunk)
            self._emit_lines(splitter.feed(chunk), source)
        self._emit_lines(splitter.flush(), source)

    async def _wait_for_exit(self, process: asyncio.subprocess.Process) -> int:
        # Process.wait() may also wait for the pipes to close, and a descendant can hold them
        waiter = asyncio.ensure_future(process.wait())
        try:
            while process.returncode is None and not waiter.done():
                await asyncio.wait({waiter}, timeout=EXIT_POLL_INTERVAL)
        finally:
            waiter.cancel()
        return process.returncode

    async def _finish_drains(self, drains: List[asyncio.Future]) -> None:
        try:
            await asyncio.wait_for(asyncio.gather(*drains), timeout=DRAIN_TIMEOUT)
        except asyncio.TimeoutError:
            # A descendant still holds the pipes; keep what was read
            logger.debug("Output still open %ss after exit, stopped reading", DRAIN_TIMEOUT)
            self._log(LogLevel.WARNING, "Output streams stayed open after the process exited")

    def _emit_lines(self, lines: Sequence[str], source: OutputStream) -> None:
        for line in lines:
            message = line.strip()
            if message:
                self._log(classify_line(message, source), message, source)

    async def _abort(self, process: asyncio.subprocess.Process, drains: List[asyncio.Future]) -> None:
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                _signal_group(process, signal.SIGKILL)
        for drain in drains:
            drain.cancel()
        # Reap the child so its pipes are not left open
        with contextlib.suppress(Exception):
            await asyncio.wait_for(process.wait(), timeout=1.0)

    # --- Cancellation ---

    def cancel(self) -> bool:
        """
        Interrupts the running process: SIGINT now, SIGKILL after
        `kill_timeout` seconds if it is still alive.

        Only acts while running; a second call during the same run is
        ignored. Must be called from the engine's event loop (use
        `loop.call_soon_threadsafe` from other threads).
        """
        if self._state.status is not ExecutionStatus.RUNNING:
            return False

        self._set_state(ExecutionState.cancelling())
        self._log(LogLevel.WARNING, "Cancelling execution")
        if self._process is not None:
            self._interrupt(self._process)
        return True

    def _interrupt(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            _signal_group(process, signal.SIGINT)
        except ProcessLookupError:
            return
        logger.debug("Sent SIGINT to pid %s", process.pid)
        self._escalation = asyncio.ensure_future(self._escalate(process))

    async def _escalate(self, process: asyncio.subprocess.Process) -> None:
        await asyncio.sleep(self.kill_timeout)
        if process.returncode is not None:
            return
        try:
            _signal_group(process, signal.SIGKILL)
        except ProcessLookupError:
            return
        logger.debug("Sent SIGKILL to pid %s", process.pid)
        self._log(LogLevel.WARNING, "Process did not respond to interrupt and was killed")

    def _stop_escalation(self) -> None:
        if self._escalation is not None and not self._escalation.done():
            self._escalation.cancel()
        self._escalation = None

# ffrunner/backends/base.py
from abc import ABC, abstractmethod

from ffrunner.core.models import ExecutionPlan, ExecutionResult, ExecutionState


class Backend(ABC):
    """
    Abstract Base Class for all execution backends.
    Defines the contract that all backends must follow.
    """

    @property
    @abstractmethod
    def state(self) -> ExecutionState:
        """Current execution state."""

    @abstractmethod
    async def execute(self, plan: ExecutionPlan) -> ExecutionResult:
        """
        Runs the plan to completion and returns its result.
        Only plans are accepted, never templates or raw strings.
        """

    @abstractmethod
    def cancel(self) -> bool:
        """Asks the running command to stop. Returns False if nothing was running."""

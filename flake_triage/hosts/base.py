"""Abstract base class for test execution hosts."""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from flake_triage.models.events import TestEvent
from flake_triage.selector import Selector

SELECT_PATTERN_ENV = "FLAKE_TRIAGE_SELECT_PATTERN"
SKIP_PATTERN_ENV = "FLAKE_TRIAGE_SKIP_PATTERN"


class EventSink(Protocol):
    """Receiver of host events, called serially."""

    def __call__(self, event: TestEvent) -> None:
        """Handle a single event."""


@dataclass(frozen=True, kw_only=True)
class Invocation:
    """Request to execute the tests of one file.

    Only tests matching `selector` run. Tests matching `skip_selector` are
    skipped without executing their body.
    """

    filename: str
    selector: Selector
    skip_selector: Selector | None = None
    generation: int = 0


@dataclass(frozen=True, kw_only=True)
class ExecutionHost(ABC):
    """Abstract base for test execution hosts.

    A host discovers test files, executes them on request, and reports what
    happened as events. Events must be delivered one at a time.
    """

    @abstractmethod
    async def discover(self) -> Mapping[str, Sequence[Sequence[str]]]:
        """Discover test files.

        Returns:
            Title paths known ahead of execution, keyed by posix filename
            relative to the project root. A host that only learns test names
            while executing maps each file to an empty sequence.

        """

    @abstractmethod
    async def execute(self, invocation: Invocation, emit: EventSink) -> None:
        """Execute the tests selected by an invocation.

        Args:
            invocation: File and selectors to execute
            emit: Receiver of the events produced by the execution

        """

"""Models for individual test attempts."""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

type AttemptOutcome = Literal["pass", "fail", "pending"]


@dataclass(frozen=True, kw_only=True)
class TestFailure:
    """A single failure reported for an attempt."""

    __test__ = False

    message: str
    stack: str | None = None
    hook_name: str | None = None

    @property
    def display_message(self) -> str:
        if self.hook_name is None:
            return self.message
        return f'"{self.hook_name}" hook failed:\n{self.message}'


@dataclass(frozen=True, kw_only=True)
class Attempt:
    """One execution of a test.

    Errors are ordered most recently reported first.
    """

    index: int
    outcome: AttemptOutcome
    started_at: datetime
    duration_ms: int
    errors: tuple[TestFailure, ...] = ()
    test_independent: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.outcome != "pending"

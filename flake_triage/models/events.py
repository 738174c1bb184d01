"""Events delivered by execution hosts.

Title paths are raw, as reported by the host. Attempt indexes are local to the
invocation that produced the event.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from flake_triage.models.attempt import TestFailure


@dataclass(frozen=True, kw_only=True)
class AttemptStarted:
    """A test attempt began executing."""

    filename: str
    title_path: tuple[str, ...]
    attempt_index: int
    started_at: datetime


@dataclass(frozen=True, kw_only=True)
class AttemptFinished:
    """A test attempt reached its end-of-test result."""

    filename: str
    title_path: tuple[str, ...]
    attempt_index: int
    outcome: Literal["pass", "fail"]
    started_at: datetime
    duration_ms: int
    error: TestFailure | None = None


@dataclass(frozen=True, kw_only=True)
class AttemptFailed:
    """An additional failure reported for an attempt."""

    filename: str
    title_path: tuple[str, ...]
    attempt_index: int
    started_at: datetime
    duration_ms: int
    error: TestFailure


@dataclass(frozen=True, kw_only=True)
class HookFailed:
    """A setup or teardown hook failed.

    The last title path component is the hook's synthetic title, for example
    `"before each" hook for "does something"`.
    """

    filename: str
    title_path: tuple[str, ...]
    attempt_index: int
    started_at: datetime
    error: TestFailure


@dataclass(frozen=True, kw_only=True)
class TestSkipped:
    """A test was skipped without executing."""

    __test__ = False

    filename: str
    title_path: tuple[str, ...]


type TestEvent = (
    AttemptStarted | AttemptFinished | AttemptFailed | HookFailed | TestSkipped
)

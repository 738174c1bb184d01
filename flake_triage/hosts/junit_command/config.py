"""Configuration for the JUnit command host."""

from collections.abc import Mapping, Sequence
from pathlib import Path

from pydantic import BaseModel, Field


class JUnitCommandConfig(BaseModel):
    """Configuration for the JUnit command host.

    Each command argument may contain the placeholders `{file}`, `{report}`,
    `{select_pattern}` and `{skip_pattern}`. The patterns are regular expressions
    searched against `flake_triage.selector.match_subject` of a test's title
    path.
    """

    command: Sequence[str] = Field(..., min_length=1)
    test_files: Sequence[str] = ("**/test_*.py",)
    cwd: Path = Path(".")
    env: Mapping[str, str] = Field(default_factory=dict)
    max_parallel: int = Field(default=4, ge=1)
    # Match test names the way hosts with case-insensitive filters do
    case_insensitive: bool = False
    timeout: float | None = Field(default=None, gt=0)

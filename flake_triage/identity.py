"""Normalization of host-reported test names into canonical identities."""

import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from flake_triage.models.test_ref import TestRef

_WHITESPACE = re.compile(r"\s+")

HOOK_TITLE_PATTERN = re.compile(
    r'^"(?P<hook>[^"]+)" hook'
    r"(?:: (?P<label>.*?))?"
    r'(?: for "(?P<test>.*)"| in "(?P<suite>.*)")?$',
    re.DOTALL,
)


@dataclass(frozen=True, kw_only=True)
class HookTitle:
    """Parsed synthetic title of a hook failure."""

    hook_name: str
    test_title: str | None


def normalize_component(component: str) -> str:
    """Collapse runs of whitespace and strip the ends of a title component."""
    if not isinstance(component, str):
        raise TypeError(f"Title component must be str, got {type(component).__name__}")
    return _WHITESPACE.sub(" ", component).strip()


def normalize_filename(filename: str, root: Path | None = None) -> str:
    """Return the filename as a posix path, relative to root when inside it."""
    path = Path(filename)
    if root is not None and path.is_absolute() and path.is_relative_to(root):
        path = path.relative_to(root)
    return path.as_posix()


def normalize(
    filename: str, raw_title_path: Sequence[str], *, root: Path | None = None
) -> TestRef:
    """Build the canonical identity of a test.

    Retries of the same logical test always normalize to the same identity,
    regardless of incidental whitespace differences in what the host reports.

    Raises:
        TypeError: If a title component is not a string
        ValueError: If the title path is empty

    """
    return TestRef(
        filename=normalize_filename(filename, root),
        title_path=tuple(normalize_component(c) for c in raw_title_path),
    )


def parse_hook_title(title: str) -> HookTitle | None:
    """Parse a synthetic hook title, returning None for regular test titles."""
    match = HOOK_TITLE_PATTERN.match(title)
    if match is None:
        return None
    test_title = match.group("test")
    return HookTitle(
        hook_name=match.group("hook"),
        test_title=normalize_component(test_title) if test_title else None,
    )


def hook_failure_ref(
    filename: str, raw_title_path: Sequence[str], *, root: Path | None = None
) -> tuple[TestRef, str | None]:
    """Resolve the best-available identity for a hook failure.

    When the hook's synthetic title names the test it ran for, that test title
    replaces the synthetic one. Otherwise the synthetic title is kept.

    Returns:
        The identity and the hook name, or None if the last component is not a
        hook title

    """
    ref = normalize(filename, raw_title_path, root=root)
    hook = parse_hook_title(ref.title_path[-1])
    if hook is None:
        return ref, None
    if hook.test_title is None:
        return ref, hook.hook_name
    return (
        TestRef(
            filename=ref.filename,
            title_path=(*ref.title_path[:-1], hook.test_title),
        ),
        hook.hook_name,
    )

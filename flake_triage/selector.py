"""Selection predicates over test identities.

A selector is evaluated natively with `matches`, or compiled once with
`compile_selector` into the pattern language execution hosts accept: a Python
regular expression searched against `match_subject(title_path)`. Invocations
are always scoped to a single file, so compiled patterns only constrain the
title.
"""

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import assert_never

from flake_triage.models.test_ref import TestRef

COMPONENT_SEPARATOR = "\x1f"


@dataclass(frozen=True, kw_only=True)
class MatchAll:
    """Matches every test."""


@dataclass(frozen=True, kw_only=True)
class MatchTest:
    """Matches one test by its title path.

    With `prefix` the last component only has to start with the ref's last
    component. With `descendants` tests nested below the ref's title path match
    too.
    """

    ref: TestRef
    prefix: bool = False
    descendants: bool = False


@dataclass(frozen=True, kw_only=True)
class MatchPattern:
    """User-supplied regular expression searched in the full title."""

    pattern: str


@dataclass(frozen=True, kw_only=True)
class AllOf:
    selectors: tuple["Selector", ...]


@dataclass(frozen=True, kw_only=True)
class AnyOf:
    selectors: tuple["Selector", ...]


@dataclass(frozen=True, kw_only=True)
class Not:
    selector: "Selector"


type Selector = MatchAll | MatchTest | MatchPattern | AllOf | AnyOf | Not


def any_test(refs: Iterable[TestRef]) -> AnyOf:
    return AnyOf(selectors=tuple(MatchTest(ref=ref) for ref in refs))


def intersect(name_filter: Selector | None, selector: Selector) -> Selector:
    """AND a selector with an optional user name filter."""
    if name_filter is None:
        return selector
    return AllOf(selectors=(name_filter, selector))


def encode_component(component: str) -> str:
    """Escape a title component so it holds neither the separator nor a newline."""
    return (
        component.replace("\\", "\\\\")
        .replace(COMPONENT_SEPARATOR, "\\x1f")
        .replace("\n", "\\n")
    )


def match_subject(title_path: Sequence[str]) -> str:
    """String that compiled selectors are searched against.

    The first line is the encoded title path, which test matches are anchored
    to. The second line is the title joined by spaces, which user patterns are
    searched in.
    """
    encoded = COMPONENT_SEPARATOR.join(encode_component(c) for c in title_path)
    return encoded + "\n" + " ".join(title_path)


def _matches_title_path(
    target: MatchTest, title_path: tuple[str, ...], *, case_insensitive: bool
) -> bool:
    expected = target.ref.title_path
    if case_insensitive:
        title_path = tuple(c.casefold() for c in title_path)
        expected = tuple(c.casefold() for c in expected)

    depth = len(expected)
    if len(title_path) < depth:
        return False
    if len(title_path) > depth and not target.descendants:
        return False
    if title_path[: depth - 1] != expected[:-1]:
        return False
    last = title_path[depth - 1]
    return last.startswith(expected[-1]) if target.prefix else last == expected[-1]


def matches(
    selector: Selector, ref: TestRef, *, case_insensitive: bool = False
) -> bool:
    """Evaluate a selector against a test identity."""
    match selector:
        case MatchAll():
            return True
        case MatchTest():
            return selector.ref.filename == ref.filename and _matches_title_path(
                selector, ref.title_path, case_insensitive=case_insensitive
            )
        case MatchPattern(pattern=pattern):
            flags = re.DOTALL | (re.IGNORECASE if case_insensitive else 0)
            return re.search(pattern, ref.title, flags) is not None
        case AllOf(selectors=selectors):
            return all(
                matches(s, ref, case_insensitive=case_insensitive) for s in selectors
            )
        case AnyOf(selectors=selectors):
            return any(
                matches(s, ref, case_insensitive=case_insensitive) for s in selectors
            )
        case Not(selector=inner):
            return not matches(inner, ref, case_insensitive=case_insensitive)
        case _:
            assert_never(selector)


def compile_selector(selector: Selector, *, case_insensitive: bool = False) -> str:
    """Compile a selector into a regular expression over `match_subject`.

    Some hosts match test names case-insensitively. Passing `case_insensitive`
    makes the compiled pattern behave the same way under `re.search`.
    """
    flags = "(?smi)" if case_insensitive else "(?sm)"
    return flags + _compile(selector)


def _compile_test(selector: MatchTest) -> str:
    components = [re.escape(encode_component(c)) for c in selector.ref.title_path]
    if selector.prefix:
        components[-1] += r"[^\x1f\n]*"
    pattern = r"\A" + r"\x1f".join(components)
    if selector.descendants:
        pattern += r"(?:\x1f[^\n]*)?"
    return pattern + r"\n"


def _compile(selector: Selector) -> str:
    match selector:
        case MatchAll():
            return ""
        case MatchTest():
            return _compile_test(selector)
        case MatchPattern(pattern=pattern):
            # Only the space-joined title on the last line is searched.
            return rf"\n.*?(?:{pattern})"
        case AllOf(selectors=selectors):
            return r"\A" + "".join(f"(?=.*?(?:{_compile(s)}))" for s in selectors)
        case AnyOf(selectors=selectors):
            if not selectors:
                return "(?!)"
            return "(?:" + "|".join(_compile(s) for s in selectors) + ")"
        case Not(selector=inner):
            return rf"\A(?!.*?(?:{_compile(inner)}))"
        case _:
            assert_never(selector)

"""Adapter from JUnit XML reports to host events."""

from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timedelta
from pathlib import PurePosixPath
from xml.etree import ElementTree

from flake_triage.identity import parse_hook_title
from flake_triage.models.attempt import TestFailure
from flake_triage.models.events import (
    AttemptFailed,
    AttemptFinished,
    AttemptStarted,
    HookFailed,
    TestEvent,
    TestSkipped,
)

FAILURE_TAGS = ("failure", "error")


def module_name(filename: str) -> str:
    """Dotted module name of a test file, as used in JUnit classnames."""
    return ".".join(PurePosixPath(filename).with_suffix("").parts)


def title_path(testcase: ElementTree.Element, module: str) -> tuple[str, ...]:
    """Title path of a testcase.

    The classname minus the file's module prefix gives the enclosing scopes.
    A classname unrelated to the file is kept as a single scope.
    """
    classname = testcase.get("classname", "")
    name = testcase.get("name", "")
    if classname == module or not classname:
        scopes: tuple[str, ...] = ()
    elif classname.startswith(f"{module}."):
        scopes = tuple(classname.removeprefix(f"{module}.").split("."))
    else:
        scopes = (classname,)
    return (*scopes, name)


def to_failure(element: ElementTree.Element) -> TestFailure:
    text = (element.text or "").strip()
    message = element.get("message") or text.partition("\n")[0] or element.tag
    return TestFailure(message=message, stack=text or None)


def parse_timestamp(root: ElementTree.Element, default: datetime) -> datetime:
    suite = root if root.tag == "testsuite" else root.find("testsuite")
    timestamp = suite.get("timestamp") if suite is not None else None
    if not timestamp:
        return default
    try:
        parsed = datetime.fromisoformat(timestamp)
    except ValueError:
        return default
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=default.tzinfo)


def parse_junit_report(
    xml_text: str, *, filename: str, started_at: datetime
) -> Sequence[TestEvent]:
    """Convert a JUnit XML report for one file into host events.

    Repeated testcases with the same title, as written by in-process rerun
    plugins, become consecutive attempts. The first failure or error of a
    testcase fails the attempt and further ones are reported separately for
    the same attempt. Testcases with hook titles become hook failures.

    Raises:
        xml.etree.ElementTree.ParseError: If the report is not valid XML

    """
    root = ElementTree.fromstring(xml_text)
    module = module_name(filename)
    clock = parse_timestamp(root, started_at)
    attempt_counts: Counter[tuple[str, ...]] = Counter()
    events: list[TestEvent] = []

    for testcase in root.iter("testcase"):
        path = title_path(testcase, module)
        duration_ms = round(float(testcase.get("time") or 0) * 1000)
        case_started_at = clock
        clock += timedelta(milliseconds=duration_ms)
        failures = [child for child in testcase if child.tag in FAILURE_TAGS]

        if parse_hook_title(path[-1]) is not None:
            index = attempt_counts[path]
            attempt_counts[path] += 1
            events.extend(
                HookFailed(
                    filename=filename,
                    title_path=path,
                    attempt_index=index,
                    started_at=case_started_at,
                    error=to_failure(failure),
                )
                for failure in failures
            )
            continue

        if testcase.find("skipped") is not None and not failures:
            events.append(TestSkipped(filename=filename, title_path=path))
            continue

        index = attempt_counts[path]
        attempt_counts[path] += 1
        events.append(
            AttemptStarted(
                filename=filename,
                title_path=path,
                attempt_index=index,
                started_at=case_started_at,
            )
        )
        events.append(
            AttemptFinished(
                filename=filename,
                title_path=path,
                attempt_index=index,
                outcome="fail" if failures else "pass",
                started_at=case_started_at,
                duration_ms=duration_ms,
                error=to_failure(failures[0]) if failures else None,
            )
        )
        events.extend(
            AttemptFailed(
                filename=filename,
                title_path=path,
                attempt_index=index,
                started_at=case_started_at,
                duration_ms=duration_ms,
                error=to_failure(extra),
            )
            for extra in failures[1:]
        )

    return events

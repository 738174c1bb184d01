"""pytest plugin applying flake-triage selection and quarantine skipping.

Enable it with `-p flake_triage.pytest_plugin`. It reads the compiled patterns
from FLAKE_TRIAGE_SELECT_PATTERN and FLAKE_TRIAGE_SKIP_PATTERN and searches
them in the match subject of each item's title path. Tests that do not match
the select pattern are deselected, and tests matching the skip pattern are
skipped before they run.
"""

import os
import re

import pytest

from flake_triage.hosts.base import SELECT_PATTERN_ENV, SKIP_PATTERN_ENV
from flake_triage.identity import normalize_component
from flake_triage.selector import match_subject

QUARANTINE_SKIP_REASON = "quarantined"


def item_title_path(item: pytest.Item) -> tuple[str, ...]:
    """Title path of an item, matching the JUnit classname and name split."""
    _, _, scoped_name = item.nodeid.partition("::")
    parts = scoped_name.split("::") if scoped_name else [item.name]
    return tuple(normalize_component(part) for part in parts)


def item_subject(item: pytest.Item) -> str:
    return match_subject(item_title_path(item))


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    if select := os.environ.get(SELECT_PATTERN_ENV):
        pattern = re.compile(select)
        selected: list[pytest.Item] = []
        deselected: list[pytest.Item] = []
        for item in items:
            if pattern.search(item_subject(item)):
                selected.append(item)
            else:
                deselected.append(item)
        if deselected:
            config.hook.pytest_deselected(items=deselected)
            items[:] = selected

    if skip := os.environ.get(SKIP_PATTERN_ENV):
        pattern = re.compile(skip)
        for item in items:
            if pattern.search(item_subject(item)):
                item.add_marker(pytest.mark.skip(reason=QUARANTINE_SKIP_REASON))

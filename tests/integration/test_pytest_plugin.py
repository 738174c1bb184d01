"""Integration tests for the pytest selection plugin."""

import pytest

from flake_triage.hosts.base import SELECT_PATTERN_ENV, SKIP_PATTERN_ENV
from flake_triage.models.test_ref import TestRef
from flake_triage.selector import AnyOf, MatchTest, Not, compile_selector

SAMPLE_TESTS = """
import pytest


def test_adds_item():
    pass


def test_removes_item():
    pass


class TestCheckout:
    @pytest.mark.parametrize("method", ["card", "invoice"])
    def test_pays(self, method):
        pass
"""


def ref(*title_path: str) -> TestRef:
    return TestRef(filename="test_cart.py", title_path=title_path)


@pytest.fixture
def cart_tests(pytester: pytest.Pytester) -> pytest.Pytester:
    """Create a test file with plain, class and parametrized tests."""
    pytester.makepyfile(test_cart=SAMPLE_TESTS)
    return pytester


def run_with_plugin(pytester: pytest.Pytester) -> pytest.RunResult:
    return pytester.runpytest("-p", "flake_triage.pytest_plugin", "-rs")


def test_runs_everything_without_patterns(
    cart_tests: pytest.Pytester, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Without patterns the plugin does not change the session."""
    monkeypatch.delenv(SELECT_PATTERN_ENV, raising=False)
    monkeypatch.delenv(SKIP_PATTERN_ENV, raising=False)

    run_with_plugin(cart_tests).assert_outcomes(passed=4)


def test_deselects_unselected_tests(
    cart_tests: pytest.Pytester, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Only tests matching the select pattern run."""
    selector = AnyOf(
        selectors=(
            MatchTest(ref=ref("test_removes_item")),
            MatchTest(ref=ref("TestCheckout", "test_pays[invoice]")),
        )
    )
    monkeypatch.setenv(SELECT_PATTERN_ENV, compile_selector(selector))
    monkeypatch.delenv(SKIP_PATTERN_ENV, raising=False)

    result = run_with_plugin(cart_tests)

    result.assert_outcomes(passed=2, deselected=2)


def test_skips_matching_tests(
    cart_tests: pytest.Pytester, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Tests matching the skip pattern are skipped as quarantined."""
    monkeypatch.delenv(SELECT_PATTERN_ENV, raising=False)
    monkeypatch.setenv(
        SKIP_PATTERN_ENV,
        compile_selector(AnyOf(selectors=(MatchTest(ref=ref("test_adds_item")),))),
    )

    result = run_with_plugin(cart_tests)

    result.assert_outcomes(passed=3, skipped=1)
    result.stdout.fnmatch_lines(["*quarantined*"])


def test_select_and_skip_combined(
    cart_tests: pytest.Pytester, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Skipping applies to the selected tests only."""
    monkeypatch.setenv(
        SELECT_PATTERN_ENV,
        compile_selector(Not(selector=MatchTest(ref=ref("test_adds_item")))),
    )
    monkeypatch.setenv(
        SKIP_PATTERN_ENV,
        compile_selector(MatchTest(ref=ref("TestCheckout", "test_pays"), prefix=True)),
    )

    result = run_with_plugin(cart_tests)

    result.assert_outcomes(passed=1, skipped=2, deselected=1)

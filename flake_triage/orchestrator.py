"""Retry orchestration across execution generations."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from flake_triage.config import QuarantineMode
from flake_triage.hosts.base import ExecutionHost, Invocation
from flake_triage.models.test_ref import (
    TEST_NAME_ENTRY_MAX_LENGTH,
    TEST_NAME_MAX_ENTRIES,
    TestRef,
)
from flake_triage.quarantine import ManifestCache
from flake_triage.selector import (
    AnyOf,
    MatchAll,
    MatchTest,
    Selector,
    any_test,
    intersect,
)
from flake_triage.tracker import AttemptTracker

log = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class GenerationPlan:
    """Invocations making up one execution generation."""

    generation: int
    invocations: Sequence[Invocation]
    retried_tests: int = 0


@dataclass(frozen=True, kw_only=True)
class RetryOrchestrator:
    """Drives a host through sequential retry generations.

    Generation 0 runs every file. Each following generation re-invokes only
    the files with failed tests, scoped to those tests, until no failed test
    has attempts left.
    """

    host: ExecutionHost
    tracker: AttemptTracker
    manifest: ManifestCache
    failure_retries: int
    quarantine_mode: QuarantineMode
    name_filter: Selector | None = None

    @property
    def max_attempts(self) -> int:
        return self.failure_retries + 1

    def build_skip_selector(self, filename: str) -> Selector | None:
        """Selector of the file's quarantined tests, in skip mode only.

        Manifest entries hold capped names. A last component at the length cap
        matches as a prefix, and an entry at the component cap also matches
        the tests nested below it.
        """
        if self.quarantine_mode != "skip_tests" or not self.manifest.available:
            return None

        entries = self.manifest.quarantined_tests(filename)
        if not entries:
            return None
        return AnyOf(
            selectors=tuple(
                MatchTest(
                    ref=TestRef(filename=entry.filename, title_path=tuple(entry.name)),
                    prefix=len(entry.name[-1]) >= TEST_NAME_ENTRY_MAX_LENGTH,
                    descendants=len(entry.name) >= TEST_NAME_MAX_ENTRIES,
                )
                for entry in entries
                if entry.name
            )
        )

    def plan_first_generation(self, files: Sequence[str]) -> GenerationPlan:
        selector = self.name_filter or MatchAll()
        return GenerationPlan(
            generation=0,
            invocations=[
                Invocation(
                    filename=filename,
                    selector=selector,
                    skip_selector=self.build_skip_selector(filename),
                    generation=0,
                )
                for filename in files
            ],
        )

    def retry_candidates(self) -> Sequence[TestRef]:
        """Tests whose latest attempt failed and that have attempts left."""
        candidates: list[TestRef] = []
        for ref in self.tracker.refs():
            attempts = self.tracker.get_attempts(ref)
            if (
                attempts
                and attempts[-1].outcome == "fail"
                and len(attempts) < self.max_attempts
            ):
                candidates.append(ref)
        return candidates

    def plan_next_generation(self, generation: int) -> GenerationPlan | None:
        """Plan the retry generation following `generation`.

        Returns:
            The plan, or None when there is nothing left to retry

        """
        if generation >= self.failure_retries:
            return None

        failed_by_file: dict[str, list[TestRef]] = {}
        for ref in self.retry_candidates():
            failed_by_file.setdefault(ref.filename, []).append(ref)
        if not failed_by_file:
            return None

        return GenerationPlan(
            generation=generation + 1,
            invocations=[
                Invocation(
                    filename=filename,
                    selector=intersect(self.name_filter, any_test(refs)),
                    skip_selector=self.build_skip_selector(filename),
                    generation=generation + 1,
                )
                for filename, refs in failed_by_file.items()
            ],
            retried_tests=sum(len(refs) for refs in failed_by_file.values()),
        )

    async def run(self, files: Sequence[str]) -> int:
        """Run every generation and return how many were executed."""
        plan: GenerationPlan | None = self.plan_first_generation(files)
        executed = 0

        while plan is not None:
            if plan.generation > 0:
                log.info(
                    "Retrying %d failed test(s) from %d file(s) -- %d retr%s remaining",
                    plan.retried_tests,
                    len(plan.invocations),
                    self.failure_retries - plan.generation,
                    "y" if self.failure_retries - plan.generation == 1 else "ies",
                )
            await self.execute_generation(plan)
            executed += 1
            plan = self.plan_next_generation(plan.generation)

        return executed

    async def execute_generation(self, plan: GenerationPlan) -> None:
        """Execute the invocations of a generation and wait for all of them."""
        log.info(
            "Executing generation %d (%d file(s))",
            plan.generation,
            len(plan.invocations),
        )
        tasks = [self._execute(invocation) for invocation in plan.invocations]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        for invocation, result in zip(plan.invocations, results, strict=True):
            if isinstance(result, Exception):
                log.error(
                    "Test execution failed: file=%s generation=%d: %s",
                    invocation.filename,
                    invocation.generation,
                    result,
                    exc_info=result,
                )
            elif isinstance(result, BaseException):
                raise result

        # Unreconciled hook failures must count as failed attempts when
        # planning the next generation.
        self.tracker.finalize()

    async def _execute(self, invocation: Invocation) -> None:
        self.tracker.begin_invocation(invocation.filename)
        await self.host.execute(invocation, self.tracker.handle)

"""Execution host running a command per test file and reading its JUnit report."""

import asyncio
import logging
import os
import tempfile
from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from flake_triage.hosts.base import (
    SELECT_PATTERN_ENV,
    SKIP_PATTERN_ENV,
    EventSink,
    ExecutionHost,
    Invocation,
)
from flake_triage.hosts.junit_command.config import JUnitCommandConfig
from flake_triage.hosts.junit_command.junit import parse_junit_report
from flake_triage.selector import compile_selector

log = logging.getLogger(__name__)

OUTPUT_TAIL_LINES = 20


def render_argument(template: str, values: Mapping[str, str]) -> str:
    """Substitute `{name}` placeholders without interpreting other braces."""
    for name, value in values.items():
        template = template.replace(f"{{{name}}}", value)
    return template


@dataclass(frozen=True, kw_only=True)
class JUnitCommandHost(ExecutionHost):
    """Host running a test command per file and parsing its JUnit XML report.

    Selection patterns are passed to the command through placeholders and the
    FLAKE_TRIAGE_SELECT_PATTERN and FLAKE_TRIAGE_SKIP_PATTERN environment
    variables. At most `max_parallel` commands run at once.
    """

    config: JUnitCommandConfig
    report_dir: Path
    semaphore: asyncio.Semaphore = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_config(
        cls, config: JUnitCommandConfig
    ) -> AsyncGenerator["JUnitCommandHost", None]:
        """Create host with a managed report directory."""
        with tempfile.TemporaryDirectory(prefix="flake-triage-") as report_dir:
            yield cls(
                config=config,
                report_dir=Path(report_dir),
                semaphore=asyncio.Semaphore(config.max_parallel),
            )

    async def discover(self) -> Mapping[str, Sequence[Sequence[str]]]:
        root = self.config.cwd.resolve()
        files = sorted(
            {
                path.relative_to(root).as_posix()
                for pattern in self.config.test_files
                for path in root.glob(pattern)
                if path.is_file()
            }
        )
        log.info("Discovered %d test file(s) in %s", len(files), root)
        return {filename: () for filename in files}

    async def execute(self, invocation: Invocation, emit: EventSink) -> None:
        """Run the command for one file and emit the events of its report.

        Raises:
            RuntimeError: If the command does not produce a report or times out

        """
        report = self.report_dir / (
            f"{invocation.filename.replace('/', '_')}.{invocation.generation}.xml"
        )
        report.unlink(missing_ok=True)

        select_pattern = compile_selector(
            invocation.selector, case_insensitive=self.config.case_insensitive
        )
        skip_pattern = (
            compile_selector(
                invocation.skip_selector,
                case_insensitive=self.config.case_insensitive,
            )
            if invocation.skip_selector is not None
            else ""
        )
        values = {
            "file": invocation.filename,
            "report": str(report),
            "select_pattern": select_pattern,
            "skip_pattern": skip_pattern,
        }
        argv = [render_argument(arg, values) for arg in self.config.command]
        env = {
            **os.environ,
            **self.config.env,
            SELECT_PATTERN_ENV: select_pattern,
            SKIP_PATTERN_ENV: skip_pattern,
        }

        async with self.semaphore:
            log.info(
                "Running tests: file=%s generation=%d",
                invocation.filename,
                invocation.generation,
            )
            started_at = datetime.now(timezone.utc)
            returncode, output = await self._run(argv, env)

        if not report.is_file():
            tail = "\n".join(output.splitlines()[-OUTPUT_TAIL_LINES:])
            raise RuntimeError(
                f"Command for {invocation.filename} exited with {returncode} "
                f"without writing a JUnit report:\n{tail}"
            )

        log.debug("Command for %s exited with %s", invocation.filename, returncode)
        for event in parse_junit_report(
            report.read_text(), filename=invocation.filename, started_at=started_at
        ):
            emit(event)

    async def _run(
        self, argv: Sequence[str], env: Mapping[str, str]
    ) -> tuple[int | None, str]:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=self.config.cwd,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(), timeout=self.config.timeout
            )
        except TimeoutError:
            process.kill()
            await process.wait()
            raise RuntimeError(
                f"Command {argv[0]} timed out after {self.config.timeout} seconds"
            ) from None

        return process.returncode, stdout.decode(errors="replace")

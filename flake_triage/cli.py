"""CLI entry point for flake-triage."""

import argparse
import asyncio
import json
import logging
import os
import re
import sys
from collections.abc import Mapping, Sequence
from contextlib import AsyncExitStack
from datetime import datetime, timezone
from pathlib import Path

from flake_triage.aggregator import (
    TestOutcome,
    build_run_request,
    evaluate,
    summarize,
)
from flake_triage.backend import BackendClient
from flake_triage.classifier import failure_patterns_predicate, is_blocking
from flake_triage.config import load_config
from flake_triage.errors import ConfigError, UploadError
from flake_triage.git import GitInfo, detect_git
from flake_triage.hosts.loading import HostNotFoundError, load_host_manifest
from flake_triage.orchestrator import RetryOrchestrator
from flake_triage.quarantine import ManifestCache
from flake_triage.report import format_output, log_results_summary
from flake_triage.selector import MatchPattern, Selector, compile_selector
from flake_triage.tracker import AttemptTracker

log = logging.getLogger("flake_triage")


async def upload_results(
    client: BackendClient,
    outcomes: Sequence[TestOutcome],
    *,
    start_time: datetime,
    end_time: datetime,
    git_info: GitInfo,
) -> str | None:
    """Upload results, returning the run URL or None if the upload failed."""
    request = build_run_request(
        outcomes,
        start_time=start_time,
        end_time=end_time,
        branch=git_info.branch,
        commit=git_info.commit,
    )
    try:
        run_summary = await client.create_run(request)
    except UploadError as e:
        log.warning("%s. Results were not uploaded.", e)
        return None

    run_url = client.run_url(run_summary)
    log.info("Uploaded results: %s", run_url)
    return run_url


def build_name_filter(pattern: str | None) -> Selector | None:
    """Build the user name filter, rejecting patterns hosts cannot compile.

    Raises:
        ConfigError: If the pattern is not a valid regular expression once
            combined with other selectors

    """
    if not pattern:
        return None
    name_filter = MatchPattern(pattern=pattern)
    try:
        re.compile(compile_selector(name_filter))
    except re.error as e:
        raise ConfigError(f"Invalid test name pattern {pattern!r}: {e}") from e
    return name_filter


async def run(
    host_key: str,
    host_config_json: str,
    project_root: Path,
    name_filter: str | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    """Run the test suite with retries and quarantine, returning the exit code."""
    env = os.environ if env is None else env
    name_selector = build_name_filter(name_filter)
    config = load_config(project_root, env)

    log.info("Loading host: %s", host_key)
    manifest = load_host_manifest(host_key)
    try:
        host_config = manifest.config_cls(**json.loads(host_config_json))
    except (ValueError, TypeError) as e:
        raise ConfigError(f"Invalid host configuration: {e}") from e

    tracker = AttemptTracker(
        independence=failure_patterns_predicate(config.independent_failure_patterns)
    )
    start_time = datetime.now(timezone.utc)
    run_url: str | None = None

    async with AsyncExitStack() as stack:
        client = (
            await stack.enter_async_context(BackendClient.from_config(config))
            if config.enabled
            else None
        )
        quarantine = ManifestCache(
            client=client, quarantine_mode=config.quarantine_mode
        )
        await quarantine.fetch()

        host = await stack.enter_async_context(manifest.host_factory(host_config))
        discovered = await host.discover()
        for filename, title_paths in discovered.items():
            tracker.discover(filename, title_paths)

        orchestrator = RetryOrchestrator(
            host=host,
            tracker=tracker,
            manifest=quarantine,
            failure_retries=config.failure_retries if config.enabled else 0,
            quarantine_mode=config.quarantine_mode,
            name_filter=name_selector,
        )
        log.info("Running tests for %d file(s)...", len(discovered))
        await orchestrator.run(list(discovered))
        end_time = datetime.now(timezone.utc)

        outcomes = evaluate(tracker, quarantine)
        summary = summarize((outcome.ref, outcome.verdict) for outcome in outcomes)

        if client is not None and config.upload_results:
            git_info = await detect_git(
                project_root, env=env, auto_detect=config.git_auto_detect
            )
            run_url = await upload_results(
                client,
                outcomes,
                start_time=start_time,
                end_time=end_time,
                git_info=git_info,
            )

    log_results_summary(log, summary, outcomes, run_url)

    output = format_output(summary, outcomes, run_url)
    print(json.dumps(output, indent=2))

    return 1 if any(is_blocking(outcome.verdict) for outcome in outcomes) else 0


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run tests with retries, flaky test detection and quarantine"
    )
    parser.add_argument(
        "--host",
        required=True,
        help="Execution host key (junit-command)",
    )
    parser.add_argument(
        "--host-config",
        default="{}",
        help="JSON configuration for the host",
    )
    parser.add_argument(
        "--project-root",
        type=Path,
        default=Path.cwd(),
        help="Directory to search for the flake-triage configuration from",
    )
    parser.add_argument(
        "--test-name-pattern",
        default=None,
        help="Only run tests whose full title matches this regular expression",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        exit_code = asyncio.run(
            run(
                host_key=args.host,
                host_config_json=args.host_config,
                project_root=args.project_root,
                name_filter=args.test_name_pattern,
            )
        )
    except (ConfigError, HostNotFoundError) as e:
        log.error("%s", e)
        sys.exit(2)
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()

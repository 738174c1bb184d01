"""Detect the git branch and commit of a test run."""

import asyncio
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

log = logging.getLogger(__name__)

ENV_BRANCH = "FLAKE_TRIAGE_BRANCH"
ENV_COMMIT = "FLAKE_TRIAGE_COMMIT"


@dataclass(frozen=True, kw_only=True)
class GitInfo:
    """Branch and commit attached to an uploaded run."""

    branch: str | None = None
    commit: str | None = None


async def run_git(cwd: Path, *args: str) -> str:
    """Run a git command and return its stripped stdout."""
    process = await asyncio.create_subprocess_exec(
        "git",
        *args,
        cwd=cwd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()

    if process.returncode != 0:
        raise RuntimeError(f"git {args[0]} failed: {stderr.decode().strip()}")

    return stdout.decode().strip()


async def get_current_commit(cwd: Path) -> str:
    return await run_git(cwd, "rev-parse", "HEAD")


async def get_current_branch(cwd: Path) -> str | None:
    """Get the current branch name.

    With a detached HEAD, as in most CI checkouts, falls back to the first
    local or remote branch pointing at the current commit.
    """
    branch = await run_git(cwd, "rev-parse", "--abbrev-ref", "HEAD")
    if branch != "HEAD":
        return branch

    commit = await get_current_commit(cwd)
    refs = await run_git(cwd, "show-ref")
    heads: list[str] = []
    remotes: list[str] = []
    for line in refs.splitlines():
        sha, _, ref = line.partition(" ")
        if sha != commit:
            continue
        if ref.startswith("refs/heads/"):
            heads.append(ref.removeprefix("refs/heads/"))
        elif ref.startswith("refs/remotes/") and not ref.endswith("/HEAD"):
            # refs/remotes/<remote>/<branch>
            remotes.append(ref.removeprefix("refs/remotes/").partition("/")[2])

    candidates = heads or remotes
    return candidates[0] if candidates else None


async def detect_git(
    cwd: Path,
    *,
    env: Mapping[str, str] | None = None,
    auto_detect: bool = True,
) -> GitInfo:
    """Resolve the branch and commit of the run.

    Environment overrides take precedence over auto-detection. Detection
    failures are logged and leave the value unset.
    """
    env = os.environ if env is None else env
    branch = env.get(ENV_BRANCH) or None
    commit = env.get(ENV_COMMIT) or None

    if auto_detect and (branch is None or commit is None):
        try:
            if commit is None:
                commit = await get_current_commit(cwd)
            if branch is None:
                branch = await get_current_branch(cwd)
        except (RuntimeError, OSError) as e:
            log.warning(
                "Failed to auto-detect git branch and commit: %s. Set %s and %s, "
                "or disable git_auto_detect.",
                e,
                ENV_BRANCH,
                ENV_COMMIT,
            )

    return GitInfo(branch=branch, commit=commit)

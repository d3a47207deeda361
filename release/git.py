# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors
"""
Thin git wrapper for the distribution index branch.

Only the handful of commands needed to commit index files on a separate
branch and push them are exposed. Each command runs through ``git`` on the
PATH; failures raise SubprocessError.
"""

from __future__ import annotations

import logging
import subprocess
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence

from ota.errors import PublishError, SubprocessError

logger = logging.getLogger(__name__)


class GitRepo:
    """
    Git working tree.

    Args:
        path: Root of the working tree; defaults to the current directory.
        binary: git executable.
    """

    def __init__(self, path: Optional[Path] = None, binary: str = "git"):
        self.path = Path(path) if path is not None else Path.cwd()
        self.binary = binary

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        argv: List[str] = [self.binary, *args]
        logger.debug("git %s", " ".join(args))
        try:
            proc = subprocess.run(argv, cwd=self.path, capture_output=True, text=True)
        except OSError as exc:
            raise SubprocessError(argv, 127) from exc
        if check and proc.returncode != 0:
            logger.debug("git stderr: %s", proc.stderr.strip())
            raise SubprocessError(argv, proc.returncode)
        return proc

    def _out(self, *args: str) -> str:
        return self._run(*args).stdout.strip()

    def short_revision(self) -> str:
        return self._out("rev-parse", "--short", "HEAD")

    def is_dirty(self) -> bool:
        """True when tracked files have uncommitted changes."""
        return bool(self._out("status", "--porcelain", "--untracked-files=no"))

    def current_branch(self) -> str:
        return self._out("rev-parse", "--abbrev-ref", "HEAD")

    def last_author(self) -> str:
        """Author of HEAD as ``Name <email>``."""
        return self._out("log", "-1", "--format=%an <%ae>")

    def checkout(self, ref: str) -> None:
        self._run("checkout", ref)

    def add(self, paths: Sequence[Path]) -> None:
        self._run("add", "--", *[str(p) for p in paths])

    def has_staged_changes(self) -> bool:
        return self._run("diff", "--cached", "--quiet", check=False).returncode != 0

    def commit(self, message: str, author: str = "") -> None:
        args = ["commit", "--message", message]
        if author:
            args.append(f"--author={author}")
        self._run(*args)

    def pull_rebase(self, remote: str, branch: str) -> bool:
        """Rebase the local branch onto the remote one; returns False on failure."""
        return self._run("pull", "--rebase", remote, branch, check=False).returncode == 0

    def rebase_abort(self) -> None:
        self._run("rebase", "--abort", check=False)

    def push(self, remote: str, branch: str) -> bool:
        """Push ``branch``; returns False when the remote rejects it."""
        return self._run("push", remote, branch, check=False).returncode == 0


@contextmanager
def checked_out_branch(git: GitRepo, branch: str) -> Iterator[str]:
    """
    Check out ``branch`` for the duration of the block.

    The previously checked out branch is restored on every exit path,
    including exceptions raised inside the block.

    Yields:
        The name of the branch that was checked out before.
    """
    original = git.current_branch()
    git.checkout(branch)
    try:
        yield original
    finally:
        git.checkout(original)
        logger.debug("Restored branch %s", original)


def push_with_retry(
    git: GitRepo,
    remote: str,
    branch: str,
    attempts: int = 5,
    delay: float = 10.0,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Push ``branch``, rebasing onto the remote between attempts.

    A failed rebase is aborted so the local commit is left as it was.

    Args:
        git: Repository to push from.
        remote: Remote name.
        branch: Branch to push.
        attempts: Maximum number of push attempts.
        delay: Seconds to wait between attempts.
        sleep: Sleep function (injectable for tests).

    Returns:
        The attempt number that succeeded.

    Raises:
        PublishError: When every attempt failed.
    """
    for attempt in range(1, attempts + 1):
        if git.pull_rebase(remote, branch):
            if git.push(remote, branch):
                logger.info("Pushed %s to %s (attempt %d/%d)", branch, remote, attempt, attempts)
                return attempt
            logger.warning("Push of %s rejected (attempt %d/%d)", branch, attempt, attempts)
        else:
            logger.warning("Rebase onto %s/%s failed (attempt %d/%d)", remote, branch, attempt, attempts)
            git.rebase_abort()
        if attempt < attempts:
            sleep(delay)
    raise PublishError(f"Could not push {branch} to {remote} after {attempts} attempts")

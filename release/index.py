# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors
"""
Distribution index maintenance.

For every built flavor a Custota signature (``.csig``) and an update-info
JSON are generated. The JSON files live on a dedicated branch
(``{flavor}/{device}.json``, below ``test/`` for the test channel) that
update clients poll. An entry is only overwritten when it points to a
different release version, so new commits of this repository or new root
framework versions do not push updates to users on the same release.
"""

from __future__ import annotations

import logging
import re
import shutil
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ota.errors import PublishError
from ota.tools import CustotaTool, Passphrases, Runner, run_tool

from .context import Flavor, RunContext
from .git import GitRepo, checked_out_branch, push_with_retry
from .github import GitHubClient
from .publisher import upload_sidecar

logger = logging.getLogger(__name__)

REMOTE = "origin"
TEST_CHANNEL_DIR = "test"

_RELEASE_TAG_RE = re.compile(r"/releases/download/([^/\"]+)/")


def index_path(flavor: Flavor, device_id: str, test_channel: bool = False) -> Path:
    """Path of a device entry relative to the index branch root."""
    path = Path(flavor.value) / f"{device_id}.json"
    return Path(TEST_CHANNEL_DIR) / path if test_channel else path


def generated_index_path(context: RunContext, flavor: Flavor) -> Path:
    return context.work_dir / flavor.value / f"{context.config.device_id}.json"


def generate_sidecars(
    context: RunContext,
    client: GitHubClient,
    runner: Runner = run_tool,
    passphrases: Optional[Passphrases] = None,
) -> Dict[Flavor, Path]:
    """
    Generate the csig and update-info JSON of every pending artifact.

    Args:
        context: Context after patching (keys and custota-tool available).
        client: Release API client providing the public download locations.
        runner: Executes a command; raises SubprocessError on failure.
        passphrases: Passphrase environment variable names.

    Returns:
        Generated update-info JSON per flavor.
    """
    if context.keys is None:
        raise PublishError("signing keys are not available for csig generation")
    custota = CustotaTool(context.inputs["custota"])
    passphrases = passphrases or Passphrases.from_environ()

    generated = {}
    for flavor, target in context.pending.items():
        runner(
            custota.gen_csig(
                target.local_path, target.csig_path, context.keys.key_ota, context.keys.cert_ota, passphrases
            )
        )
        info = generated_index_path(context, flavor)
        info.parent.mkdir(parents=True, exist_ok=True)
        location = client.download_url(context.release_version, target.remote_asset_name)
        runner(custota.gen_update_info(info, location))
        generated[flavor] = info
    return generated


def stored_release_version(path: Path) -> Optional[str]:
    """Release version an index entry points to, or None if missing or unreadable."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    m = _RELEASE_TAG_RE.search(text)
    return m.group(1) if m else None


def merge_entry(generated: Path, target: Path, version: str, force: bool = False) -> bool:
    """
    Copy a generated entry over the published one when it targets another release.

    Args:
        generated: Freshly generated update-info JSON.
        target: Entry in the index branch checkout.
        version: Release version of this run.
        force: Overwrite even when the stored version is the same.

    Returns:
        True if ``target`` was written.
    """
    stored = stored_release_version(target)
    if stored == version and not force:
        logger.info("Skipping update of %s, already on %s", target, version)
        return False
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(generated, target)
    logger.info("Updated %s (%s -> %s)", target, stored or "none", version)
    return True


def update_index(
    context: RunContext,
    git: GitRepo,
    client: GitHubClient,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Publish the sidecars and update the index branch.

    Sidecars are uploaded to the release, then the index branch is checked
    out, entries are merged and committed with the author of the original
    HEAD, and the branch is pushed with rebase retries. The original branch
    is checked out again on every exit path.

    Args:
        context: Context after sidecar generation.
        git: Repository holding the index branch.
        client: Release API client.
        sleep: Sleep function between push attempts.

    Returns:
        True if a commit was pushed, False if the index was already current.

    Raises:
        PublishError: If pushing fails after all attempts.
    """
    cfg = context.config
    upload_sidecar(context, client)

    author = git.last_author()
    with checked_out_branch(git, cfg.index_branch):
        written: List[Path] = []
        for flavor in context.pending:
            dest = git.path / index_path(flavor, cfg.device_id, cfg.ota_test_channel)
            if merge_entry(generated_index_path(context, flavor), dest, context.release_version, cfg.force_ota_server_upload):
                written.append(dest)
        if written:
            git.add(written)
        if not git.has_staged_changes():
            logger.info("Index for %s already up to date", cfg.device_id)
            return False
        git.commit(f"Update device {cfg.device_id} basing on commit {context.revision}", author=author)
        push_with_retry(git, REMOTE, cfg.index_branch, cfg.push_attempts, cfg.push_retry_delay, sleep=sleep)
    return True

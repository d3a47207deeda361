# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors
"""
Release publication.

Makes sure a release exists for the resolved version, removes outdated
assets of the built flavors and uploads the new artifacts.

Release creation follows a small state machine so that two runs racing on
the same tag converge on one release::

    NO_RELEASE -> CREATING -> CREATED
                     |
                     v
              CREATE_CONFLICT -> RESOLVE_BY_QUERY -> CREATED
                                        |
                                        v
                                   PublishError
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Set

from ota.errors import PublishError

from .context import RemoteRelease, RunContext
from .github import GitHubClient, ReleaseConflict
from .planner import reconcile

logger = logging.getLogger(__name__)

ZIP_CONTENT_TYPE = "application/zip"
CSIG_CONTENT_TYPE = "application/octet-stream"


def release_body(tag: str) -> str:
    return f"Rooted OTA images based on upstream release {tag}."


def ensure_release(client: GitHubClient, tag: str) -> RemoteRelease:
    """
    Return the release of ``tag``, creating it when needed.

    Raises:
        PublishError: If creation conflicts but the release still cannot be found.
    """
    release = client.find_release(tag)
    if release is not None:
        return release
    try:
        return client.create_release(tag, name=tag, body=release_body(tag))
    except ReleaseConflict:
        logger.info("Release %s was created concurrently, looking it up again", tag)
    release = client.find_release(tag)
    if release is None:
        raise PublishError(f"Release {tag} reported as existing but cannot be found")
    return release


def _upload(
    client: GitHubClient,
    release: RemoteRelease,
    path: Path,
    name: str,
    content_type: str,
    replace: bool,
) -> None:
    existing = release.asset_named(name)
    if existing is not None:
        if not replace:
            logger.info("Asset %s already exists, skipping upload", name)
            return
        client.delete_asset(existing)
    client.upload_asset(release.id, path, name, content_type)


def _delete_stale(client: GitHubClient, stale: Iterable, keep: Set[str]) -> None:
    for asset in stale:
        if asset.name in keep:
            continue
        client.delete_asset(asset)


def publish(context: RunContext, client: GitHubClient) -> RunContext:
    """
    Upload the artifacts of all pending flavors to the release of the resolved version.

    Stale assets are deleted first; the asset about to be uploaded is never
    deleted as stale. An asset that already exists under the exact name is
    kept unless a forced build replaces it.

    Args:
        context: Context after patching.
        client: Release API client.

    Returns:
        RunContext: Context carrying the release id.

    Raises:
        PublishError: If the release cannot be created or found.
        NetworkError: If an upload fails (no retry).
    """
    cfg = context.config
    tag = context.release_version
    release = ensure_release(client, tag)

    # Another run may have attached assets since planning
    force = cfg.force_build or cfg.ota_test_channel
    _, stale = reconcile(
        release, context.pending, cfg.device_id, tag, force=force, test_channel=cfg.ota_test_channel
    )
    context = context.with_stale_assets(stale)
    keep = {t.remote_asset_name for t in context.pending.values()}
    keep |= {t.csig_name for t in context.pending.values()}
    _delete_stale(client, context.stale_assets, keep)

    for target in context.pending.values():
        _upload(client, release, target.local_path, target.remote_asset_name, ZIP_CONTENT_TYPE, cfg.force_build)

    return context.with_release(release.id)


def upload_sidecar(context: RunContext, client: GitHubClient) -> int:
    """
    Upload the ``.csig`` sidecar of each pending artifact, with the same rules as the artifacts.

    Returns:
        Number of sidecars found locally.
    """
    release = ensure_release(client, context.release_version)
    uploaded = 0
    for target in context.pending.values():
        if not target.csig_path.is_file():
            logger.info("CSIG file %s not found, skipping upload", target.csig_path)
            continue
        _upload(client, release, target.csig_path, target.csig_name, CSIG_CONTENT_TYPE, context.config.force_build)
        uploaded += 1
    return uploaded

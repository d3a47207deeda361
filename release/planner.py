# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors
"""
Artifact planning.

Decides which flavors still need an artifact for the resolved release by
comparing the deterministic artifact names with the assets already attached
to the remote release. Only an exact name match is trusted; any other asset
sharing a flavor's prefix is stale and gets replaced.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Set, Tuple

from ota.resolver import ResolvedVersions

from .config import PipelineConfig
from .context import (
    ARTIFACT_EXT,
    CSIG_EXT,
    FLAVOR_TOOL,
    ArtifactDescriptor,
    Flavor,
    RemoteAsset,
    RemoteRelease,
    RunContext,
    artifact_filename,
    asset_prefix,
    is_test_channel_asset,
)
from .github import GitHubClient

logger = logging.getLogger(__name__)


def build_targets(
    config: PipelineConfig,
    versions: ResolvedVersions,
    revision: str,
    dirty: bool,
    work_dir: Path,
) -> Dict[Flavor, ArtifactDescriptor]:
    """Deterministic artifact descriptor for every enabled flavor."""
    targets = {}
    for flavor in config.enabled_flavors:
        tool = FLAVOR_TOOL[flavor]
        filename = artifact_filename(
            config.device_id,
            versions.release_version,
            flavor,
            versions.tool_versions.get(tool) if tool else None,
            revision,
            dirty,
            config.ota_test_channel,
        )
        targets[flavor] = ArtifactDescriptor(
            flavor=flavor,
            filename=filename,
            local_path=work_dir / filename,
            remote_asset_name=filename,
        )
    return targets


def reconcile(
    release: RemoteRelease,
    targets: Mapping[Flavor, ArtifactDescriptor],
    device_id: str,
    release_version: str,
    force: bool = False,
    test_channel: bool = False,
) -> Tuple[Set[Flavor], Tuple[RemoteAsset, ...]]:
    """
    Compare the targets with the assets of an existing release.

    Args:
        release: Remote release of the resolved tag.
        targets: Expected artifacts per flavor.
        device_id: Device codename.
        release_version: Resolved release version.
        force: Rebuild even when the exact artifact is already attached.
        test_channel: Whether the run targets the test channel. Assets of the
            other channel are never stale.

    Returns:
        (satisfied, stale): flavors whose exact artifact already exists, and
        differently named assets of the targeted flavors to delete.
    """
    satisfied: Set[Flavor] = set()
    stale: List[RemoteAsset] = []
    for flavor, target in targets.items():
        prefix = asset_prefix(device_id, release_version, flavor)
        for asset in release.assets:
            if not asset.name.startswith(prefix):
                continue
            if is_test_channel_asset(asset.name) != test_channel:
                continue
            if asset.name == target.remote_asset_name:
                if not force:
                    satisfied.add(flavor)
            elif asset.name == target.csig_name:
                continue
            elif asset.name.endswith(ARTIFACT_EXT) or asset.name.endswith(CSIG_EXT):
                stale.append(asset)
    return satisfied, tuple(stale)


def plan(context: RunContext, client: Optional[GitHubClient]) -> RunContext:
    """
    Narrow the pending set of ``context`` to the flavors that need work.

    Args:
        context: Context holding the full set of targets.
        client: Release API client, or None when no credentials are configured.

    Returns:
        RunContext: Narrowed context with stale assets recorded. An empty
        pending set means there is nothing to do.
    """
    if client is None:
        logger.info("No release credentials configured, building all flavors")
        return context

    tag = context.release_version
    release = client.find_release(tag)
    if release is None:
        logger.info("No release %s yet, building all flavors", tag)
        return context

    cfg = context.config
    satisfied, stale = reconcile(
        release,
        context.pending,
        cfg.device_id,
        tag,
        force=cfg.force_build or cfg.ota_test_channel,
        test_channel=cfg.ota_test_channel,
    )
    for flavor in satisfied:
        logger.info(
            "Asset %s already released, skipping %s",
            context.pending[flavor].remote_asset_name,
            flavor.value,
        )
    for asset in stale:
        logger.info("Asset %s is outdated and will be replaced", asset.name)

    narrowed = context.narrow(satisfied).with_stale_assets(stale).with_release(release.id)
    if narrowed.is_empty:
        logger.info("All artifacts of %s are already released, nothing to do", tag)
    return narrowed

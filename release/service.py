# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors
"""
Pipeline orchestration.

Runs the stages in order: resolve, plan, fetch, patch, publish, index.
An empty pending set after planning ends the run early as a successful
no-op. The scratch directory is removed afterwards unless ``skip_cleanup``
is set; a failing cleanup is logged and never masks the run's outcome.
"""

from __future__ import annotations

import base64
import logging
import shutil
import sys
import time
from pathlib import Path
from typing import Callable, Dict, Optional

import requests

from ota.errors import ConfigError
from ota.fetcher import Fetcher
from ota.http import new_session
from ota.resolver import resolve, resolve_tool_version
from ota.tools import Avbroot, Runner, run_tool

from .config import PipelineConfig
from .context import Flavor, RunContext
from .git import GitRepo
from .github import GitHubClient
from .index import generate_sidecars, update_index
from .patcher import patch
from .planner import build_targets, plan
from .publisher import publish as publish_release

logger = logging.getLogger(__name__)

AVB_PKMD = "avb_pkmd.bin"


def _cleanup(work_dir: Path) -> None:
    logger.info("Cleaning up %s", work_dir)
    try:
        shutil.rmtree(work_dir)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Cleanup of %s failed: %s", work_dir, exc)


def _fetch_inputs(context: RunContext, fetcher: Fetcher, with_custota: bool) -> RunContext:
    versions = context.versions
    tools = versions.tool_versions
    flavors = set(context.pending)

    inputs = {
        "firmware": fetcher.fetch_firmware(versions.firmware),
        "avbroot": fetcher.fetch_tool("avbroot", tools["avbroot"]),
    }
    if with_custota:
        inputs["custota"] = fetcher.fetch_tool("custota", tools["custota"])
    if flavors & {Flavor.MAGISK, Flavor.KERNELSU}:
        inputs["magisk"] = fetcher.fetch_magisk(tools["magisk"])
    if Flavor.KERNELSU in flavors:
        inputs["ksud"], inputs["magiskboot"] = fetcher.fetch_ksud(tools["kernelsu"], inputs["magisk"])
    return context.with_inputs(**inputs)


def run_pipeline(
    config: PipelineConfig,
    publish: bool = True,
    *,
    git: Optional[GitRepo] = None,
    client: Optional[GitHubClient] = None,
    fetcher: Optional[Fetcher] = None,
    session: Optional[requests.Session] = None,
    runner: Runner = run_tool,
    sleep: Callable[[float], None] = time.sleep,
) -> RunContext:
    """
    Run the release pipeline for one device.

    Args:
        config: Pipeline configuration; validated here.
        publish: Publish release assets and the index. When False only the
            local artifacts are built.
        git: Repository of this project (revision, index branch).
        client: Release API client; created from the config when omitted.
        fetcher: Dependency fetcher; created from the config when omitted.
        session: Shared requests.Session.
        runner: Executes external tools.
        sleep: Sleep function between index push attempts.

    Returns:
        RunContext: Final context. An empty pending set means nothing had to be done.

    Raises:
        OTAError: Any stage failure.
    """
    config.validate(publish=publish)
    sources = config.sources()
    sess = session or new_session(sources)
    git = git or GitRepo()
    work_dir = Path(config.work_dir)

    try:
        versions = resolve(
            config.device_id,
            config.ota_version,
            config.requested_tool_versions,
            cfg=sources,
            session=sess,
        )
        revision, dirty = git.short_revision(), git.is_dirty()
        context = RunContext(
            config=config,
            versions=versions,
            revision=revision,
            dirty=dirty,
            pending=build_targets(config, versions, revision, dirty, work_dir),
        )
        logger.info(
            "Planning %s %s at %s%s: %s",
            config.device_id,
            versions.release_version,
            revision,
            "-dirty" if dirty else "",
            ", ".join(t.filename for t in context.pending.values()),
        )

        if client is None and config.can_query_releases:
            client = GitHubClient(config.github_repo, config.github_token, sources, sess)
        context = plan(context, client)
        if context.is_empty:
            return context

        fetcher = fetcher or Fetcher(
            work_dir, sources, sess, token=config.github_token, progress=sys.stderr.isatty()
        )
        with_index = publish and not config.skip_ota_server_upload
        context = _fetch_inputs(context, fetcher, with_custota=with_index)
        context = patch(context, runner)

        if not publish:
            logger.info("Built %d artifact(s), not publishing", len(context.pending))
            return context

        context = publish_release(context, client)
        if config.skip_ota_server_upload:
            logger.info("Skipping OTA server upload")
            return context
        generate_sidecars(context, client, runner)
        update_index(context, git, client, sleep=sleep)
        return context
    finally:
        if config.skip_cleanup:
            logger.info("Keeping %s", work_dir)
        else:
            _cleanup(work_dir)


def generate_keys(
    config: PipelineConfig,
    runner: Runner = run_tool,
    fetcher: Optional[Fetcher] = None,
    session: Optional[requests.Session] = None,
) -> Dict[str, str]:
    """
    Create the AVB and OTA signing keys, the AVB public key metadata and the OTA certificate.

    Existing key files are never overwritten.

    Returns:
        Base64 form of each created file keyed by its setting name, ready to
        be stored as CI secrets.

    Raises:
        ConfigError: If a key file already exists.
    """
    key_avb, key_ota, cert_ota = Path(config.key_avb), Path(config.key_ota), Path(config.cert_ota)
    existing = [str(p) for p in (key_avb, key_ota, cert_ota) if p.exists()]
    if existing:
        raise ConfigError([f"{p} already exists, refusing to overwrite" for p in existing])

    sources = config.sources()
    sess = session or new_session(sources)
    version = resolve_tool_version("avbroot", config.avbroot_version, cfg=sources, session=sess)
    fetcher = fetcher or Fetcher(Path(config.work_dir), sources, sess, progress=sys.stderr.isatty())
    avbroot = Avbroot(fetcher.fetch_tool("avbroot", version))

    runner(avbroot.generate_key(key_avb))
    runner(avbroot.generate_key(key_ota))
    # Public part of the AVB key in the format the bootloader expects
    runner(avbroot.extract_avb(key_avb, Path(AVB_PKMD)))
    runner(avbroot.generate_cert(key_ota, cert_ota))
    logger.info("Created %s, %s, %s and %s", key_avb, key_ota, cert_ota, AVB_PKMD)

    return {
        "KEY_AVB_BASE64": base64.b64encode(key_avb.read_bytes()).decode("ascii"),
        "KEY_OTA_BASE64": base64.b64encode(key_ota.read_bytes()).decode("ascii"),
        "CERT_OTA_BASE64": base64.b64encode(cert_ota.read_bytes()).decode("ascii"),
    }

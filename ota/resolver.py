# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors
"""
Upstream version resolution.

Determines the latest OTA image published for a device and turns "latest"
tool version sentinels into concrete release tags.

Functions:
- resolve_tool_version: resolve a tool version sentinel via the GitHub API.
- extract_version: read the release version token from an OTA filename.
- find_firmware: scan the publisher page for the device's OTA image.
- resolve: run all of the above for one pipeline invocation.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

import requests

from .config import DEFAULT_SOURCES, SourceConfig
from .errors import NotFoundError, ParseError, ResolutionError
from .http import new_session, request

logger = logging.getLogger(__name__)

LATEST = "latest"

# Release versions become git tags and file name components
_VERSION_TOKEN = re.compile(r"[A-Za-z0-9][A-Za-z0-9._-]*")


@dataclass(frozen=True)
class FirmwareInfo:
    """OTA image located on the publisher page.

    Attributes:
        filename: OTA file name as published.
        url: Download URL of the image.
        release_version: Version token embedded in the file name.
    """

    filename: str
    url: str
    release_version: str


@dataclass(frozen=True)
class ResolvedVersions:
    """Result of version resolution for one run.

    Attributes:
        release_version: Upstream release version, used as release tag.
        firmware: Located OTA image.
        tool_versions: Concrete version per tool name (no "latest" left).
    """

    release_version: str
    firmware: FirmwareInfo
    tool_versions: Dict[str, str] = field(default_factory=dict)


def resolve_tool_version(
    name: str,
    requested: str,
    *,
    cfg: SourceConfig = DEFAULT_SOURCES,
    session: Optional[requests.Session] = None,
) -> str:
    """
    Resolve the "latest" sentinel to the tag of the newest release of a tool.

    Args:
        name: Tool key in ``cfg.tools`` (avbroot, custota, magisk, kernelsu).
        requested: Pinned version or "latest".
        cfg: Source configuration.
        session: Optional requests.Session for connection reuse.

    Returns:
        The pinned version unchanged, or the resolved release tag.

    Raises:
        ResolutionError: If the tool is unknown or has no published release.
        NetworkError: On transport failures.
    """
    if requested != LATEST:
        return requested
    source = cfg.tools.get(name)
    if source is None:
        raise ResolutionError(name, "unknown tool")

    sess = session or new_session(cfg)
    url = f"{cfg.api_url}/repos/{source.repo}/releases/latest"
    r = request(
        sess,
        "GET",
        url,
        timeout=cfg.request_timeout,
        ok_statuses=(404,),
        headers={"Accept": "application/vnd.github+json"},
    )
    if r.status_code == 404:
        raise ResolutionError(name, f"no release published in {source.repo}")
    tag = (r.json() or {}).get("tag_name")
    if not tag:
        raise ResolutionError(name, "release without tag_name")
    logger.info("Resolved %s latest -> %s", name, tag)
    return tag


def _compile_pattern(device_id: str, cfg: SourceConfig) -> re.Pattern[str]:
    return re.compile(cfg.filename_pattern.replace("{device}", re.escape(device_id)))


def extract_version(filename: str, device_id: str, cfg: SourceConfig = DEFAULT_SOURCES) -> str:
    """
    Extract the release version token from an OTA filename.

    Args:
        filename: Matched OTA filename, e.g. "shiba_beta-ota-bp31.250502.008-4e0bc4e8.zip".
        device_id: Device codename used in the pattern.
        cfg: Source configuration holding the filename pattern.

    Returns:
        The version token (e.g. "bp31.250502.008").

    Raises:
        ParseError: If the token is absent or not usable as a release tag.
    """
    m = _compile_pattern(device_id, cfg).fullmatch(filename)
    if m is None:
        raise ParseError(filename, "does not match the device filename pattern")
    try:
        version = m.group("version")
    except IndexError as exc:
        raise ParseError(filename, "pattern has no 'version' group") from exc
    if not version or not _VERSION_TOKEN.fullmatch(version):
        raise ParseError(filename, f"malformed version token {version!r}")
    return version


def find_firmware(
    device_id: str,
    version: str = LATEST,
    *,
    cfg: SourceConfig = DEFAULT_SOURCES,
    session: Optional[requests.Session] = None,
) -> FirmwareInfo:
    """
    Locate the OTA image of a device on the publisher page.

    Args:
        device_id: Device codename (e.g. "shiba").
        version: "latest" for the first listed build, or a pinned release version.
        cfg: Source configuration.
        session: Optional requests.Session for connection reuse.

    Returns:
        FirmwareInfo: Filename, download URL and release version.

    Raises:
        NotFoundError: If no (matching) filename is found on the page.
        ParseError: If the version token of the match is malformed.
        NetworkError: On transport failures.
    """
    sess = session or new_session(cfg)
    page = request(sess, "GET", cfg.info_page_url, timeout=cfg.request_timeout).text

    matches = [m.group(0) for m in _compile_pattern(device_id, cfg).finditer(page)]
    if not matches:
        raise NotFoundError(f"OTA for device {device_id}", cfg.info_page_url)

    for filename in matches:
        release_version = extract_version(filename, device_id, cfg)
        if version in (LATEST, release_version):
            url = f"{cfg.firmware_base_url.rstrip('/')}/{filename}"
            logger.info("OTA target: %s; OTA URL: %s", filename, url)
            return FirmwareInfo(filename=filename, url=url, release_version=release_version)

    raise NotFoundError(f"OTA {version} for device {device_id}", cfg.info_page_url)


def resolve(
    device_id: str,
    ota_version: str,
    tool_versions: Mapping[str, str],
    *,
    cfg: SourceConfig = DEFAULT_SOURCES,
    session: Optional[requests.Session] = None,
) -> ResolvedVersions:
    """
    Resolve the firmware and every tool version needed by this run.

    Args:
        device_id: Device codename.
        ota_version: Pinned release version or "latest".
        tool_versions: Requested version per tool name.
        cfg: Source configuration.
        session: Optional requests.Session for connection reuse.

    Returns:
        ResolvedVersions: Release version, firmware location and concrete tool versions.
    """
    sess = session or new_session(cfg)
    resolved_tools = {
        name: resolve_tool_version(name, requested, cfg=cfg, session=sess)
        for name, requested in tool_versions.items()
    }
    firmware = find_firmware(device_id, ota_version, cfg=cfg, session=sess)
    return ResolvedVersions(
        release_version=firmware.release_version,
        firmware=firmware,
        tool_versions=resolved_tools,
    )

# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors
"""
Upstream endpoint configuration.

This module defines the SourceConfig dataclass which centralizes the
firmware page, tool download locations, GitHub hosts and HTTP settings used
by the resolver, the fetcher and the GitHub client.
"""

from dataclasses import dataclass, field, replace
from typing import Dict

# avbroot and Custota releases are signed with this key
# (https://github.com/chenxiaolong/avbroot#verifying-digital-signatures).
CHENXIAOLONG_SIGNING_KEY = (
    "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIDOe6/tBnO7xZhAWXRj3ApUYgn+XZ0wnQiXM8B7tPgv4"
)


@dataclass(frozen=True)
class ToolSource:
    """Where a release of an external tool is published.

    Args:
        repo: GitHub "owner/name" used to resolve the "latest" version.
        url_template: Download URL; ``{version}`` is the bare version (no "v").
        binary: Name of the executable inside the release archive.
        signed: Whether a detached ``.sig`` accompanies the archive.
    """

    repo: str
    url_template: str
    binary: str = ""
    signed: bool = False

    def url(self, version: str) -> str:
        return self.url_template.format(version=version.lstrip("v"), tag=version)


def _default_tools() -> Dict[str, ToolSource]:
    return {
        "avbroot": ToolSource(
            repo="chenxiaolong/avbroot",
            url_template=(
                "https://github.com/chenxiaolong/avbroot/releases/download/v{version}/"
                "avbroot-{version}-x86_64-unknown-linux-gnu.zip"
            ),
            binary="avbroot",
            signed=True,
        ),
        "custota": ToolSource(
            repo="chenxiaolong/Custota",
            url_template=(
                "https://github.com/chenxiaolong/Custota/releases/download/v{version}/"
                "custota-tool-{version}-x86_64-unknown-linux-gnu.zip"
            ),
            binary="custota-tool",
            signed=True,
        ),
        "magisk": ToolSource(
            repo="topjohnwu/Magisk",
            url_template="https://github.com/topjohnwu/Magisk/releases/download/{tag}/Magisk-{tag}.apk",
        ),
        "kernelsu": ToolSource(
            repo="tiann/KernelSU",
            url_template="",
            binary="ksud",
        ),
    }


@dataclass(frozen=True)
class SourceConfig:
    """
    Configuration of the upstream sources the pipeline talks to.

    Args:
        info_page_url: Publisher page listing the current OTA images.
        firmware_base_url: Base URL the matched OTA filename is downloaded from.
        filename_pattern: Regex locating the OTA filename on the info page.
            ``{device}`` is replaced by the escaped device id and the named
            group ``version`` captures the release version.
        tools: Per-tool release locations.
        signing_key: Pinned OpenSSH public key the tool archives are signed with.
        signature_namespace: SSHSIG namespace used when the tools were signed.
        api_url: GitHub REST API root.
        uploads_url: GitHub asset upload root.
        web_url: GitHub web root used to build public download locations.
        kernelsu_artifact: Name of the KernelSU CI artifact containing ksud.
        user_agent: User-Agent header used for HTTP requests.
        request_timeout: Default timeout in seconds for HTTP requests.
    """

    info_page_url: str = "https://developer.android.com/about/versions/16/download-ota"
    firmware_base_url: str = "https://dl.google.com/developers/android/baklava/images/ota"
    filename_pattern: str = r"{device}_beta-ota-(?P<version>[a-z0-9]+(?:\.[0-9a-z]+)+)-[0-9a-f]{8}\.zip"
    tools: Dict[str, ToolSource] = field(default_factory=_default_tools)
    signing_key: str = CHENXIAOLONG_SIGNING_KEY
    signature_namespace: str = "file"
    # GitHub hosts
    api_url: str = "https://api.github.com"
    uploads_url: str = "https://uploads.github.com"
    web_url: str = "https://github.com"
    kernelsu_artifact: str = "ksud-x86_64-unknown-linux-musl"
    # Default User-Agent and timeout for HTTP requests
    user_agent: str = "rooted-ota"
    request_timeout: int = 60  # seconds

    def with_overrides(self, **changes) -> "SourceConfig":
        """Return a copy with every non-empty override applied."""
        return replace(self, **{k: v for k, v in changes.items() if v})


DEFAULT_SOURCES = SourceConfig()

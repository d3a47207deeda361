# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors

"""Upstream side of the rooted OTA pipeline.

This package locates the newest upstream OTA image of a device, resolves the
versions of the tools that patch it, and fetches everything into a local
scratch directory. Tool archives are only used after their detached SSH
signature has been verified against a pinned key.

Main Components:
    - resolve / find_firmware: OTA discovery and version extraction
    - resolve_tool_version: "latest" to concrete release tag
    - Fetcher: idempotent, filename-keyed downloads with progress bars
    - sshsig: OpenSSH SSHSIG (Ed25519) signature verification
    - Avbroot, Ksud, CustotaTool: typed command builders for the external tools
    - OTAError and subclasses: the pipeline error taxonomy

Example:
    Find the current OTA of a device::

        from ota import find_firmware

        firmware = find_firmware("shiba")
        print(firmware.release_version, firmware.url)
"""

from .config import DEFAULT_SOURCES, SourceConfig, ToolSource
from .errors import (
    ConfigError,
    IntegrityError,
    NetworkError,
    NotFoundError,
    OTAError,
    ParseError,
    PublishError,
    ResolutionError,
    SubprocessError,
)
from .fetcher import Fetcher
from .resolver import FirmwareInfo, ResolvedVersions, extract_version, find_firmware, resolve, resolve_tool_version
from .sshsig import verify_file
from .tools import Avbroot, CustotaTool, Ksud, Passphrases, SigningKeys, run_tool

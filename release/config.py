# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors

"""Pipeline configuration.

Settings are read from an optional TOML file (``[pipeline]`` table, keys are
the lower-case field names) and overridden by environment variables named
after the upper-case field names, e.g. ``DEVICE_ID`` or ``MAGISK_VERSION``.
Validation happens once, up front, and reports every problem at the same time.
"""

from __future__ import annotations

import logging
import os
import re
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ota.config import DEFAULT_SOURCES, SourceConfig
from ota.errors import ConfigError

from .context import Flavor

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "ROOTED_OTA_CONFIG"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}
_REPO_RE = re.compile(r"[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+")

# Environment names that differ from the upper-cased field name
_ENV_NAMES = {"avbroot_version": "AVB_ROOT_VERSION"}

# Settings whose values must never end up in logs
SECRET_FIELDS = ("github_token", "key_avb_base64", "key_ota_base64", "cert_ota_base64")


@dataclass(frozen=True)
class PipelineConfig:
    """Settings of one pipeline run.

    Attributes:
        device_id: Device codename (mandatory), e.g. "shiba".
        github_token: Token for the release API, KernelSU artifacts and lookups.
        github_repo: "owner/name" of the repository releases are published to.
        key_avb: AVB signing key file.
        key_ota: OTA signing key file.
        cert_ota: OTA signing certificate file.
        key_avb_base64: Base64 AVB key; takes precedence over ``key_avb``.
        key_ota_base64: Base64 OTA key; takes precedence over ``key_ota``.
        cert_ota_base64: Base64 OTA certificate; takes precedence over ``cert_ota``.
        magisk_preinit_device: Enables the magisk flavor when set.
        kernelsu_kmi: Enables the kernelsu flavor when set.
        skip_rootless: Disables the rootless flavor.
        ota_version: Release version to build, or "latest".
        magisk_version: Magisk version or "latest".
        kernelsu_version: KernelSU version or "latest".
        avbroot_version: avbroot version or "latest".
        custota_version: custota-tool version or "latest".
        force_build: Rebuild and re-upload even when assets already exist.
        force_ota_server_upload: Overwrite index entries even for the same version.
        skip_ota_server_upload: Do not touch the distribution index.
        ota_test_channel: Publish to the test channel (``test/`` index, ``-test`` names).
        skip_cleanup: Keep the scratch directory after the run.
        debug: Verbose logging.
        work_dir: Scratch directory for downloads and artifacts.
        index_branch: Branch holding the distribution index.
        push_attempts: Attempts for pushing the index branch.
        push_retry_delay: Seconds between push attempts.
        ota_info_page_url: Override of the OTA publisher page.
        ota_base_url: Override of the OTA download base URL.
        ota_filename_pattern: Override of the OTA filename regex.
        tool_signing_key: Override of the pinned tool signing key.
    """

    device_id: str = ""
    github_token: str = ""
    github_repo: str = ""
    key_avb: str = "avb.key"
    key_ota: str = "ota.key"
    cert_ota: str = "ota.crt"
    key_avb_base64: str = ""
    key_ota_base64: str = ""
    cert_ota_base64: str = ""
    magisk_preinit_device: str = ""
    kernelsu_kmi: str = "android14-6.1"
    skip_rootless: bool = True
    ota_version: str = "latest"
    magisk_version: str = "v29.0"
    kernelsu_version: str = "v1.0.5"
    avbroot_version: str = "3.16.1"
    custota_version: str = "5.8"
    force_build: bool = False
    force_ota_server_upload: bool = False
    skip_ota_server_upload: bool = False
    ota_test_channel: bool = False
    skip_cleanup: bool = False
    debug: bool = False
    work_dir: str = ".tmp"
    index_branch: str = "gh-pages"
    push_attempts: int = 5
    push_retry_delay: float = 10.0
    ota_info_page_url: str = ""
    ota_base_url: str = ""
    ota_filename_pattern: str = ""
    tool_signing_key: str = ""

    @property
    def enabled_flavors(self) -> List[Flavor]:
        """Flavors to build, in a stable order."""
        flavors = []
        if self.magisk_preinit_device:
            flavors.append(Flavor.MAGISK)
        if self.kernelsu_kmi:
            flavors.append(Flavor.KERNELSU)
        if not self.skip_rootless:
            flavors.append(Flavor.ROOTLESS)
        return flavors

    @property
    def can_query_releases(self) -> bool:
        return bool(self.github_repo and self.github_token)

    @property
    def requested_tool_versions(self) -> Dict[str, str]:
        """Requested version per tool needed for the enabled flavors."""
        versions = {"avbroot": self.avbroot_version, "custota": self.custota_version}
        flavors = self.enabled_flavors
        if Flavor.MAGISK in flavors or Flavor.KERNELSU in flavors:
            versions["magisk"] = self.magisk_version
        if Flavor.KERNELSU in flavors:
            versions["kernelsu"] = self.kernelsu_version
        return versions

    @property
    def secrets(self) -> List[str]:
        return [v for v in (getattr(self, name) for name in SECRET_FIELDS) if v]

    def sources(self, base: SourceConfig = DEFAULT_SOURCES) -> SourceConfig:
        """Source configuration with this run's overrides applied."""
        return base.with_overrides(
            info_page_url=self.ota_info_page_url,
            firmware_base_url=self.ota_base_url,
            filename_pattern=self.ota_filename_pattern,
            signing_key=self.tool_signing_key,
        )

    def validate(self, *, publish: bool) -> "PipelineConfig":
        """
        Check mandatory settings.

        Args:
            publish: Whether this run publishes releases and the index.

        Returns:
            PipelineConfig: ``self``, for chaining.

        Raises:
            ConfigError: Listing every problem found.
        """
        problems = []
        if not self.device_id:
            problems.append("missing mandatory param DEVICE_ID")
        if not self.enabled_flavors:
            problems.append(
                "no flavor enabled (set MAGISK_PREINIT_DEVICE, KERNELSU_KMI or SKIP_ROOTLESS=false)"
            )
        if publish:
            if not self.github_repo:
                problems.append("missing mandatory param GITHUB_REPO")
            if not self.github_token:
                problems.append("missing mandatory param GITHUB_TOKEN")
        if not publish and Flavor.KERNELSU in self.enabled_flavors and not self.github_token:
            problems.append("GITHUB_TOKEN is required to download ksud for the kernelsu flavor")
        if self.github_repo and not _REPO_RE.fullmatch(self.github_repo):
            problems.append(f"GITHUB_REPO must look like owner/name, got {self.github_repo!r}")
        if self.push_attempts < 1:
            problems.append("PUSH_ATTEMPTS must be at least 1")
        if self.push_retry_delay < 0:
            problems.append("PUSH_RETRY_DELAY must not be negative")
        if problems:
            raise ConfigError(problems)
        return self


def _coerce(name: str, kind: Any, raw: Any) -> Any:
    if kind in (bool, "bool"):
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ConfigError(f"{name.upper()} must be a boolean, got {raw!r}")
    if kind in (int, "int"):
        try:
            return int(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{name.upper()} must be an integer, got {raw!r}") from exc
    if kind in (float, "float"):
        try:
            return float(raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{name.upper()} must be a number, got {raw!r}") from exc
    return str(raw).strip()


def _read_file(config_path: Path) -> Dict[str, Any]:
    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {config_path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"config file {config_path} is not valid TOML: {exc}") from exc
    section = data.get("pipeline", {})
    if not isinstance(section, dict):
        raise ConfigError(f"[pipeline] in {config_path} must be a table")
    return section


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    config_path: Optional[Path] = None,
) -> PipelineConfig:
    """Load configuration from an optional TOML file and the environment.

    Args:
        environ: Environment mapping; defaults to ``os.environ``.
        config_path: TOML file; defaults to ``$ROOTED_OTA_CONFIG`` when set.

    Returns:
        PipelineConfig: Unvalidated configuration.

    Raises:
        ConfigError: If the file is unreadable or a value has the wrong type.
    """
    env = os.environ if environ is None else environ
    if config_path is None and env.get(CONFIG_PATH_ENV):
        config_path = Path(env[CONFIG_PATH_ENV])

    values: Dict[str, Any] = {}
    known = {f.name: f.type for f in fields(PipelineConfig)}
    if config_path is not None:
        file_values = _read_file(config_path)
        unknown = sorted(set(file_values) - set(known))
        if unknown:
            logger.warning("Ignoring unknown settings in %s: %s", config_path, ", ".join(unknown))
        for name, raw in file_values.items():
            if name in known:
                values[name] = _coerce(name, known[name], raw)

    for name, kind in known.items():
        raw = env.get(_ENV_NAMES.get(name, name.upper()))
        # Empty workflow inputs mean "use the default"
        if raw is None or raw.strip() == "":
            continue
        values[name] = _coerce(name, kind, raw)

    cfg = PipelineConfig(**values)
    logger.debug(
        "Config loaded: device=%s, repo=%s, flavors=%s, ota_version=%s",
        cfg.device_id,
        cfg.github_repo,
        ",".join(f.value for f in cfg.enabled_flavors),
        cfg.ota_version,
    )
    return cfg

# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors
"""
Patch execution.

Turns the upstream OTA into one re-signed artifact per pending flavor by
driving avbroot (and ksud for KernelSU). Artifacts already present in the
scratch directory are not rebuilt.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from app.logging_setup import secrets_scope
from ota.errors import ConfigError, NotFoundError
from ota.tools import Avbroot, Ksud, Passphrases, Runner, SigningKeys, run_tool

from .config import PipelineConfig
from .context import ArtifactDescriptor, Flavor, RunContext

logger = logging.getLogger(__name__)

KERNELSU_PATCHED_GLOB = "kernelsu_patched*.img"


@dataclass(frozen=True)
class KeyMaterial:
    """A signing key or certificate, given as a file or as base64 content.

    Attributes:
        setting: Name of the setting, used in error messages.
        path: Key file; only its name is used when ``encoded`` is set.
        encoded: Base64 content, takes precedence over ``path``.
    """

    setting: str
    path: Path
    encoded: str = ""

    def resolve(self, work_dir: Path) -> Path:
        if not self.encoded:
            if not self.path.is_file():
                raise ConfigError(f"{self.setting} file {self.path} does not exist")
            return self.path
        try:
            content = base64.b64decode(self.encoded, validate=False)
        except binascii.Error as exc:
            raise ConfigError(f"{self.setting}_BASE64 is not valid base64") from exc
        dest = work_dir / self.path.name
        fd = os.open(dest, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        return dest

    @staticmethod
    def materialize(config: PipelineConfig, work_dir: Path) -> SigningKeys:
        """
        Make all signing material available as files.

        Base64 values are decoded into ``work_dir`` (mode 0600) with DEBUG
        logging suppressed.

        Raises:
            ConfigError: If a key file is missing or a base64 value is invalid.
        """
        work_dir.mkdir(parents=True, exist_ok=True)
        with secrets_scope():
            keys = SigningKeys(
                key_avb=KeyMaterial("KEY_AVB", Path(config.key_avb), config.key_avb_base64).resolve(work_dir),
                key_ota=KeyMaterial("KEY_OTA", Path(config.key_ota), config.key_ota_base64).resolve(work_dir),
                cert_ota=KeyMaterial("CERT_OTA", Path(config.cert_ota), config.cert_ota_base64).resolve(work_dir),
            )
        logger.info("Signing keys ready")
        return keys


def _prepatch_kernelsu(context: RunContext, runner: Runner) -> Path:
    work_dir = context.work_dir
    for old in work_dir.glob(KERNELSU_PATCHED_GLOB):
        old.unlink()

    avbroot = Avbroot(context.inputs["avbroot"])
    ksud = Ksud(context.inputs["ksud"])
    logger.info(
        "Creating prepatched boot.img for kernelsu, for device %s using kmi %s",
        context.config.device_id,
        context.config.kernelsu_kmi,
    )
    runner(avbroot.extract_boot(context.inputs["firmware"], work_dir))
    runner(ksud.boot_patch(work_dir / "boot.img", context.config.kernelsu_kmi, context.inputs["magiskboot"], work_dir))

    patched = sorted(work_dir.glob(KERNELSU_PATCHED_GLOB))
    if not patched:
        raise NotFoundError("KernelSU patched boot image", str(work_dir))
    return patched[0]


def _patch_one(
    context: RunContext,
    target: ArtifactDescriptor,
    keys: SigningKeys,
    passphrases: Passphrases,
    runner: Runner,
) -> None:
    avbroot = Avbroot(context.inputs["avbroot"])
    part = target.local_path.with_name(target.local_path.name + ".part")
    if target.flavor is Flavor.MAGISK:
        options = dict(magisk=context.inputs["magisk"], magisk_preinit_device=context.config.magisk_preinit_device)
    elif target.flavor is Flavor.KERNELSU:
        options = dict(prepatched=_prepatch_kernelsu(context, runner))
    else:
        options = dict(rootless=True)

    runner(avbroot.patch(context.inputs["firmware"], part, keys, passphrases, **options))
    part.replace(target.local_path)
    logger.info("Created %s", target.local_path.name)


def patch(
    context: RunContext,
    runner: Runner = run_tool,
    passphrases: Optional[Passphrases] = None,
) -> RunContext:
    """
    Produce the artifact of every pending flavor.

    Args:
        context: Context with fetched inputs (firmware, avbroot, plus magisk or
            ksud/magiskboot for the root flavors).
        runner: Executes a command; raises SubprocessError on failure.
        passphrases: Passphrase environment variable names; read from the
            environment when omitted.

    Returns:
        RunContext: Context carrying the materialized signing keys.

    Raises:
        SubprocessError: If avbroot or ksud fails.
        ConfigError: If key material is missing.
    """
    keys = context.keys or KeyMaterial.materialize(context.config, context.work_dir)
    passphrases = passphrases or Passphrases.from_environ()

    for target in context.pending.values():
        if target.local_path.exists():
            logger.info("File %s already exists locally, not patching", target.local_path)
            continue
        _patch_one(context, target, keys, passphrases, runner)

    return context.with_keys(keys)

# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors
"""
Command builders for the external tools.

Each builder turns typed arguments into the argument list understood by the
tool, so flavor logic never assembles command lines by hand.

Classes:
- Avbroot: ``avbroot ota patch|extract`` and ``avbroot key`` commands.
- Ksud: ``ksud boot-patch`` for KernelSU prepatched boot images.
- CustotaTool: ``custota-tool gen-csig|gen-update-info``.

Functions:
- run_tool: run a command and raise SubprocessError on non-zero exit.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence, Union

from .errors import SubprocessError

logger = logging.getLogger(__name__)

Arg = Union[str, Path]
Runner = Callable[[Sequence[Arg]], None]

PASSPHRASE_AVB_ENV = "PASSPHRASE_AVB"
PASSPHRASE_OTA_ENV = "PASSPHRASE_OTA"


def run_tool(argv: Sequence[Arg], *, cwd: Optional[Path] = None) -> None:
    """
    Run an external tool, inheriting stdio so interactive prompts keep working.

    Args:
        argv: Command and arguments.
        cwd: Optional working directory.

    Raises:
        SubprocessError: If the command exits non-zero or cannot be started.
    """
    logger.info("Running %s", " ".join(str(a) for a in argv[:3]))
    logger.debug("argv: %s", [str(a) for a in argv])
    try:
        subprocess.run([str(a) for a in argv], check=True, cwd=cwd)
    except subprocess.CalledProcessError as exc:
        raise SubprocessError(argv, exc.returncode) from exc
    except OSError as exc:
        raise SubprocessError(argv, 127) from exc


@dataclass(frozen=True)
class Passphrases:
    """Names (never values) of environment variables holding key passphrases.

    A missing name lets the tool prompt interactively.
    """

    avb_env_var: Optional[str] = None
    ota_env_var: Optional[str] = None

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> "Passphrases":
        env = os.environ if environ is None else environ
        return cls(
            avb_env_var=PASSPHRASE_AVB_ENV if PASSPHRASE_AVB_ENV in env else None,
            ota_env_var=PASSPHRASE_OTA_ENV if PASSPHRASE_OTA_ENV in env else None,
        )


@dataclass(frozen=True)
class SigningKeys:
    """Paths of the key material handed to the tools."""

    key_avb: Path
    key_ota: Path
    cert_ota: Path


@dataclass(frozen=True)
class Avbroot:
    """avbroot command builder."""

    binary: Path

    def patch(
        self,
        input_ota: Path,
        output_ota: Path,
        keys: SigningKeys,
        passphrases: Passphrases,
        *,
        magisk: Optional[Path] = None,
        magisk_preinit_device: str = "",
        prepatched: Optional[Path] = None,
        rootless: bool = False,
    ) -> List[Arg]:
        """Build ``avbroot ota patch``; exactly one root option must be chosen."""
        chosen = sum([magisk is not None, prepatched is not None, rootless])
        if chosen != 1:
            raise ValueError("exactly one of magisk, prepatched or rootless is required")

        cmd: List[Arg] = [
            self.binary, "ota", "patch",
            "--input", input_ota,
            "--output", output_ota,
            "--key-avb", keys.key_avb,
            "--key-ota", keys.key_ota,
            "--cert-ota", keys.cert_ota,
        ]
        if magisk is not None:
            cmd += ["--magisk", magisk, "--magisk-preinit-device", magisk_preinit_device]
        elif prepatched is not None:
            cmd += ["--prepatched", prepatched]
        else:
            cmd.append("--rootless")

        if passphrases.avb_env_var:
            cmd += ["--pass-avb-env-var", passphrases.avb_env_var]
        if passphrases.ota_env_var:
            cmd += ["--pass-ota-env-var", passphrases.ota_env_var]
        return cmd

    def extract_boot(self, input_ota: Path, directory: Path) -> List[Arg]:
        return [
            self.binary, "ota", "extract",
            "--input", input_ota,
            "--directory", directory,
            "--boot-only",
        ]

    def generate_key(self, output: Path) -> List[Arg]:
        return [self.binary, "key", "generate-key", "-o", output]

    def extract_avb(self, key: Path, output: Path) -> List[Arg]:
        return [self.binary, "key", "extract-avb", "-k", key, "-o", output]

    def generate_cert(self, key: Path, output: Path) -> List[Arg]:
        return [self.binary, "key", "generate-cert", "-k", key, "-o", output]


@dataclass(frozen=True)
class Ksud:
    """KernelSU ksud command builder."""

    binary: Path

    def boot_patch(self, boot_image: Path, kmi: str, magiskboot: Path, out_dir: Path) -> List[Arg]:
        return [
            self.binary, "boot-patch",
            "-b", boot_image,
            "--kmi", kmi,
            "--magiskboot", magiskboot,
            "-o", out_dir,
        ]


@dataclass(frozen=True)
class CustotaTool:
    """custota-tool command builder."""

    binary: Path

    def gen_csig(
        self, input_ota: Path, output: Path, key: Path, cert: Path, passphrases: Passphrases
    ) -> List[Arg]:
        cmd: List[Arg] = [
            self.binary, "gen-csig",
            "--input", input_ota,
            "--output", output,
            "--key", key,
            "--cert", cert,
        ]
        if passphrases.ota_env_var:
            cmd += ["--passphrase-env-var", passphrases.ota_env_var]
        return cmd

    def gen_update_info(self, file: Path, location: str) -> List[Arg]:
        return [self.binary, "gen-update-info", "--file", file, "--location", location]

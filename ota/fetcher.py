# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors
"""
Dependency retrieval into the local scratch directory.

Every download is keyed by file name: when the file is already present the
network is not touched at all. Tool archives are verified against the pinned
signing key before their executable is extracted.
"""

from __future__ import annotations

import logging
import os
import zipfile
from pathlib import Path
from typing import Dict, Optional, Tuple

import requests
from tqdm import tqdm

from .config import DEFAULT_SOURCES, SourceConfig
from .errors import IntegrityError, NetworkError, NotFoundError, ResolutionError
from .http import new_session, request
from .resolver import FirmwareInfo
from .sshsig import verify_file

logger = logging.getLogger(__name__)

KSUD_MEMBER = "x86_64-unknown-linux-musl/release/ksud"
MAGISKBOOT_MEMBER = "lib/x86_64/libmagiskboot.so"


def _extract_member(archive: Path, member: str, dest: Path) -> Path:
    """Extract one archive member to ``dest`` (junking its directories) and make it executable."""
    with zipfile.ZipFile(archive) as zf:
        names = zf.namelist()
        if member not in names:
            # Release archives sometimes nest the binary in a directory
            candidates = [n for n in names if n.rsplit("/", 1)[-1] == member]
            if not candidates:
                raise NotFoundError(member, archive.name)
            member = candidates[0]
        tmp = dest.with_name(dest.name + ".part")
        with zf.open(member) as src, open(tmp, "wb") as out:
            for chunk in iter(lambda: src.read(1024 * 1024), b""):
                out.write(chunk)
    os.chmod(tmp, 0o755)
    tmp.replace(dest)
    return dest


class Fetcher:
    """
    Fetch and authenticate the inputs of a run into ``work_dir``.

    Args:
        work_dir: Scratch directory; created on first use.
        cfg: Source configuration.
        session: Optional requests.Session for connection reuse.
        token: GitHub token, required only for KernelSU CI artifacts.
        progress: Show tqdm progress bars for downloads.
    """

    def __init__(
        self,
        work_dir: Path,
        cfg: SourceConfig = DEFAULT_SOURCES,
        session: Optional[requests.Session] = None,
        token: str = "",
        progress: bool = True,
    ):
        self.work_dir = Path(work_dir)
        self.cfg = cfg
        self.sess = session or new_session(cfg)
        self.token = token
        self.progress = progress

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def fetch(self, url: str, filename: str, headers: Optional[Dict[str, str]] = None) -> Path:
        """
        Download ``url`` to ``work_dir/filename`` unless that file already exists.

        Args:
            url: Source URL.
            filename: Target file name inside the scratch directory.
            headers: Optional extra request headers.

        Returns:
            Path: Local path of the file.

        Raises:
            NetworkError: On transport failures or non-2xx responses.
        """
        dest = self.work_dir / filename
        if dest.exists():
            logger.info("%s already present, not downloading", dest)
            return dest

        self.work_dir.mkdir(parents=True, exist_ok=True)
        part = dest.with_name(dest.name + ".part")
        logger.info("Downloading %s", url)
        resp = request(
            self.sess,
            "GET",
            url,
            timeout=self.cfg.request_timeout,
            headers=headers or {},
            stream=True,
        )
        total = int(resp.headers.get("content-length") or 0) or None
        try:
            with resp, open(part, "wb") as f, tqdm(
                total=total,
                unit="B",
                unit_scale=True,
                unit_divisor=1024,
                desc=filename,
                disable=not self.progress,
            ) as pbar:
                for chunk in resp.iter_content(chunk_size=1024 * 1024):
                    if not chunk:
                        continue
                    f.write(chunk)
                    pbar.update(len(chunk))
        except requests.RequestException as exc:
            part.unlink(missing_ok=True)
            raise NetworkError(url, str(exc)) from exc

        # Atomic finalize
        part.replace(dest)
        return dest

    def fetch_tool(self, name: str, version: str) -> Path:
        """
        Fetch a signed tool release and return the path of its executable.

        The archive and its ``.sig`` are downloaded side by side and verified
        against the pinned key; only then is the executable extracted.

        Args:
            name: Tool key in the source configuration (avbroot, custota).
            version: Concrete tool version.

        Returns:
            Path: Executable inside the scratch directory, named after the tool and its version.

        Raises:
            IntegrityError: If the signature does not verify.
            ResolutionError: If the tool is not configured.
        """
        source = self.cfg.tools.get(name)
        if source is None or not source.binary:
            raise ResolutionError(name, "unknown tool")

        binary = self.work_dir / f"{source.binary}-{version}"
        if binary.exists():
            logger.info("%s already present, not downloading", binary)
            return binary

        url = source.url(version)
        archive_name = url.rsplit("/", 1)[-1]
        archive = self.fetch(url, archive_name)
        signature = self.fetch(url + ".sig", archive_name + ".sig")
        try:
            verify_file(archive, signature, self.cfg.signing_key, self.cfg.signature_namespace)
        except IntegrityError:
            # Never leave an unverified archive behind for the next run to trust
            archive.unlink(missing_ok=True)
            signature.unlink(missing_ok=True)
            raise
        logger.info("Verified signature of %s", archive_name)

        _extract_member(archive, source.binary, binary)
        archive.unlink(missing_ok=True)
        return binary

    def fetch_firmware(self, firmware: FirmwareInfo) -> Path:
        """Fetch the upstream OTA image (integrity is checked later by avbroot)."""
        return self.fetch(firmware.url, firmware.filename)

    def fetch_magisk(self, version: str) -> Path:
        """Fetch the Magisk APK of ``version``."""
        return self.fetch(self.cfg.tools["magisk"].url(version), f"magisk-{version}.apk")

    def fetch_ksud(self, version: str, magisk_apk: Path) -> Tuple[Path, Path]:
        """
        Fetch ksud from the KernelSU CI artifacts and magiskboot from the Magisk APK.

        The CI artifact API requires authentication, so a GitHub token is needed.

        Args:
            version: KernelSU version (branch/tag the CI run was triggered for).
            magisk_apk: Magisk APK containing libmagiskboot.so.

        Returns:
            (ksud, magiskboot): Executable paths.

        Raises:
            ResolutionError: If no CI run or artifact is found.
        """
        ksud = self.work_dir / "ksud"
        magiskboot = self.work_dir / "libmagiskboot.so"
        if not magiskboot.exists():
            _extract_member(magisk_apk, MAGISKBOOT_MEMBER, magiskboot)
        if ksud.exists():
            return ksud, magiskboot

        repo = self.cfg.tools["kernelsu"].repo
        runs = request(
            self.sess,
            "GET",
            f"{self.cfg.api_url}/repos/{repo}/actions/runs",
            timeout=self.cfg.request_timeout,
            headers=self._auth_headers(),
            params={"event": "push", "branch": version},
        ).json()
        workflow_runs = runs.get("workflow_runs") or []
        if not workflow_runs:
            raise ResolutionError("kernelsu", f"no CI run for {version}")

        # Paging is not implemented; the artifact is expected among the first 100
        artifacts = request(
            self.sess,
            "GET",
            workflow_runs[0]["artifacts_url"],
            timeout=self.cfg.request_timeout,
            headers=self._auth_headers(),
            params={"per_page": 100},
        ).json()
        urls = [
            a["archive_download_url"]
            for a in artifacts.get("artifacts", [])
            if a.get("name") == self.cfg.kernelsu_artifact
        ]
        if not urls:
            raise ResolutionError("kernelsu", f"no {self.cfg.kernelsu_artifact} artifact for {version}")

        archive = self.fetch(urls[0], f"ksud-{version}.zip", headers=self._auth_headers())
        _extract_member(archive, KSUD_MEMBER, ksud)
        return ksud, magiskboot

"""Shared fakes for the test suite (HTTP session, tool signatures, run contexts)."""

from __future__ import annotations

import base64
import io
import json
import struct
import zipfile
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from Crypto.PublicKey import ECC
from Crypto.Signature import eddsa

from ota.resolver import FirmwareInfo, ResolvedVersions
from ota.sshsig import ARMOR_BEGIN, ARMOR_END, MAGIC, file_digest, signed_data, ssh_string
from release.config import PipelineConfig
from release.context import RunContext
from release.planner import build_targets

FIRMWARE = FirmwareInfo(
    filename="shiba_beta-ota-bp31.250502.008-4e0bc4e8.zip",
    url="https://dl.example.invalid/ota/shiba_beta-ota-bp31.250502.008-4e0bc4e8.zip",
    release_version="bp31.250502.008",
)
TOOL_VERSIONS = {"avbroot": "3.16.1", "custota": "5.8", "magisk": "v29.0", "kernelsu": "v1.0.5"}


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        payload: Any = None,
        text: str = "",
        content: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
        stream_error: Optional[Exception] = None,
    ):
        self.status_code = status_code
        self._payload = payload
        self.text = text if payload is None else json.dumps(payload)
        self.content = content
        self.headers = headers or {}
        self.reason = "OK" if self.ok else "Error"
        self.stream_error = stream_error
        self.closed = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        return self._payload

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]
            if self.stream_error is not None:
                raise self.stream_error

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


Handler = Union[FakeResponse, List[FakeResponse], Callable[..., FakeResponse]]


class FakeSession:
    """Routes ``(method, url)`` to canned responses and records every call."""

    def __init__(self, routes: Optional[Dict[Tuple[str, str], Handler]] = None):
        self.routes: Dict[Tuple[str, str], Handler] = dict(routes or {})
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []
        self.headers: Dict[str, str] = {}

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.calls.append((method, url, kwargs))
        try:
            handler = self.routes[(method, url)]
        except KeyError:
            raise AssertionError(f"unexpected request {method} {url}") from None
        if isinstance(handler, list):
            return handler.pop(0)
        if callable(handler):
            return handler(**kwargs)
        return handler

    def called(self, method: str, url: str) -> int:
        return sum(1 for m, u, _ in self.calls if (m, u) == (method, url))


class Signer:
    """Ed25519 key producing ``ssh-keygen -Y sign`` style signatures."""

    def __init__(self):
        self.key = ECC.generate(curve="ed25519")
        self.public_line = self.key.public_key().export_key(format="OpenSSH")

    @property
    def public_blob(self) -> bytes:
        return base64.b64decode(self.public_line.split()[1])

    def sign(self, path: Path, namespace: str = "file", hash_algorithm: str = "sha512") -> str:
        digest = file_digest(path, hash_algorithm)
        raw = eddsa.new(self.key, "rfc8032").sign(signed_data(namespace, hash_algorithm, digest))
        blob = (
            MAGIC
            + struct.pack(">I", 1)
            + ssh_string(self.public_blob)
            + ssh_string(namespace.encode())
            + ssh_string(b"")
            + ssh_string(hash_algorithm.encode())
            + ssh_string(ssh_string(b"ssh-ed25519") + ssh_string(raw))
        )
        body = base64.b64encode(blob).decode()
        lines = [body[i : i + 70] for i in range(0, len(body), 70)]
        return "\n".join([ARMOR_BEGIN, *lines, ARMOR_END]) + "\n"


def make_config(tmp_path: Path, **overrides) -> PipelineConfig:
    values = dict(
        device_id="shiba",
        github_repo="owner/rooted",
        github_token="ghp_testtoken",
        magisk_preinit_device="sda10",
        kernelsu_kmi="",
        skip_rootless=False,
        work_dir=str(tmp_path / ".tmp"),
        push_retry_delay=0.0,
    )
    values.update(overrides)
    return PipelineConfig(**values)


def make_versions(release_version: str = FIRMWARE.release_version) -> ResolvedVersions:
    firmware = FirmwareInfo(FIRMWARE.filename, FIRMWARE.url, release_version)
    return ResolvedVersions(release_version, firmware, dict(TOOL_VERSIONS))


def make_context(config: PipelineConfig, revision: str = "4647f74", dirty: bool = False, **kwargs) -> RunContext:
    versions = kwargs.pop("versions", None) or make_versions()
    return RunContext(
        config=config,
        versions=versions,
        revision=revision,
        dirty=dirty,
        pending=build_targets(config, versions, revision, dirty, Path(config.work_dir)),
        **kwargs,
    )


def release_payload(release_id: int, tag: str, names: List[str]) -> Dict[str, Any]:
    return {
        "id": release_id,
        "tag_name": tag,
        "assets": [{"id": 100 + i, "name": name} for i, name in enumerate(names)],
    }


class RecordingRunner:
    """Stands in for ``run_tool``; records argv and runs optional side effects."""

    def __init__(self, effect: Optional[Callable[[List[str]], None]] = None):
        self.calls: List[List[str]] = []
        self.effect = effect

    def __call__(self, argv) -> None:
        args = [str(a) for a in argv]
        self.calls.append(args)
        if self.effect is not None:
            self.effect(args)

    def subcommands(self) -> List[Tuple[str, ...]]:
        return [(Path(c[0]).name, *c[1:3]) for c in self.calls]


def zip_bytes(members: Dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buf.getvalue()

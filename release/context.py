# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors

"""Run context shared by the pipeline stages.

The context is immutable: each stage receives one and returns a new (possibly
narrowed) one. The pending mapping can only shrink after planning.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Dict, Iterable, Mapping, Optional, Tuple

from ota.resolver import ResolvedVersions
from ota.tools import SigningKeys

if TYPE_CHECKING:
    from .config import PipelineConfig

ARTIFACT_EXT = ".zip"
CSIG_EXT = ".zip.csig"
TEST_SUFFIX = "-test"


class Flavor(str, Enum):
    """Output variant of a run."""

    MAGISK = "magisk"
    KERNELSU = "kernelsu"
    ROOTLESS = "rootless"

    def __str__(self) -> str:
        return self.value


# Tool whose version is part of a flavor's artifact name
FLAVOR_TOOL = {Flavor.MAGISK: "magisk", Flavor.KERNELSU: "kernelsu", Flavor.ROOTLESS: None}


def asset_prefix(device_id: str, release_version: str, flavor: Flavor) -> str:
    """Name prefix shared by every artifact of a flavor for one release, whatever its tool version."""
    return f"{device_id}-{release_version}-{flavor.value}-"


def is_test_channel_asset(name: str) -> bool:
    return name.endswith(TEST_SUFFIX + ARTIFACT_EXT) or name.endswith(TEST_SUFFIX + CSIG_EXT)


def artifact_filename(
    device_id: str,
    release_version: str,
    flavor: Flavor,
    tool_version: Optional[str],
    revision: str,
    dirty: bool,
    test: bool,
) -> str:
    """
    Deterministic artifact name, e.g. ``oriole-2023121200-magisk-v26.4-4647f74-dirty.zip``.

    Args:
        device_id: Device codename.
        release_version: Upstream release version.
        flavor: Output flavor.
        tool_version: Version of the flavor's root framework; ignored for rootless.
        revision: Short git revision of this repository.
        dirty: Whether the working tree has uncommitted changes.
        test: Whether the artifact targets the test channel.

    Returns:
        The file name.
    """
    name = asset_prefix(device_id, release_version, flavor)
    if FLAVOR_TOOL[flavor] and tool_version:
        name += f"{tool_version}-"
    name += revision
    if dirty:
        name += "-dirty"
    if test:
        name += TEST_SUFFIX
    return name + ARTIFACT_EXT


@dataclass(frozen=True)
class ArtifactDescriptor:
    """One expected output artifact.

    Attributes:
        flavor: Flavor the artifact belongs to.
        filename: Deterministic artifact file name.
        local_path: Where the artifact is (or will be) written.
        remote_asset_name: Name of the release asset.
    """

    flavor: Flavor
    filename: str
    local_path: Path
    remote_asset_name: str

    @property
    def csig_name(self) -> str:
        return self.remote_asset_name + ".csig"

    @property
    def csig_path(self) -> Path:
        return self.local_path.with_name(self.local_path.name + ".csig")


@dataclass(frozen=True)
class RemoteAsset:
    id: int
    name: str


@dataclass(frozen=True)
class RemoteRelease:
    """Release object of the hosting platform."""

    id: int
    tag_name: str
    assets: Tuple[RemoteAsset, ...] = ()

    @classmethod
    def from_json(cls, data: Mapping) -> "RemoteRelease":
        return cls(
            id=int(data["id"]),
            tag_name=str(data["tag_name"]),
            assets=tuple(RemoteAsset(int(a["id"]), str(a["name"])) for a in data.get("assets") or []),
        )

    def asset_named(self, name: str) -> Optional[RemoteAsset]:
        for asset in self.assets:
            if asset.name == name:
                return asset
        return None


@dataclass(frozen=True)
class RunContext:
    """
    State threaded through the pipeline stages of one run.

    Attributes:
        config: Validated configuration.
        versions: Resolved release and tool versions.
        revision: Short revision of this repository.
        dirty: Whether the working tree has uncommitted changes.
        pending: Flavor to artifact mapping still requiring work (read-only).
        stale_assets: Remote assets scheduled for deletion by the publisher.
        inputs: Fetched local inputs by name (firmware, avbroot, custota, ...).
        keys: Materialized key paths.
        release_id: Id of the remote release once it exists.
    """

    config: "PipelineConfig"
    versions: ResolvedVersions
    revision: str
    dirty: bool = False
    pending: Mapping[Flavor, ArtifactDescriptor] = field(default_factory=lambda: MappingProxyType({}))
    stale_assets: Tuple[RemoteAsset, ...] = ()
    inputs: Mapping[str, Path] = field(default_factory=lambda: MappingProxyType({}))
    keys: Optional[SigningKeys] = None
    release_id: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "pending", MappingProxyType(dict(self.pending)))
        object.__setattr__(self, "inputs", MappingProxyType(dict(self.inputs)))

    @property
    def release_version(self) -> str:
        return self.versions.release_version

    @property
    def work_dir(self) -> Path:
        return Path(self.config.work_dir)

    @property
    def is_empty(self) -> bool:
        return not self.pending

    def narrow(self, drop: Iterable[Flavor]) -> "RunContext":
        """Return a context without the given flavors; the pending set never grows."""
        dropped = set(drop)
        return replace(self, pending={f: d for f, d in self.pending.items() if f not in dropped})

    def with_stale_assets(self, assets: Iterable[RemoteAsset]) -> "RunContext":
        merged: Dict[int, RemoteAsset] = {a.id: a for a in self.stale_assets}
        merged.update((a.id, a) for a in assets)
        return replace(self, stale_assets=tuple(merged.values()))

    def with_inputs(self, **paths: Path) -> "RunContext":
        return replace(self, inputs={**self.inputs, **paths})

    def with_keys(self, keys: SigningKeys) -> "RunContext":
        return replace(self, keys=keys)

    def with_release(self, release_id: int) -> "RunContext":
        return replace(self, release_id=release_id)

# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors

"""Release side of the rooted OTA pipeline.

This package turns resolved upstream versions into published artifacts: it
plans which flavors still need work, patches the OTA per flavor, uploads the
artifacts to a GitHub release and maintains the per-device update index on a
git branch. Every stage is idempotent, so re-running the pipeline for an
already published release is a no-op.

Main Components:
    - PipelineConfig / load_config: settings from TOML and environment
    - RunContext: immutable per-run state with the shrinking pending set
    - plan: reconcile targets with the remote release
    - patch: avbroot (and ksud) invocation per flavor
    - publish: release state machine and asset upload
    - update_index: sidecars, index merge, commit and push with retry
    - run_pipeline / generate_keys: orchestration
"""

from .config import PipelineConfig, load_config
from .context import ArtifactDescriptor, Flavor, RemoteAsset, RemoteRelease, RunContext, artifact_filename
from .service import generate_keys, run_pipeline

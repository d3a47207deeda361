# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors

"""rooted-ota command line application.

This package provides the ``rooted-ota`` command which runs the release
pipeline from CI or a workstation.

Main Components:
    - __main__: argument parsing and subcommands (release, build, generate-keys)
    - logging_setup: console handler, secret redaction and DEBUG suppression

Example:
    Run a full release for one device::

        DEVICE_ID=shiba GITHUB_REPO=owner/name GITHUB_TOKEN=... python -m app release

    Or only build locally::

        DEVICE_ID=shiba MAGISK_PREINIT_DEVICE=metadata python -m app build

Copyright (c) 2025 rooted-ota contributors
SPDX-License-Identifier: MIT
"""

from app.logging_setup import configure_logging, secrets_scope

__all__ = ["configure_logging", "secrets_scope"]

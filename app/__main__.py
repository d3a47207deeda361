# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors

"""Command line entry point.

Usage:
    python -m app release          # build, publish release assets and the index
    python -m app build            # build the artifacts locally only
    python -m app generate-keys    # create signing keys and print their base64 form

Settings are read from the environment (``DEVICE_ID``, ``GITHUB_TOKEN``, ...)
and optionally a TOML file given with ``--config`` or ``ROOTED_OTA_CONFIG``.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from app.logging_setup import configure_logging
from ota.errors import OTAError
from ota.tools import PASSPHRASE_AVB_ENV, PASSPHRASE_OTA_ENV
from release.config import load_config
from release.service import generate_keys, run_pipeline

logger = logging.getLogger("app")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="rooted-ota",
        description="Build rooted, re-signed OTA images and publish them as GitHub releases.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="TOML file with a [pipeline] table (environment variables take precedence)",
    )
    parser.add_argument(
        "--device-id",
        help="Device codename, overrides DEVICE_ID",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Verbose logging, same as DEBUG=true",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("release", help="Build, publish release assets and update the OTA index")
    sub.add_parser("build", help="Build the rooted OTAs locally without publishing")
    sub.add_parser("generate-keys", help="Create AVB/OTA keys and certificate with avbroot")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = load_config(config_path=args.config)
        if args.device_id:
            config = replace(config, device_id=args.device_id)
        if args.debug:
            config = replace(config, debug=True)

        secrets = config.secrets + [os.environ.get(n, "") for n in (PASSPHRASE_AVB_ENV, PASSPHRASE_OTA_ENV)]
        configure_logging(config.debug, secrets)

        if args.command == "generate-keys":
            encoded = generate_keys(config)
            print("Upload these to your CI server, if necessary.")
            print("The pipeline takes these values as env or file.")
            for name, value in encoded.items():
                print(f"{name}={value}")
            return 0

        context = run_pipeline(config, publish=args.command == "release")
        if context.is_empty:
            logger.info("Nothing to do")
        return 0
    except OTAError as exc:
        configure_logging()
        logger.error("error: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())

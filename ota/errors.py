# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors
"""
Pipeline error definitions.

Every failure in a run is fatal; the command line entry point catches
OTAError, logs its message and exits with status 1.

Exceptions:
    OTAError: Base class for all pipeline errors.
    ConfigError: Raised when mandatory configuration is missing or invalid.
    ResolutionError: Raised when a "latest" tool version cannot be resolved.
    NotFoundError: Raised when no firmware matches the device naming pattern.
    ParseError: Raised when the release version cannot be read from a filename.
    IntegrityError: Raised when a downloaded tool fails signature verification.
    SubprocessError: Raised when an external tool exits non-zero.
    PublishError: Raised on release or index publication inconsistencies.
    NetworkError: Raised on transport failures talking to remote hosts.
"""

from __future__ import annotations

from typing import Iterable, Sequence


class OTAError(Exception):
    """Base class for pipeline errors."""


class ConfigError(OTAError):
    """Raised when configuration is missing or invalid.

    Args:
        problems: One message per invalid or missing setting.
    """

    def __init__(self, problems: str | Iterable[str]):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        msg = "Invalid configuration"
        if self.problems:
            msg += ": " + "; ".join(self.problems)
        super().__init__(msg)


class ResolutionError(OTAError):
    """Raised when a tool version cannot be resolved to a concrete release."""

    def __init__(self, tool: str, detail: str = ""):
        self.tool = tool
        msg = f"Could not resolve latest release of {tool}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class NotFoundError(OTAError):
    """Raised when an expected upstream file is missing (e.g. no OTA for the device)."""

    def __init__(self, what: str, where: str = ""):
        msg = f"{what} not found"
        if where:
            msg += f" in {where}"
        super().__init__(msg)


class ParseError(OTAError):
    """Raised when the release version token is absent or malformed."""

    def __init__(self, filename: str, detail: str = ""):
        msg = f"Cannot extract release version from '{filename}'"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class IntegrityError(OTAError):
    """Raised when a signature does not verify against the pinned key."""

    def __init__(self, path: str, detail: str = ""):
        msg = f"Signature verification failed for {path}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class SubprocessError(OTAError):
    """Raised when an external tool exits with a non-zero status.

    Args:
        argv: Command that was run.
        returncode: Exit status of the command.
    """

    def __init__(self, argv: Sequence[object], returncode: int):
        self.argv = [str(a) for a in argv]
        self.returncode = returncode
        tool = self.argv[0] if self.argv else "<unknown>"
        sub = f" {self.argv[1]}" if len(self.argv) > 1 else ""
        super().__init__(f"{tool}{sub} exited with status {returncode}")


class PublishError(OTAError):
    """Raised when remote state cannot be reconciled or pushed."""


class NetworkError(OTAError):
    """Raised on transport failures (connection errors, HTTP errors)."""

    def __init__(self, url: str, detail: str = "", status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        msg = "Request failed"
        if status_code is not None:
            msg = f"HTTP {status_code}"
        msg += f": {url}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)

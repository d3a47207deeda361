# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors

"""Logging configuration for the command line entry point.

One stream handler is installed on the root logger. A redaction filter on
that handler masks every registered secret value (token, base64 key
material, passphrases) so they never reach the CI log, and
``secrets_scope`` silences DEBUG output while key material is handled.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Iterable, Iterator

_HANDLER_TAG = "_rooted_ota_logging_handler"
_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

REDACTED = "***"


class SecretRedactingFilter(logging.Filter):
    """Replace registered secret values by ``***`` in log records."""

    def __init__(self, secrets: Iterable[str] = ()):
        super().__init__()
        self._secrets: set[str] = set()
        self.add(secrets)

    def add(self, secrets: Iterable[str]) -> None:
        # Very short values would mask unrelated text
        self._secrets.update(s for s in secrets if s and len(s) >= 4)

    def redact(self, text: str) -> str:
        for secret in sorted(self._secrets, key=len, reverse=True):
            text = text.replace(secret, REDACTED)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if self._secrets:
            message = record.getMessage()
            redacted = self.redact(message)
            if redacted != message:
                record.msg = redacted
                record.args = ()
        return True


def _tagged_handler(root: logging.Logger) -> logging.Handler | None:
    for handler in root.handlers:
        if getattr(handler, _HANDLER_TAG, False):
            return handler
    return None


def configure_logging(debug: bool = False, secrets: Iterable[str] = ()) -> SecretRedactingFilter:
    """Install (once) the console handler and set the verbosity.

    Repeated calls only adjust the level and register additional secrets.

    Args:
        debug: Log at DEBUG instead of INFO.
        secrets: Values to mask in every record.

    Returns:
        SecretRedactingFilter: The filter attached to the handler.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    handler = _tagged_handler(root)
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
        handler.addFilter(SecretRedactingFilter())
        setattr(handler, _HANDLER_TAG, True)
        root.addHandler(handler)

    redactor = next(f for f in handler.filters if isinstance(f, SecretRedactingFilter))
    redactor.add(secrets)

    # urllib3 logs full URLs and headers at DEBUG
    logging.getLogger("urllib3").setLevel(logging.INFO)
    return redactor


@contextmanager
def secrets_scope() -> Iterator[None]:
    """Suppress DEBUG output while secrets are handled; the level is restored on exit."""
    root = logging.getLogger()
    previous = root.level
    if previous < logging.INFO:
        root.setLevel(logging.INFO)
    try:
        yield
    finally:
        root.setLevel(previous)


def reset_logging() -> None:
    """Remove the handler installed by :func:`configure_logging`."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)
            handler.close()

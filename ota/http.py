# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors
"""HTTP session helpers shared by the resolver, the fetcher and the GitHub client."""

from __future__ import annotations

import logging
from typing import Optional

import requests

from .config import DEFAULT_SOURCES, SourceConfig
from .errors import NetworkError

logger = logging.getLogger(__name__)


def new_session(cfg: SourceConfig = DEFAULT_SOURCES) -> requests.Session:
    """Create a requests.Session carrying the configured User-Agent."""
    sess = requests.Session()
    sess.headers["User-Agent"] = cfg.user_agent
    return sess


def request(
    sess: requests.Session,
    method: str,
    url: str,
    *,
    timeout: Optional[int] = DEFAULT_SOURCES.request_timeout,
    ok_statuses: tuple[int, ...] = (),
    **kwargs,
) -> requests.Response:
    """
    Perform an HTTP request, turning transport and HTTP failures into NetworkError.

    Args:
        sess: Session to use.
        method: HTTP verb.
        url: Target URL.
        timeout: Timeout in seconds.
        ok_statuses: Non-2xx status codes handed back to the caller instead of raising.
        **kwargs: Passed through to ``requests.Session.request``.

    Returns:
        requests.Response: The response (2xx or one of ``ok_statuses``).

    Raises:
        NetworkError: On connection errors or unexpected HTTP status codes.
    """
    logger.debug("%s %s", method, url)
    try:
        r = sess.request(method, url, timeout=timeout, **kwargs)
    except requests.RequestException as exc:
        raise NetworkError(url, str(exc)) from exc
    if r.status_code in ok_statuses:
        return r
    if not r.ok:
        raise NetworkError(url, r.reason or "", status_code=r.status_code)
    return r

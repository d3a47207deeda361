# SPDX-License-Identifier: MIT
# Copyright (c) 2025 rooted-ota contributors


from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import requests

from ota.config import DEFAULT_SOURCES, SourceConfig
from ota.errors import NetworkError, PublishError
from ota.http import new_session, request

from .context import RemoteAsset, RemoteRelease

logger = logging.getLogger(__name__)


class ReleaseConflict(PublishError):
    """Raised when a release for the tag was created concurrently."""

    def __init__(self, tag: str):
        self.tag = tag
        super().__init__(f"Release {tag} already exists")


class GitHubClient:
    """
    Minimal GitHub releases API client.

    Handles release lookup and creation, and asset upload and deletion for a
    single repository.

    Args:
        repo: Repository as "owner/name".
        token: API token sent as bearer token.
        cfg: Source configuration holding the API hosts. Defaults to DEFAULT_SOURCES.
        session: Optional requests.Session for connection reuse.
    """

    def __init__(
        self,
        repo: str,
        token: str,
        cfg: SourceConfig = DEFAULT_SOURCES,
        session: Optional[requests.Session] = None,
    ):
        self.repo = repo
        self.cfg = cfg
        self.sess = session or new_session(cfg)
        self.sess.headers["Authorization"] = f"Bearer {token}"
        self.sess.headers["Accept"] = "application/vnd.github+json"

    @property
    def _repo_url(self) -> str:
        return f"{self.cfg.api_url}/repos/{self.repo}"

    def download_url(self, tag: str, name: str) -> str:
        """Public download location of a release asset."""
        return f"{self.cfg.web_url}/{self.repo}/releases/download/{tag}/{name}"

    def find_release(self, tag: str) -> Optional[RemoteRelease]:
        """
        Look up the release of a tag.

        Args:
            tag: Release tag.

        Returns:
            RemoteRelease or None when no release exists for the tag.

        Raises:
            NetworkError: On transport failures or unexpected status codes.
        """
        r = request(
            self.sess,
            "GET",
            f"{self._repo_url}/releases/tags/{tag}",
            timeout=self.cfg.request_timeout,
            ok_statuses=(404,),
        )
        if r.status_code == 404:
            return None
        return RemoteRelease.from_json(r.json())

    def create_release(self, tag: str, name: str, body: str = "", target: str = "main") -> RemoteRelease:
        """
        Create a release for ``tag``.

        Returns:
            RemoteRelease: The created release (without assets).

        Raises:
            ReleaseConflict: If a release for the tag already exists.
            NetworkError: On any other failure.
        """
        url = f"{self._repo_url}/releases"
        r = request(
            self.sess,
            "POST",
            url,
            timeout=self.cfg.request_timeout,
            ok_statuses=(422,),
            json={"tag_name": tag, "target_commitish": target, "name": name, "body": body},
        )
        if r.status_code == 422:
            errors = (r.json() or {}).get("errors") or []
            if any(e.get("code") == "already_exists" for e in errors if isinstance(e, dict)):
                raise ReleaseConflict(tag)
            raise NetworkError(url, "release rejected", status_code=422)
        release = RemoteRelease.from_json(r.json())
        logger.info("Created release %s (id %d)", tag, release.id)
        return release

    def delete_asset(self, asset: RemoteAsset) -> None:
        """Delete a release asset; an already deleted asset is not an error."""
        logger.info("Deleting asset %s (id %d)", asset.name, asset.id)
        request(
            self.sess,
            "DELETE",
            f"{self._repo_url}/releases/assets/{asset.id}",
            timeout=self.cfg.request_timeout,
            ok_statuses=(404,),
        )

    def upload_asset(
        self,
        release_id: int,
        path: Path,
        name: str,
        content_type: str = "application/octet-stream",
    ) -> RemoteAsset:
        """
        Upload a file as release asset, streaming it from disk.

        Args:
            release_id: Target release.
            path: Local file.
            name: Asset name.
            content_type: MIME type of the asset.

        Returns:
            RemoteAsset: The uploaded asset.

        Raises:
            NetworkError: On failure; uploads are not retried.
        """
        url = f"{self.cfg.uploads_url}/repos/{self.repo}/releases/{release_id}/assets"
        size = path.stat().st_size
        logger.info("Uploading %s (%d bytes)", name, size)
        with open(path, "rb") as f:
            # No timeout: large OTA images take a while
            r = request(
                self.sess,
                "POST",
                url,
                timeout=None,
                params={"name": name},
                headers={"Content-Type": content_type, "Content-Length": str(size)},
                data=f,
            )
        data = r.json()
        return RemoteAsset(int(data["id"]), str(data.get("name", name)))

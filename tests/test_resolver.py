from __future__ import annotations

import pytest

from ota.config import DEFAULT_SOURCES
from ota.errors import NetworkError, NotFoundError, ParseError, ResolutionError
from ota.resolver import extract_version, find_firmware, resolve, resolve_tool_version
from tests.helpers import FakeResponse, FakeSession

PAGE = """
<tr><td>shiba</td><td><a href="https://dl.google.com/x/shiba_beta-ota-bp31.250502.008-4e0bc4e8.zip">
shiba_beta-ota-bp31.250502.008-4e0bc4e8.zip</a></td></tr>
<tr><td>shiba</td><td>shiba_beta-ota-bp22.250221.010-1a2b3c4d.zip</td></tr>
<tr><td>husky</td><td>husky_beta-ota-bp31.250502.008-deadbeef.zip</td></tr>
"""

LATEST_AVBROOT = f"{DEFAULT_SOURCES.api_url}/repos/chenxiaolong/avbroot/releases/latest"


def page_session(page: str = PAGE) -> FakeSession:
    return FakeSession({("GET", DEFAULT_SOURCES.info_page_url): FakeResponse(text=page)})


def test_find_firmware_picks_first_listed_build() -> None:
    fw = find_firmware("shiba", session=page_session())
    assert fw.filename == "shiba_beta-ota-bp31.250502.008-4e0bc4e8.zip"
    assert fw.release_version == "bp31.250502.008"
    assert fw.url == f"{DEFAULT_SOURCES.firmware_base_url}/{fw.filename}"


def test_find_firmware_honours_pinned_version() -> None:
    fw = find_firmware("shiba", "bp22.250221.010", session=page_session())
    assert fw.filename == "shiba_beta-ota-bp22.250221.010-1a2b3c4d.zip"


def test_find_firmware_without_match_raises_not_found() -> None:
    with pytest.raises(NotFoundError):
        find_firmware("oriole", session=page_session())
    with pytest.raises(NotFoundError):
        find_firmware("shiba", "bp99.1", session=page_session())


def test_extract_version_rejects_foreign_names() -> None:
    assert extract_version("husky_beta-ota-bp31.250502.008-deadbeef.zip", "husky") == "bp31.250502.008"
    with pytest.raises(ParseError):
        extract_version("husky-ota.zip", "husky")


def test_extract_version_requires_version_group() -> None:
    cfg = DEFAULT_SOURCES.with_overrides(filename_pattern=r"{device}-ota-[0-9]+\.zip")
    with pytest.raises(ParseError, match="version"):
        extract_version("shiba-ota-1.zip", "shiba", cfg)


def test_pinned_tool_version_needs_no_network() -> None:
    sess = FakeSession()
    assert resolve_tool_version("avbroot", "3.16.1", session=sess) == "3.16.1"
    assert sess.calls == []


def test_latest_tool_version_uses_release_tag() -> None:
    sess = FakeSession({("GET", LATEST_AVBROOT): FakeResponse(payload={"tag_name": "v3.17.0"})})
    assert resolve_tool_version("avbroot", "latest", session=sess) == "v3.17.0"


def test_latest_tool_version_failures() -> None:
    sess = FakeSession({("GET", LATEST_AVBROOT): FakeResponse(status_code=404, payload={})})
    with pytest.raises(ResolutionError):
        resolve_tool_version("avbroot", "latest", session=sess)

    sess = FakeSession({("GET", LATEST_AVBROOT): FakeResponse(payload={"name": "untagged"})})
    with pytest.raises(ResolutionError):
        resolve_tool_version("avbroot", "latest", session=sess)

    with pytest.raises(ResolutionError):
        resolve_tool_version("fastboot", "latest", session=FakeSession())


def test_server_errors_become_network_errors() -> None:
    sess = FakeSession({("GET", DEFAULT_SOURCES.info_page_url): FakeResponse(status_code=503)})
    with pytest.raises(NetworkError) as excinfo:
        find_firmware("shiba", session=sess)
    assert excinfo.value.status_code == 503


def test_resolve_combines_firmware_and_tools() -> None:
    sess = page_session()
    sess.routes[("GET", LATEST_AVBROOT)] = FakeResponse(payload={"tag_name": "v3.17.0"})
    resolved = resolve("shiba", "latest", {"avbroot": "latest", "custota": "5.8"}, session=sess)
    assert resolved.release_version == "bp31.250502.008"
    assert resolved.tool_versions == {"avbroot": "v3.17.0", "custota": "5.8"}

from __future__ import annotations

from release.context import Flavor, RemoteRelease
from release.github import GitHubClient
from release.planner import plan, reconcile
from tests.helpers import FakeResponse, FakeSession, make_config, make_context, release_payload

TAG = "bp31.250502.008"


def client_for(payload) -> tuple[GitHubClient, FakeSession]:
    sess = FakeSession()
    client = GitHubClient("owner/rooted", "tok", session=sess)
    url = f"{client.cfg.api_url}/repos/owner/rooted/releases/tags/{TAG}"
    sess.routes[("GET", url)] = FakeResponse(status_code=404, payload={}) if payload is None else FakeResponse(payload=payload)
    return client, sess


def test_without_credentials_everything_is_pending(tmp_path) -> None:
    ctx = make_context(make_config(tmp_path, github_token=""))
    assert plan(ctx, None).pending == ctx.pending


def test_without_release_everything_is_pending(tmp_path) -> None:
    ctx = make_context(make_config(tmp_path))
    client, _ = client_for(None)
    planned = plan(ctx, client)
    assert planned.pending == ctx.pending
    assert planned.stale_assets == ()


def test_exact_match_is_dropped(tmp_path) -> None:
    ctx = make_context(make_config(tmp_path))
    magisk = ctx.pending[Flavor.MAGISK]
    client, _ = client_for(release_payload(1, TAG, [magisk.remote_asset_name, magisk.csig_name]))

    planned = plan(ctx, client)

    assert set(planned.pending) == {Flavor.ROOTLESS}
    assert planned.stale_assets == ()
    assert planned.release_id == 1


def test_second_run_converges_to_noop(tmp_path) -> None:
    ctx = make_context(make_config(tmp_path))
    names = [t.remote_asset_name for t in ctx.pending.values()] + [t.csig_name for t in ctx.pending.values()]
    client, _ = client_for(release_payload(1, TAG, names))

    planned = plan(ctx, client)

    assert planned.is_empty
    assert set(planned.pending) <= set(ctx.pending)


def test_stale_asset_is_replaced(tmp_path) -> None:
    cfg = make_config(tmp_path, device_id="device", skip_rootless=True)
    ctx = make_context(cfg, revision="bbb", versions=None)
    old = [f"device-{TAG}-magisk-v1-aaa.zip", f"device-{TAG}-magisk-v1-aaa.zip.csig", "unrelated.zip"]
    client, _ = client_for(release_payload(3, TAG, old))

    planned = plan(ctx, client)

    assert set(planned.pending) == {Flavor.MAGISK}
    assert planned.pending[Flavor.MAGISK].filename == f"device-{TAG}-magisk-v29.0-bbb.zip"
    assert sorted(a.name for a in planned.stale_assets) == sorted(old[:2])


def test_force_build_keeps_flavor_pending(tmp_path) -> None:
    ctx = make_context(make_config(tmp_path, force_build=True))
    release = RemoteRelease.from_json(
        release_payload(1, TAG, [t.remote_asset_name for t in ctx.pending.values()])
    )
    satisfied, stale = reconcile(release, ctx.pending, "shiba", TAG, force=True)
    assert satisfied == set()
    assert stale == ()


def test_test_channel_overrides_exact_match(tmp_path) -> None:
    ctx = make_context(make_config(tmp_path, ota_test_channel=True))
    names = [t.remote_asset_name for t in ctx.pending.values()]
    assert all(n.endswith("-test.zip") for n in names)
    client, _ = client_for(release_payload(1, TAG, names))
    assert plan(ctx, client).pending == ctx.pending


def test_prefix_of_other_flavor_is_ignored(tmp_path) -> None:
    ctx = make_context(make_config(tmp_path, skip_rootless=True))
    release = RemoteRelease.from_json(release_payload(1, TAG, [f"shiba-{TAG}-rootless-abc.zip"]))
    satisfied, stale = reconcile(release, ctx.pending, "shiba", TAG)
    assert satisfied == set()
    assert stale == ()


def test_test_channel_run_keeps_stable_assets(tmp_path) -> None:
    ctx = make_context(make_config(tmp_path, ota_test_channel=True, skip_rootless=True))
    stable = f"shiba-{TAG}-magisk-v29.0-4647f74.zip"
    release = RemoteRelease.from_json(release_payload(1, TAG, [stable, stable + ".csig"]))

    satisfied, stale = reconcile(release, ctx.pending, "shiba", TAG, force=True, test_channel=True)

    assert satisfied == set()
    assert stale == ()


def test_stable_run_keeps_test_channel_assets(tmp_path) -> None:
    ctx = make_context(make_config(tmp_path, skip_rootless=True), revision="bbb")
    old_test = f"shiba-{TAG}-magisk-v29.0-aaa-test.zip"
    old_stable = f"shiba-{TAG}-magisk-v29.0-aaa.zip"
    client, _ = client_for(release_payload(1, TAG, [old_test, old_test + ".csig", old_stable]))

    planned = plan(ctx, client)

    assert set(planned.pending) == {Flavor.MAGISK}
    assert [a.name for a in planned.stale_assets] == [old_stable]

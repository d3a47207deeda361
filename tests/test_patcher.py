from __future__ import annotations

import base64

import pytest

from ota.errors import ConfigError, NotFoundError, SubprocessError
from ota.tools import Passphrases
from release.context import Flavor
from release.patcher import KeyMaterial, patch
from tests.helpers import RecordingRunner, make_config, make_context

NO_PASSPHRASES = Passphrases()


def encoded_keys() -> dict:
    return {
        "key_avb_base64": base64.b64encode(b"avb-key").decode(),
        "key_ota_base64": base64.b64encode(b"ota-key").decode(),
        "cert_ota_base64": base64.b64encode(b"ota-cert").decode(),
    }


def with_inputs(ctx, tmp_path):
    return ctx.with_inputs(
        firmware=tmp_path / "ota.zip",
        avbroot=tmp_path / "avbroot",
        magisk=tmp_path / "magisk.apk",
        ksud=tmp_path / "ksud",
        magiskboot=tmp_path / "libmagiskboot.so",
    )


def produce_output(argv) -> None:
    """Mimic avbroot/ksud writing their outputs."""
    if "--output" in argv:
        open(argv[argv.index("--output") + 1], "wb").close()
    if "boot-patch" in argv:
        out_dir = argv[argv.index("-o") + 1]
        open(f"{out_dir}/kernelsu_patched_20250101.img", "wb").close()


def test_base64_keys_are_written_privately(tmp_path) -> None:
    cfg = make_config(tmp_path, **encoded_keys())
    keys = KeyMaterial.materialize(cfg, tmp_path / "work")
    assert keys.key_avb == tmp_path / "work" / "avb.key"
    assert keys.key_avb.read_bytes() == b"avb-key"
    assert keys.cert_ota.read_bytes() == b"ota-cert"
    assert keys.key_ota.stat().st_mode & 0o777 == 0o600


def test_key_files_are_used_as_is(tmp_path) -> None:
    for name in ("avb.key", "ota.key", "ota.crt"):
        (tmp_path / name).write_bytes(b"k")
    cfg = make_config(
        tmp_path,
        key_avb=str(tmp_path / "avb.key"),
        key_ota=str(tmp_path / "ota.key"),
        cert_ota=str(tmp_path / "ota.crt"),
    )
    keys = KeyMaterial.materialize(cfg, tmp_path / "work")
    assert keys.key_ota == tmp_path / "ota.key"


def test_missing_key_file_is_config_error(tmp_path) -> None:
    cfg = make_config(tmp_path, key_avb=str(tmp_path / "nope.key"))
    with pytest.raises(ConfigError, match="KEY_AVB"):
        KeyMaterial.materialize(cfg, tmp_path / "work")


def test_each_flavor_gets_its_root_option(tmp_path) -> None:
    cfg = make_config(tmp_path, kernelsu_kmi="android14-6.1", **encoded_keys())
    ctx = with_inputs(make_context(cfg), tmp_path)
    runner = RecordingRunner(produce_output)

    patched = patch(ctx, runner, NO_PASSPHRASES)

    patches = [c for c in runner.calls if c[1:3] == ["ota", "patch"]]
    assert len(patches) == 3
    by_output = {c[c.index("--output") + 1]: c for c in patches}
    magisk = by_output[str(ctx.pending[Flavor.MAGISK].local_path) + ".part"]
    assert magisk[magisk.index("--magisk") + 1] == str(tmp_path / "magisk.apk")
    assert magisk[magisk.index("--magisk-preinit-device") + 1] == "sda10"
    rootless = by_output[str(ctx.pending[Flavor.ROOTLESS].local_path) + ".part"]
    assert "--rootless" in rootless
    kernelsu = by_output[str(ctx.pending[Flavor.KERNELSU].local_path) + ".part"]
    assert kernelsu[kernelsu.index("--prepatched") + 1].endswith("kernelsu_patched_20250101.img")
    assert ("avbroot", "ota", "extract") in runner.subcommands()
    assert ("ksud", "boot-patch", "-b") in runner.subcommands()
    assert all(t.local_path.exists() for t in ctx.pending.values())
    assert patched.keys is not None
    assert not any("--pass-avb-env-var" in c for c in patches)


def test_passphrase_variable_names_are_passed(tmp_path) -> None:
    cfg = make_config(tmp_path, skip_rootless=True, **encoded_keys())
    ctx = with_inputs(make_context(cfg), tmp_path)
    runner = RecordingRunner(produce_output)

    patch(ctx, runner, Passphrases("PASSPHRASE_AVB", "PASSPHRASE_OTA"))

    (argv,) = runner.calls
    assert argv[-4:] == ["--pass-avb-env-var", "PASSPHRASE_AVB", "--pass-ota-env-var", "PASSPHRASE_OTA"]


def test_existing_artifact_is_not_rebuilt(tmp_path) -> None:
    cfg = make_config(tmp_path, **encoded_keys())
    ctx = with_inputs(make_context(cfg), tmp_path)
    ctx.work_dir.mkdir(parents=True)
    ctx.pending[Flavor.MAGISK].local_path.write_bytes(b"done")
    runner = RecordingRunner(produce_output)

    patch(ctx, runner, NO_PASSPHRASES)

    assert len(runner.calls) == 1
    assert "--rootless" in runner.calls[0]


def test_failed_patch_leaves_no_artifact(tmp_path) -> None:
    cfg = make_config(tmp_path, skip_rootless=True, **encoded_keys())
    ctx = with_inputs(make_context(cfg), tmp_path)

    def fail(argv):
        raise SubprocessError(argv, 1)

    with pytest.raises(SubprocessError):
        patch(ctx, fail, NO_PASSPHRASES)
    assert not ctx.pending[Flavor.MAGISK].local_path.exists()


def test_kernelsu_without_patched_image(tmp_path) -> None:
    cfg = make_config(tmp_path, magisk_preinit_device="", kernelsu_kmi="android14-6.1", skip_rootless=True, **encoded_keys())
    ctx = with_inputs(make_context(cfg), tmp_path)
    with pytest.raises(NotFoundError):
        patch(ctx, RecordingRunner(), NO_PASSPHRASES)

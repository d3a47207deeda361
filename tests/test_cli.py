from __future__ import annotations

import logging
from types import SimpleNamespace

import pytest

import app.__main__ as cli
from app import logging_setup
from ota.errors import ConfigError, SubprocessError


@pytest.fixture(autouse=True)
def isolated(monkeypatch):
    monkeypatch.delenv("ROOTED_OTA_CONFIG", raising=False)
    level = logging.getLogger().level
    yield
    logging_setup.reset_logging()
    logging.getLogger().setLevel(level)


def test_release_runs_full_pipeline(monkeypatch) -> None:
    seen = {}

    def fake_run(config, publish):
        seen.update(device=config.device_id, publish=publish, debug=config.debug)
        return SimpleNamespace(is_empty=True)

    monkeypatch.setattr(cli, "run_pipeline", fake_run)
    assert cli.main(["--device-id", "shiba", "--debug", "release"]) == 0
    assert seen == {"device": "shiba", "publish": True, "debug": True}


def test_build_does_not_publish(monkeypatch) -> None:
    seen = {}

    def fake_run(config, publish):
        seen["publish"] = publish
        return SimpleNamespace(is_empty=False)

    monkeypatch.setattr(cli, "run_pipeline", fake_run)
    assert cli.main(["build"]) == 0
    assert seen["publish"] is False


@pytest.mark.parametrize("error", [ConfigError("missing mandatory param DEVICE_ID"), SubprocessError(["avbroot", "ota"], 2)])
def test_pipeline_errors_exit_with_one(monkeypatch, caplog, error) -> None:
    def fail(config, publish):
        raise error

    monkeypatch.setattr(cli, "run_pipeline", fail)
    with caplog.at_level(logging.ERROR):
        assert cli.main(["release"]) == 1
    assert str(error) in caplog.text


def test_generate_keys_prints_base64(monkeypatch, capsys) -> None:
    monkeypatch.setattr(cli, "generate_keys", lambda config: {"KEY_AVB_BASE64": "YWJj"})
    assert cli.main(["generate-keys"]) == 0
    assert "KEY_AVB_BASE64=YWJj" in capsys.readouterr().out


def test_subcommand_is_required() -> None:
    with pytest.raises(SystemExit):
        cli.main([])

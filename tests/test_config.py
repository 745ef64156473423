from __future__ import annotations

import os

import pytest

from showya import config
from showya.config import load_settings, settings_as_dict, update_config_file


@pytest.fixture()
def isolated_env(monkeypatch, tmp_path):
    for key in list(os.environ):
        if key.startswith("SHOWYA_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("SHOWYA_BASE_DIR", str(tmp_path))
    return tmp_path


def test_defaults_resolve_paths_under_base_dir(isolated_env):
    loaded = load_settings()
    assert loaded.data_dir == isolated_env / "data"
    assert loaded.database_path == isolated_env / "data" / "showya.db"
    assert loaded.platform_fee_percent == 5.0
    assert loaded.data_dir.exists()


def test_env_overrides_toml(isolated_env, monkeypatch):
    (isolated_env / "showya.toml").write_text(
        'app_port = 9000\nenable_scheduler = false\ncurrency = "INR"\n'
    )
    monkeypatch.setenv("SHOWYA_APP_PORT", "9100")
    loaded = load_settings()
    assert loaded.app_port == 9100
    assert loaded.enable_scheduler is False


def test_settings_as_dict_masks_secrets(isolated_env, monkeypatch):
    monkeypatch.setenv("SHOWYA_RAZORPAY_KEY_SECRET", "shh")
    payload = settings_as_dict(load_settings())
    assert payload["razorpay_key_secret"] == "********"
    assert payload["resend_api_key"] == ""


def test_update_config_file_never_persists_secrets(isolated_env, monkeypatch):
    monkeypatch.setattr(config, "settings", config.settings)
    target = isolated_env / "showya.toml"
    updated = update_config_file(
        {"app_port": "8100", "razorpay_key_secret": "leak", "unknown": 1}, path=target
    )
    text = target.read_text()
    assert "app_port = 8100" in text
    assert "leak" not in text
    assert "unknown" not in text
    assert updated.app_port == 8100


def test_invalid_boolean_is_rejected(isolated_env, monkeypatch):
    monkeypatch.setenv("SHOWYA_ENABLE_SCHEDULER", "maybe")
    with pytest.raises(ValueError):
        load_settings()

"""Global configuration for Showya."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

DEFAULTS: dict[str, Any] = {
    "app_host": "0.0.0.0",
    "app_port": 8000,
    "app_base_url": "https://showya.in",
    "enable_scheduler": True,
    "currency": "INR",
    "platform_fee_percent": 5.0,
    "full_refund_hours": 24.0,
    "partial_refund_hours": 2.0,
    "partial_refund_percent": 75,
    "delete_cutoff_hours": 1.0,
    "default_edit_window_minutes": 60,
    "default_audience_slots": 50,
    "jaas_token_ttl_hours": 3,
    "payment_sync_lookback_hours": 24,
    "payment_sync_interval_minutes": 15,
    "http_timeout_seconds": 15.0,
    "dev_origins": "localhost,127.0.0.1",
    "seed_users": 12,
    "seed_communities": 3,
    "seed_events_per_community": 3,
    "razorpay_api_base": "https://api.razorpay.com",
    "razorpay_key_id": "",
    "razorpay_key_secret": "",
    "razorpay_key_id_test": "",
    "razorpay_key_secret_test": "",
    "razorpay_webhook_secret": "",
    "jaas_app_id": "",
    "jaas_private_key": "",
    "resend_api_key": "",
    "database_url": "",
    "email_from": "Showya <notifications@showya.in>",
}

SECRET_KEYS = {
    "database_url",
    "razorpay_key_secret",
    "razorpay_key_secret_test",
    "razorpay_webhook_secret",
    "jaas_private_key",
    "resend_api_key",
}

TYPE_CASTERS: dict[str, Callable[[Any], Any]] = {
    "app_host": str,
    "app_port": int,
    "app_base_url": str,
    "enable_scheduler": bool,
    "currency": str,
    "platform_fee_percent": float,
    "full_refund_hours": float,
    "partial_refund_hours": float,
    "partial_refund_percent": int,
    "delete_cutoff_hours": float,
    "default_edit_window_minutes": int,
    "default_audience_slots": int,
    "jaas_token_ttl_hours": int,
    "payment_sync_lookback_hours": int,
    "payment_sync_interval_minutes": int,
    "http_timeout_seconds": float,
    "dev_origins": str,
    "seed_users": int,
    "seed_communities": int,
    "seed_events_per_community": int,
    "razorpay_api_base": str,
    "razorpay_key_id": str,
    "razorpay_key_secret": str,
    "razorpay_key_id_test": str,
    "razorpay_key_secret_test": str,
    "razorpay_webhook_secret": str,
    "jaas_app_id": str,
    "jaas_private_key": str,
    "resend_api_key": str,
    "database_url": str,
    "email_from": str,
}


@dataclass(frozen=True)
class Settings:
    base_dir: Path
    data_dir: Path
    database_path: Path
    app_host: str
    app_port: int
    app_base_url: str
    enable_scheduler: bool
    currency: str
    platform_fee_percent: float
    full_refund_hours: float
    partial_refund_hours: float
    partial_refund_percent: int
    delete_cutoff_hours: float
    default_edit_window_minutes: int
    default_audience_slots: int
    jaas_token_ttl_hours: int
    payment_sync_lookback_hours: int
    payment_sync_interval_minutes: int
    http_timeout_seconds: float
    dev_origins: str
    seed_users: int
    seed_communities: int
    seed_events_per_community: int
    razorpay_api_base: str
    razorpay_key_id: str
    razorpay_key_secret: str
    razorpay_key_id_test: str
    razorpay_key_secret_test: str
    razorpay_webhook_secret: str
    jaas_app_id: str
    jaas_private_key: str
    resend_api_key: str
    database_url: str
    email_from: str
    root_token_key: str
    config_path: Path

    @property
    def dev_origin_patterns(self) -> list[str]:
        return [part.strip() for part in self.dev_origins.split(",") if part.strip()]


def _boolify(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Cannot parse boolean value from {value!r}")


def _cast_value(key: str, value: Any) -> Any:
    if key not in TYPE_CASTERS:
        return value
    caster = TYPE_CASTERS[key]
    if caster is bool:
        return _boolify(value)
    return caster(value)


def _load_toml_config(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        return tomllib.load(handle)


def _config_layered_value(key: str, *, toml_config: dict[str, Any]) -> Any:
    env_key = f"SHOWYA_{key.upper()}"
    if env_key in os.environ:
        return _cast_value(key, os.environ[env_key])
    if key in toml_config:
        return _cast_value(key, toml_config[key])
    return DEFAULTS[key]


def _resolve_paths(
    *,
    base_dir: Path,
    data_dir: str | Path | None,
    database_path: str | Path | None,
):
    resolved_base = Path(base_dir)
    resolved_data = Path(data_dir) if data_dir else resolved_base / "data"
    if not resolved_data.is_absolute():
        resolved_data = resolved_base / resolved_data
    resolved_db = Path(database_path) if database_path else resolved_data / "showya.db"
    if not resolved_db.is_absolute():
        resolved_db = resolved_base / resolved_db
    return resolved_base, resolved_data, resolved_db


def load_settings(config_override: Path | None = None) -> Settings:
    base_dir = Path(os.getenv("SHOWYA_BASE_DIR", Path.cwd()))
    env_config = os.getenv("SHOWYA_CONFIG")
    config_path = Path(config_override or env_config or base_dir / "showya.toml")
    toml_config = _load_toml_config(config_path)

    base_dir_value, data_dir_value, database_path_value = _resolve_paths(
        base_dir=base_dir,
        data_dir=os.getenv("SHOWYA_DATA_DIR", toml_config.get("data_dir")),
        database_path=os.getenv("SHOWYA_DB", toml_config.get("database_path")),
    )

    layered = {
        key: _config_layered_value(key, toml_config=toml_config) for key in DEFAULTS
    }
    settings = Settings(
        base_dir=base_dir_value,
        data_dir=data_dir_value,
        database_path=database_path_value,
        root_token_key="root_admin_token",
        config_path=config_path,
        **layered,
    )
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    return settings


def settings_as_dict(settings: Settings) -> dict[str, Any]:
    """Return the effective configuration with secrets left out."""
    payload: dict[str, Any] = {
        "base_dir": str(settings.base_dir),
        "data_dir": str(settings.data_dir),
        "database_path": str(settings.database_path),
    }
    for key in DEFAULTS:
        if key in SECRET_KEYS:
            payload[key] = "********" if getattr(settings, key) else ""
            continue
        payload[key] = getattr(settings, key)
    return payload


def _toml_literal(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def write_config_file(config: dict[str, Any], *, path: Path) -> None:
    lines = ["# Showya configuration\n"]
    for key in sorted(config.keys()):
        lines.append(f"{key} = {_toml_literal(config[key])}\n")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(lines), encoding="utf-8")


def update_config_file(updates: dict[str, Any], *, path: Path | None = None) -> Settings:
    current_settings = settings if "settings" in globals() else load_settings()
    target_path = path or current_settings.config_path
    existing = _load_toml_config(target_path)
    merged = {**existing}
    for key, value in updates.items():
        # Secrets belong in the environment, never in the TOML file.
        if key not in DEFAULTS or key in SECRET_KEYS:
            continue
        merged[key] = _cast_value(key, value)
    write_config_file(merged, path=target_path)
    new_settings = load_settings(target_path)
    globals()["settings"] = new_settings
    return new_settings


settings = load_settings()

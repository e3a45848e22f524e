from __future__ import annotations

import pytest

from src.core.config import get_settings
from src.core.runtime import RuntimeConfig, load_runtime_config, reset_runtime_config_cache


def _clear_caches() -> None:
    get_settings.cache_clear()
    reset_runtime_config_cache()


def test_runtime_config_defaults_when_file_missing(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("RUNTIME_FILE_PATH", str(tmp_path / "runtime-missing.yaml"))
    _clear_caches()

    config = load_runtime_config()
    assert config == RuntimeConfig(disabled_providers=[], paused_platforms=[])
    assert config.is_provider_disabled("sora") is False


def test_runtime_config_normalizes_switches(monkeypatch, tmp_path) -> None:
    runtime_path = tmp_path / "runtime.yaml"
    runtime_path.write_text(
        "disabled_providers:\n  - ' Sora '\n  - runway\npaused_platforms: Instagram, youtube\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("RUNTIME_FILE_PATH", str(runtime_path))
    _clear_caches()

    config = load_runtime_config()
    assert config.disabled_providers == ["sora", "runway"]
    assert config.paused_platforms == ["instagram", "youtube"]
    assert config.is_provider_disabled("SORA") is True
    assert config.is_platform_paused("instagram") is True
    assert config.is_platform_paused("tiktok") is False


def test_runtime_config_treats_empty_file_as_defaults(monkeypatch, tmp_path) -> None:
    runtime_path = tmp_path / "runtime-empty.yaml"
    runtime_path.write_text("", encoding="utf-8")
    monkeypatch.setenv("RUNTIME_FILE_PATH", str(runtime_path))
    _clear_caches()

    assert load_runtime_config() == RuntimeConfig()


def test_runtime_config_rejects_non_mapping(monkeypatch, tmp_path) -> None:
    runtime_path = tmp_path / "runtime-invalid.yaml"
    runtime_path.write_text("- sora\n- veo\n", encoding="utf-8")
    monkeypatch.setenv("RUNTIME_FILE_PATH", str(runtime_path))
    _clear_caches()

    with pytest.raises(ValueError):
        load_runtime_config()


def test_runtime_config_rejects_scalar_switch(monkeypatch, tmp_path) -> None:
    runtime_path = tmp_path / "runtime-scalar.yaml"
    runtime_path.write_text("disabled_providers: 3\n", encoding="utf-8")
    monkeypatch.setenv("RUNTIME_FILE_PATH", str(runtime_path))
    _clear_caches()

    with pytest.raises(ValueError):
        load_runtime_config()

"""Tests for config.py - settings from TOML and the environment."""

from __future__ import annotations

from pathlib import Path

import pytest

from matrix_engine.config import ConfigError, EngineSettings, load_settings


class TestLoadSettings:
    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Missing config file"):
            load_settings(tmp_path / "absent.toml")

    def test_directory_instead_of_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not a file"):
            load_settings(tmp_path)

    def test_values_come_from_toml(self, tmp_path: Path) -> None:
        cfg = tmp_path / "engine.toml"
        cfg.write_text(
            'server_url = "https://matrix.example.org"\n'
            "page_size = 25\n"
            'media_api_prefix = "/_matrix/media/r0"\n'
        )

        settings, path = load_settings(cfg)

        assert path == cfg
        assert settings.server_url == "https://matrix.example.org"
        assert settings.page_size == 25
        assert settings.media_api_prefix == "/_matrix/media/r0"
        assert settings.client_api_prefix == "/_matrix/client/v3"

    def test_environment_overrides_toml(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        cfg = tmp_path / "engine.toml"
        cfg.write_text("page_size = 25\n")
        monkeypatch.setenv("MATRIX_ENGINE__PAGE_SIZE", "7")

        settings, _ = load_settings(cfg)

        assert settings.page_size == 7

    def test_invalid_value_raises(self, tmp_path: Path) -> None:
        cfg = tmp_path / "engine.toml"
        cfg.write_text("page_size = 0\n")

        with pytest.raises(ConfigError, match="Invalid config"):
            load_settings(cfg)


def test_defaults() -> None:
    settings = EngineSettings()
    assert settings.sync_timeout_ms == 30000
    assert settings.thumbnail_size == 64
    assert settings.cache_dir.name == "matrix-engine"

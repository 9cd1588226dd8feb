"""
Tests for settings resolution: defaults, YAML file, environment, overrides.
"""

import logging
from pathlib import Path

import pytest

from mirroring_service.config import DEFAULT_NAMESPACE, DEFAULT_PORT, ServiceSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("MIRRORING_HOST", "MIRRORING_PORT", "MIRRORING_STORAGE",
                 "MIRRORING_NAMESPACE", "MIRRORING_CONFIG"):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:

    def test_defaults(self):
        settings = ServiceSettings.load()
        assert settings.port == DEFAULT_PORT
        assert settings.namespace == DEFAULT_NAMESPACE
        assert settings.endpoint == f"http://127.0.0.1:{DEFAULT_PORT}"

    def test_registry_path(self, tmp_path):
        settings = ServiceSettings(storage_dir=tmp_path, namespace="ns")
        assert settings.registry_path == tmp_path / "ns.json"


class TestEnvironment:

    def test_env_overrides_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MIRRORING_PORT", "9999")
        monkeypatch.setenv("MIRRORING_STORAGE", str(tmp_path))
        monkeypatch.setenv("MIRRORING_NAMESPACE", "custom")

        settings = ServiceSettings.load()

        assert settings.port == 9999
        assert settings.storage_dir == tmp_path
        assert settings.namespace == "custom"

    def test_empty_env_is_ignored(self, monkeypatch):
        monkeypatch.setenv("MIRRORING_HOST", "")
        assert ServiceSettings.load().host == "127.0.0.1"


class TestConfigFile:

    def test_file_values(self, tmp_path):
        config = tmp_path / "mirroring.yaml"
        config.write_text("port: 7000\nnamespace: from-file\n")

        settings = ServiceSettings.load(config)

        assert settings.port == 7000
        assert settings.namespace == "from-file"

    def test_config_from_env(self, monkeypatch, tmp_path):
        config = tmp_path / "mirroring.yaml"
        config.write_text("port: 7001\n")
        monkeypatch.setenv("MIRRORING_CONFIG", str(config))
        assert ServiceSettings.load().port == 7001

    def test_env_beats_file(self, monkeypatch, tmp_path):
        config = tmp_path / "mirroring.yaml"
        config.write_text("port: 7000\n")
        monkeypatch.setenv("MIRRORING_PORT", "7002")
        assert ServiceSettings.load(config).port == 7002

    def test_unknown_keys_warn(self, tmp_path, caplog):
        config = tmp_path / "mirroring.yaml"
        config.write_text("port: 7000\nreplicas: 3\n")

        with caplog.at_level(logging.WARNING, logger="mirroring_service.config"):
            settings = ServiceSettings.load(config)

        assert settings.port == 7000
        assert "replicas" in caplog.text

    def test_non_mapping_rejected(self, tmp_path):
        config = tmp_path / "mirroring.yaml"
        config.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            ServiceSettings.load(config)


class TestOverrides:

    def test_flags_beat_env(self, monkeypatch):
        monkeypatch.setenv("MIRRORING_PORT", "7002")
        assert ServiceSettings.load(port=7003).port == 7003

    def test_none_overrides_are_ignored(self):
        assert ServiceSettings.load(host=None, port=None).port == DEFAULT_PORT

    def test_coercion(self):
        settings = ServiceSettings().with_overrides(
            port="8000", probe_timeout="2", storage_dir="~/mirrors",
        )
        assert settings.port == 8000
        assert settings.probe_timeout == 2.0
        assert settings.storage_dir == Path("~/mirrors").expanduser()

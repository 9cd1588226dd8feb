"""
Tests for the command-line interface against a running service.
"""

import json

import pytest
from click.testing import CliRunner

from mirroring_service.main import cli


@pytest.fixture(autouse=True)
def keep_test_logging(monkeypatch):
    # The runner's captured stderr is closed after each invoke
    monkeypatch.setattr("mirroring_service.main.setup_logging", lambda **kwargs: None)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, service):
    """Invoke the CLI pointed at the test service."""
    def _invoke(*args):
        return runner.invoke(cli, ["--port", str(service.server.port), *args], obj={})
    return _invoke


class TestControlCommands:

    def test_mirror(self, invoke, service, new_key):
        key_hex = new_key().hex()

        result = invoke("mirror", key_hex)

        assert result.exit_code == 0, result.output
        assert "mirroring" in result.output
        assert service.manager.active_keys() == [key_hex]

    def test_status_json(self, invoke, new_key):
        key_hex = new_key().hex()
        invoke("mirror", key_hex)

        result = invoke("status", key_hex, "--json")

        assert result.exit_code == 0
        assert json.loads(result.output) == {"key": key_hex, "type": "unichain", "mirroring": True}

    def test_unmirror(self, invoke, service, new_key):
        key_hex = new_key().hex()
        invoke("mirror", key_hex)

        result = invoke("unmirror", key_hex)

        assert result.exit_code == 0
        assert "not mirroring" in result.output
        assert service.manager.active_keys() == []

    def test_list(self, invoke, new_key):
        keys = sorted(new_key().hex() for _ in range(2))
        for key_hex in keys:
            invoke("mirror", key_hex)

        result = invoke("list", "--json")

        assert result.exit_code == 0
        listed = [entry["key"] for entry in json.loads(result.output)["mirroring"]]
        assert listed == keys

    def test_list_empty(self, invoke):
        result = invoke("list")
        assert result.exit_code == 0
        assert "Nothing is being mirrored" in result.output

    def test_invalid_key(self, invoke):
        result = invoke("mirror", "not-a-key")
        assert result.exit_code == 1
        assert "not valid hex" in result.output

    def test_invalid_type_rejected_locally(self, invoke, new_key):
        result = invoke("mirror", new_key().hex(), "--type", "hypertrie")
        assert result.exit_code == 2

    def test_stop(self, invoke, service):
        result = invoke("stop")
        assert result.exit_code == 0
        assert service.wait(5) is True


class TestOpsCommands:

    def test_health(self, invoke):
        result = invoke("health", "--json")
        assert result.exit_code == 0
        assert json.loads(result.output)["status"] == "ok"

    def test_health_when_down(self, runner, settings):
        result = runner.invoke(cli, ["--port", str(settings.port), "health"], obj={})
        assert result.exit_code == 1
        assert "DOWN" in result.output

    def test_metrics(self, invoke):
        result = invoke("metrics")
        assert result.exit_code == 0
        assert "mirroring_client_connections_total" in result.output

    def test_metrics_json(self, invoke):
        result = invoke("metrics", "--format", "json")
        assert result.exit_code == 0
        samples = json.loads(result.output)
        assert any(s["sample"] == "mirroring_client_connections_total" for s in samples)

"""
Tests for the control API routes.

Uses the Flask test client against a fully opened service.
"""

from unittest.mock import patch

import pytest

from mirroring_service.server import ClientInfo


@pytest.fixture
def key_hex(new_key):
    return new_key().hex()


class TestMirrorRoutes:

    def test_mirror(self, api, service, key_hex):
        response = api.post("/api/mirror", json={"key": key_hex})

        assert response.status_code == 200
        assert response.get_json() == {"key": key_hex, "type": "unichain", "mirroring": True}
        assert service.manager.active_keys() == [key_hex]

    def test_echoes_key_as_supplied(self, api, key_hex):
        supplied = key_hex.upper()
        response = api.post("/api/mirror", json={"key": supplied})
        assert response.get_json()["key"] == supplied

    def test_status(self, api, key_hex):
        before = api.post("/api/status", json={"key": key_hex}).get_json()
        api.post("/api/mirror", json={"key": key_hex})
        after = api.post("/api/status", json={"key": key_hex}).get_json()

        assert before["mirroring"] is False
        assert after["mirroring"] is True

    def test_unmirror(self, api, service, key_hex):
        api.post("/api/mirror", json={"key": key_hex})

        response = api.post("/api/unmirror", json={"key": key_hex})

        assert response.status_code == 200
        assert response.get_json()["mirroring"] is False
        assert service.manager.active_keys() == []

    def test_unmirror_unknown(self, api, key_hex):
        response = api.post("/api/unmirror", json={"key": key_hex})
        assert response.status_code == 200
        assert response.get_json()["mirroring"] is False

    def test_mirror_drive(self, api, service, swarm, new_key):
        drive_key, content_key = new_key(), new_key()
        swarm.publish_drive(drive_key, content_key)

        response = api.post("/api/mirror", json={"key": drive_key.hex(), "type": "bitdrive"})

        assert response.status_code == 200
        assert response.get_json()["type"] == "bitdrive"
        assert service.manager.active_keys() == sorted([drive_key.hex(), content_key.hex()])


class TestList:

    def test_empty(self, api):
        assert api.get("/api/list").get_json() == {"mirroring": []}

    def test_lists_targets(self, api, swarm, new_key, key_hex):
        drive_key = new_key()
        swarm.publish_drive(drive_key, new_key())
        api.post("/api/mirror", json={"key": key_hex})
        api.post("/api/mirror", json={"key": drive_key.hex(), "type": "bitdrive"})
        api.post("/api/unmirror", json={"key": key_hex})

        assert api.get("/api/list").get_json() == {
            "mirroring": [{"key": drive_key.hex(), "type": "bitdrive", "mirroring": True}],
        }


class TestErrors:

    def test_invalid_key(self, api):
        response = api.post("/api/mirror", json={"key": "not-hex"})
        assert response.status_code == 400
        assert response.get_json()["error"] == "INVALID_KEY"

    def test_short_key(self, api):
        response = api.post("/api/status", json={"key": "abcd"})
        assert response.status_code == 400
        assert response.get_json()["context"] == {"length": 2}

    def test_unknown_type(self, api, key_hex):
        response = api.post("/api/mirror", json={"key": key_hex, "type": "hypertrie"})
        assert response.status_code == 400
        assert response.get_json()["error"] == "INVALID_TARGET"

    def test_missing_key(self, api):
        response = api.post("/api/mirror", json={"type": "unichain"})
        assert response.status_code == 400
        assert response.get_json()["error"] == "INVALID_TARGET"

    def test_body_not_json(self, api):
        response = api.post("/api/mirror", data="mirror please", content_type="text/plain")
        assert response.status_code == 400
        assert response.get_json()["error"] == "INVALID_TARGET"

    def test_unresolvable_drive(self, api, key_hex):
        response = api.post("/api/mirror", json={"key": key_hex, "type": "bitdrive"})
        assert response.status_code == 404
        assert response.get_json()["error"] == "DRIVE_RESOLUTION_FAILED"

    def test_closed_service(self, api, service, key_hex):
        service.close()
        response = api.post("/api/mirror", json={"key": key_hex})
        assert response.status_code == 503
        assert response.get_json()["error"] == "SERVICE_CLOSED"

    def test_unexpected_error_is_json(self, api, service):
        with patch.object(service.manager, "list", side_effect=RuntimeError("boom")):
            response = api.get("/api/list")
        assert response.status_code == 500
        assert response.get_json()["error"] == "INTERNAL_ERROR"


class TestOps:

    def test_health(self, api, key_hex):
        api.post("/api/mirror", json={"key": key_hex})
        health = api.get("/api/health").get_json()

        assert health["status"] == "ok"
        assert health["mirroring"] == 1
        assert health["active_downloads"] == 1
        assert health["server"]["listening"] is True

    def test_metrics(self, api, key_hex):
        api.post("/api/mirror", json={"key": key_hex})
        response = api.get("/api/metrics")

        assert response.status_code == 200
        assert response.mimetype == "text/plain"
        text = response.get_data(as_text=True)
        assert 'mirroring_mirror_requests_total{op="mirror",type="unichain"} 1' in text
        assert "mirroring_active_downloads 1" in text


class TestConnectionEvents:

    def test_client_open_and_close(self, api, service):
        opened, closed = [], []
        service.on("client-open", opened.append)
        service.on("client-close", closed.append)

        api.get("/api/list")

        assert len(opened) == 1
        assert isinstance(opened[0], ClientInfo)
        assert opened[0].method == "GET"
        assert opened[0].path == "/api/list"
        assert closed == opened

    def test_counts_connections(self, api, service):
        api.get("/api/list")
        api.get("/api/list")
        assert service.metrics.counter("client_connections_total").get() == 2

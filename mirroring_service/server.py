"""
Control Server — Flask app exposing the mirroring control API.

The server holds no mirror state of its own: every request is dispatched
to the service's MirrorManager. It should only ever be bound to a local
address.

Routes (prefix /api):
    POST /mirror     {key, type?} → {key, type, mirroring}
    POST /unmirror   {key, type?} → {key, type, mirroring}
    POST /status     {key, type?} → {key, type, mirroring}
    GET  /list                    → {mirroring: [...]}
    POST /stop                    → {stopping: true}
    GET  /health                  → service health
    GET  /metrics                 → Prometheus text
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional

from flask import Blueprint, Flask, current_app, g, jsonify, request
from pydantic import ValidationError
from werkzeug.serving import BaseWSGIServer, make_server

from .errors import (
    DriveResolutionError,
    InvalidTargetError,
    MirroringError,
    NetworkUnavailableError,
    ServiceClosedError,
)
from .manager import MirrorManager
from .models import MirrorRequest

if TYPE_CHECKING:
    from .service import MirroringService

logger = logging.getLogger(__name__)

# Error class → HTTP status
_STATUS_CODES = (
    (InvalidTargetError, 400),
    (DriveResolutionError, 404),
    (NetworkUnavailableError, 503),
    (ServiceClosedError, 503),
)


@dataclass(frozen=True)
class ClientInfo:
    """Describes one control-channel request, passed to connection events."""

    address: Optional[str]
    method: str
    path: str


control_bp = Blueprint("control", __name__)


def _service() -> "MirroringService":
    return current_app.config["MIRRORING_SERVICE"]


def _manager() -> MirrorManager:
    return _service().require_manager()


def _request_body() -> MirrorRequest:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidTargetError("Request body must be a JSON object")
    try:
        return MirrorRequest(**data)
    except ValidationError as e:
        raise InvalidTargetError(f"Invalid request: {e.errors()[0]['msg']}") from e


@control_bp.route("/mirror", methods=["POST"])
def api_mirror():
    """Start mirroring a chain or drive."""
    body = _request_body()
    status = _manager().mirror(body.target())
    return jsonify(status.echo(body.key).to_api_dict())


@control_bp.route("/unmirror", methods=["POST"])
def api_unmirror():
    """Stop mirroring a chain or drive."""
    body = _request_body()
    status = _manager().unmirror(body.target())
    return jsonify(status.echo(body.key).to_api_dict())


@control_bp.route("/status", methods=["POST"])
def api_status():
    """Report whether a target is being mirrored."""
    body = _request_body()
    status = _manager().status(body.target())
    return jsonify(status.echo(body.key).to_api_dict())


@control_bp.route("/list", methods=["GET"])
def api_list():
    """List every mirrored target."""
    return jsonify(_manager().list().to_api_dict())


@control_bp.route("/stop", methods=["POST"])
def api_stop():
    """Shut the service down once this response has been sent."""
    logger.info("[server] Stop requested by client")
    _service().close_async()
    return jsonify({"stopping": True})


@control_bp.route("/health", methods=["GET"])
def api_health():
    return jsonify(_service().health())


@control_bp.route("/metrics", methods=["GET"])
def api_metrics():
    return current_app.response_class(
        _service().metrics.export_prometheus(),
        mimetype="text/plain; version=0.0.4",
    )


def create_app(service: "MirroringService") -> Flask:
    """Create the control API application for a service."""
    app = Flask(__name__)
    app.config["MIRRORING_SERVICE"] = service
    app.register_blueprint(control_bp, url_prefix="/api")

    # ── Error Handlers ────────────────────────────────────────────

    @app.errorhandler(MirroringError)
    def handle_mirroring_error(e: MirroringError):
        status_code = next(
            (code for cls, code in _STATUS_CODES if isinstance(e, cls)),
            500,
        )
        return jsonify(e.to_dict()), status_code

    @app.errorhandler(500)
    def internal_server_error(e):
        """Return JSON for any unhandled error so clients never see HTML."""
        original = getattr(e, "original_exception", None) or e
        logger.error(
            f"Unhandled error on {request.method} {request.path}: {original}",
            exc_info=original if isinstance(original, BaseException) else None,
        )
        return jsonify({
            "error": "INTERNAL_ERROR",
            "message": f"Internal server error: {original}",
        }), 500

    # ── Connection Events ─────────────────────────────────────────

    @app.before_request
    def client_open():
        g.client_info = ClientInfo(
            address=request.remote_addr,
            method=request.method,
            path=request.path,
        )
        g.start_time = time.time()
        service.metrics.increment("client_connections_total")
        service.emit("client-open", g.client_info)

    @app.after_request
    def log_request(response):
        duration_ms = int((time.time() - g.get("start_time", time.time())) * 1000)
        # Health polling (including startup probes) stays at DEBUG
        log_fn = logger.debug if request.path.endswith("/health") else logger.info
        log_fn(
            f"{request.method} {request.path} → {response.status_code} ({duration_ms}ms)",
            extra={"client": request.remote_addr},
        )
        return response

    @app.teardown_request
    def client_close(exc):
        info = g.pop("client_info", None)
        if info is not None:
            service.emit("client-close", info)

    return app


class ControlServer:
    """Threaded WSGI server for the control API."""

    def __init__(self, app: Flask, host: str, port: int):
        self.app = app
        self.host = host
        self.requested_port = port
        self._server: Optional[BaseWSGIServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def listening(self) -> bool:
        return self._server is not None

    @property
    def port(self) -> int:
        """The bound port (differs from the requested one when that was 0)."""
        if self._server is None:
            return self.requested_port
        return self._server.server_port

    def listen(self) -> None:
        """Bind the listening socket. Requests queue until start()."""
        self._server = make_server(self.host, self.requested_port, self.app, threaded=True)
        logger.info(f"[server] Listening on http://{self.host}:{self.port}")

    def start(self) -> None:
        """Start dispatching requests on a background thread."""
        if self._server is None:
            raise RuntimeError("listen() must be called before start()")
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="mirroring-control-server",
            daemon=True,
        )
        self._thread.start()

    def close(self) -> None:
        """Stop accepting connections. Safe to call repeatedly."""
        server, self._server = self._server, None
        if server is None:
            return
        if self._thread is not None:
            server.shutdown()
            if self._thread is not threading.current_thread():
                self._thread.join(timeout=5)
            self._thread = None
        server.server_close()
        logger.info("[server] Control server closed")

    def info(self) -> Dict[str, Any]:
        return {"host": self.host, "port": self.port, "listening": self.listening}

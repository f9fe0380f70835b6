"""
Read-only status API for a running VPN service.
Serves health, status and peer information as JSON.
"""
import logging
import threading
from typing import Optional

from flask import Flask, jsonify
from werkzeug.serving import make_server

logger = logging.getLogger("pskvpn.web")


def create_app(service) -> Flask:
    """
    Create the status application for a VPN client or server

    Args:
        service: LifecycleController whose status is served

    Returns:
        Flask application
    """
    app = Flask(__name__)

    @app.route('/health')
    def health():
        """Liveness check"""
        if service.running:
            return jsonify({'status': 'ok', 'mode': service.mode})
        return jsonify({'status': 'unavailable', 'mode': service.mode}), 503

    @app.route('/api/status')
    def status():
        """API endpoint to get service status"""
        return jsonify(service.get_status())

    @app.route('/api/peers')
    def peers():
        """API endpoint to list the server's active peers"""
        registry = getattr(service, "registry", None)
        if service.mode != "server":
            return jsonify({'error': 'Peers are only tracked in server mode'}), 404
        return jsonify(registry.peers() if registry is not None else [])

    return app


class StatusServer:
    """
    Runs the status application on a background werkzeug server
    """
    def __init__(self, service, host: str = "127.0.0.1", port: int = 8080):
        """
        Initialize the status server

        Args:
            service: LifecycleController whose status is served
            host: Host to bind to
            port: Port to bind to (0 picks a free port)
        """
        self.app = create_app(service)
        self.host = host
        self.port = port
        self._server = None
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """
        Bind and start serving

        Raises:
            OSError: If the address cannot be bound
        """
        try:
            self._server = make_server(self.host, self.port, self.app, threaded=True)
        except SystemExit as e:
            # werkzeug exits the process when the port is taken
            raise OSError(f"Cannot bind status API to {self.host}:{self.port}") from e
        self.port = self._server.server_port
        self._thread = threading.Thread(target=self._server.serve_forever,
                                        name="status-http")
        self._thread.daemon = True
        self._thread.start()
        logger.info(f"Status API listening on http://{self.host}:{self.port}")

    def stop(self) -> None:
        """Shut the server down; idempotent"""
        server, self._server = self._server, None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        logger.info("Status API stopped")

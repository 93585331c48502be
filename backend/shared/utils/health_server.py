"""
Minimal HTTP health endpoint for the standalone monitor process.
Serves GET /health on PORT so container healthchecks succeed.
Runs in a daemon thread; no-op when PORT is not set (e.g. local dev).
"""
from __future__ import annotations

import json
import os
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Optional

StatusFn = Callable[[], dict[str, Any]]


def start_health_server(service_name: str, status_fn: Optional[StatusFn] = None) -> None:
    """
    Start a daemon thread that listens on PORT and responds to GET /health.

    ``status_fn`` supplies extra JSON fields (e.g. loop stats). It runs on
    the server thread, so it must only read plain attributes.
    """
    port_str = os.environ.get("PORT")
    if not port_str:
        return
    try:
        port = int(port_str)
    except ValueError:
        return

    class Handler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:
            if self.path not in ("/health", "/health/"):
                self.send_response(404)
                self.end_headers()
                return
            payload: dict[str, Any] = {"status": "ok", "service": service_name}
            if status_fn is not None:
                payload.update(status_fn())
            body = json.dumps(payload, default=str).encode("utf-8")
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args: object) -> None:
            pass  # Suppress request logging

    def serve() -> None:
        with HTTPServer(("0.0.0.0", port), Handler) as httpd:
            httpd.serve_forever()

    t = threading.Thread(target=serve, daemon=True)
    t.start()

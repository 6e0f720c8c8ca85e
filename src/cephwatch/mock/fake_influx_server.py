"""
Fake InfluxDB 1.x write endpoint for trying things out without a database.

    python -m cephwatch.mock.fake_influx_server
    cephwatch --mock -d          # with influx pointed at 127.0.0.1:8086

Every accepted line is kept in `received` and echoed to stdout.
"""

from __future__ import annotations

import base64
import threading
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import List, Optional, Tuple
from urllib.parse import parse_qs, urlparse


received: List[str] = []
received_auth: List[Optional[Tuple[str, str]]] = []
_lock = threading.Lock()

# Status code to answer writes with. Tests flip this to exercise failures.
write_status = 204
echo = False


def reset():
    global write_status
    with _lock:
        received.clear()
        received_auth.clear()
    write_status = 204


def _parse_basic_auth(header: Optional[str]) -> Optional[Tuple[str, str]]:
    if not header or not header.startswith("Basic "):
        return None
    decoded = base64.b64decode(header[len("Basic "):]).decode()
    user, _, password = decoded.partition(":")
    return user, password


class _WriteHandler(BaseHTTPRequestHandler):
    def do_POST(self):
        url = urlparse(self.path)
        if url.path != "/write":
            self.send_response(404)
            self.end_headers()
            return

        params = parse_qs(url.query)
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length).decode()

        if "db" not in params:
            self.send_response(400)
            self.end_headers()
            return

        if write_status < 300:
            with _lock:
                for line in body.splitlines():
                    if line:
                        received.append(line)
                        received_auth.append(_parse_basic_auth(self.headers.get("Authorization")))
                        if echo:
                            print(line)

        self.send_response(write_status)
        self.end_headers()

    def do_GET(self):
        # influx clients ping before writing
        if self.path == "/ping":
            self.send_response(204)
        else:
            self.send_response(404)
        self.end_headers()

    def log_message(self, format, *args):
        pass  # Suppress request logging noise


def run_fake_server(host: str = "127.0.0.1", port: int = 8086):
    global echo
    echo = True
    server = HTTPServer((host, port), _WriteHandler)
    print(f"Fake InfluxDB write endpoint running at http://{host}:{port}/write")
    print("Press Ctrl+C to stop.\n")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    server.server_close()
    print(f"\nServer stopped. {len(received)} lines received.")


if __name__ == "__main__":
    run_fake_server()

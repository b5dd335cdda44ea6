"""
Fake PowerStore REST API for testing without an appliance.

Answers the three calls pstore makes: login_session, appliance and
metrics/generate. Runs over plain HTTP.

    python -m pstore.mock.fake_powerstore_server
    pstore --url http://127.0.0.1:9443/api/rest --username admin --password admin gather
"""

from __future__ import annotations

import base64
import json
import random
from datetime import datetime, timedelta, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import List, Optional
from urllib.parse import parse_qs, urlsplit

API_PREFIX = "/api/rest"
TOKEN = "fake-dell-emc-token"

TIB = 1024 ** 4


def generate_records(
    appliance_id: str = "A1",
    count: int = 12,
    seed: int = 42,
    end: Optional[datetime] = None,
) -> List[dict]:
    """Build a believable Five_Mins space report ending at `end`.

    Usage creeps upward with a little noise, total stays fixed.
    """
    rng = random.Random(seed)
    end = end or datetime.now(timezone.utc).replace(second=0, microsecond=0)
    total = 20 * TIB
    used = int(total * 0.42)

    records = []
    for i in range(count):
        ts = end - timedelta(minutes=5 * (count - 1 - i))
        used += int(rng.gauss(0.0005, 0.0003) * total)
        records.append({
            "timestamp": ts.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "appliance_id": appliance_id,
            "physical_total": total,
            "physical_used": min(used, total),
        })
    return records


class FakePowerStoreServer(HTTPServer):
    """HTTPServer that carries the fake appliance state.

    Tests poke at `records`, `metrics_status` and friends directly.
    """

    def __init__(self, address=("127.0.0.1", 0), username="admin", password="admin"):
        super().__init__(address, _PowerStoreHandler)
        self.username = username
        self.password = password
        self.records: List[dict] = generate_records()
        self.raw_metrics_body: Optional[bytes] = None
        self.metrics_status = 200
        self.appliance_status = 200
        self.requests: List[dict] = []

    @property
    def base_url(self) -> str:
        host, port = self.server_address[:2]
        return f"http://{host}:{port}{API_PREFIX}"


class _PowerStoreHandler(BaseHTTPRequestHandler):
    server: FakePowerStoreServer

    def _authorized(self) -> bool:
        # Either the login cookie or basic auth is good enough
        if f"auth_cookie={TOKEN}" in (self.headers.get("Cookie") or ""):
            return True
        header = self.headers.get("Authorization") or ""
        if not header.startswith("Basic "):
            return False
        try:
            user, _, password = base64.b64decode(header[6:]).decode().partition(":")
        except ValueError:
            return False
        return user == self.server.username and password == self.server.password

    def _send_json(self, status: int, payload, headers: Optional[dict] = None):
        body = json.dumps(payload).encode()
        self._send_raw(status, body, headers)

    def _send_raw(self, status: int, body: bytes, headers: Optional[dict] = None):
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        for key, value in (headers or {}).items():
            self.send_header(key, value)
        self.end_headers()
        self.wfile.write(body)

    def _error(self, status: int, message: str):
        self._send_json(status, {"messages": [{"severity": "Error", "message_l10n": message}]})

    def _route(self, method: str):
        parts = urlsplit(self.path)
        path = parts.path
        query = parse_qs(parts.query)

        length = int(self.headers.get("Content-Length") or 0)
        raw = self.rfile.read(length) if length else b""
        body = json.loads(raw) if raw else None
        self.server.requests.append({"method": method, "path": path, "query": query, "body": body})

        if not path.startswith(API_PREFIX):
            self._error(404, "Not found")
            return
        path = path[len(API_PREFIX):]

        if not self._authorized():
            self._error(401, "Authentication required")
            return

        if method == "GET" and path == "/login_session":
            self._send_json(
                200,
                [{"id": "session-1", "user": self.server.username}],
                {"DELL-EMC-TOKEN": TOKEN, "Set-Cookie": f"auth_cookie={TOKEN}; Path=/"},
            )
        elif method == "GET" and path == "/appliance":
            if self.server.appliance_status != 200:
                self._error(self.server.appliance_status, "Appliance query failed")
                return
            total = 20 * TIB
            self._send_json(200, [{
                "id": "A1",
                "physical_total": total,
                "physical_used": int(total * 0.42),
            }])
        elif method == "POST" and path == "/metrics/generate":
            if self.headers.get("DELL-EMC-TOKEN") != TOKEN:
                self._error(403, "Missing or invalid DELL-EMC-TOKEN")
                return
            if self.server.metrics_status != 200:
                self._error(self.server.metrics_status, "Metrics query failed")
                return
            if self.server.raw_metrics_body is not None:
                self._send_raw(200, self.server.raw_metrics_body)
                return
            entity_id = (body or {}).get("entity_id")
            rows = [r for r in self.server.records if r.get("appliance_id") == entity_id]
            self._send_json(200, rows)
        else:
            self._error(404, "Not found")

    def do_GET(self):
        self._route("GET")

    def do_POST(self):
        self._route("POST")

    def log_message(self, format, *args):
        pass  # Suppress request logging noise


def run_fake_server(host: str = "127.0.0.1", port: int = 9443):
    server = FakePowerStoreServer((host, port))
    print(f"Fake PowerStore API running at {server.base_url} (admin/admin)")
    print("Press Ctrl+C to stop.\n")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    server.server_close()
    print("\nServer stopped.")


if __name__ == "__main__":
    run_fake_server()

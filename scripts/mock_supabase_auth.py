#!/usr/bin/env python3
"""Local stand-in for Supabase's `/auth/v1/user` endpoint.

Roles are not carried in the token; the API reads them from `profiles`, so seed
matching profile rows (see bootstrap_admin.py) for the ids below.
"""

from __future__ import annotations

import argparse
import json
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

MOCK_USERS: dict[str, dict[str, object]] = {
    "admin-token": {
        "id": "11111111-1111-1111-1111-111111111111",
        "email": "admin@example.com",
        "user_metadata": {"full_name": "Directory Admin"},
    },
    "owner-token": {
        "id": "22222222-2222-2222-2222-222222222222",
        "email": "owner@acme-staffing.example.com",
        "user_metadata": {"full_name": "Agency Owner"},
    },
    "user-token": {
        "id": "33333333-3333-3333-3333-333333333333",
        "email": "user@example.com",
        "user_metadata": {"full_name": "Regular User"},
    },
}


class MockSupabaseHandler(BaseHTTPRequestHandler):
    server_version = "MockSupabase/1.0"

    def do_GET(self) -> None:  # noqa: N802 - stdlib handler signature
        if self.path == "/healthz":
            self._write_json(HTTPStatus.OK, {"status": "ok"})
            return
        if self.path != "/auth/v1/user":
            self._write_json(HTTPStatus.NOT_FOUND, {"msg": "not found"})
            return

        authorization = self.headers.get("Authorization", "")
        token = authorization[7:].strip() if authorization.lower().startswith("bearer ") else ""
        user = MOCK_USERS.get(token)
        if user is None:
            self._write_json(HTTPStatus.UNAUTHORIZED, {"msg": "invalid JWT"})
            return
        self._write_json(HTTPStatus.OK, {**user, "aud": "authenticated", "role": "authenticated"})

    def log_message(self, _: str, *args: object) -> None:
        if args:
            print("mock-supabase:", *args)

    def _write_json(self, status: HTTPStatus, payload: dict[str, object]) -> None:
        raw = json.dumps(payload).encode("utf-8")
        self.send_response(status.value)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)


def main() -> None:
    parser = argparse.ArgumentParser(description="Mock Supabase auth /auth/v1/user endpoint.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=54321)
    args = parser.parse_args()

    server = ThreadingHTTPServer((args.host, args.port), MockSupabaseHandler)
    print(f"mock-supabase listening on http://{args.host}:{args.port} tokens={', '.join(MOCK_USERS)}", flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


if __name__ == "__main__":
    main()

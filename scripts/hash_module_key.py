#!/usr/bin/env python3
"""Emit SQL registering a machine module and the SHA-256 hash of its API key."""

from __future__ import annotations

import argparse
import hashlib
import secrets

DEFAULT_SCOPES = ("notifications:read", "notifications:write")


def _quote_sql(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def hash_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def render_sql(*, module_id: str, api_key: str, scopes: list[str]) -> str:
    scope_array = "array[" + ", ".join(_quote_sql(scope) for scope in scopes) + "]::text[]"
    return f"""-- Machine credential for module {module_id}

insert into modules (module_id, scopes, enabled)
values ({_quote_sql(module_id)}, {scope_array}, true)
on conflict (module_id) do update set scopes = excluded.scopes, enabled = true;

insert into module_credentials (module_id, key_hash, is_active)
select id, {_quote_sql(hash_key(api_key))}, true
from modules
where module_id = {_quote_sql(module_id)};
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL for a worker module credential.")
    parser.add_argument("--module-id", default="notification-worker")
    parser.add_argument("--api-key", help="Key to hash; a random one is generated and printed when omitted")
    parser.add_argument("--scope", action="append", dest="scopes", help="Repeatable; defaults to notification scopes")
    args = parser.parse_args()

    api_key = args.api_key
    if not api_key:
        api_key = secrets.token_urlsafe(32)
        print(f"-- generated api key (store it as SD_WORKER_API_KEY): {api_key}")
    print(render_sql(module_id=args.module_id, api_key=api_key, scopes=args.scopes or list(DEFAULT_SCOPES)))


if __name__ == "__main__":
    main()

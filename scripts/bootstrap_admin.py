#!/usr/bin/env python3
"""Emit SQL that assigns a directory role to an existing profile."""

from __future__ import annotations

import argparse

ROLES = ("user", "agency_owner", "admin")


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, role: str, user_id: str | None, email: str | None) -> str:
    if role not in ROLES:
        raise ValueError(f"unsupported role: {role}")

    if user_id:
        target = f"id = {_quote_sql(user_id)}::uuid"
        label = f"user_id={user_id}"
    else:
        assert email is not None
        target = f"lower(email) = lower({_quote_sql(email)})"
        label = f"email={email}"

    return f"""-- Profile role bootstrap ({label} -> {role})
-- Run in the Supabase SQL editor or another privileged Postgres session.

update profiles
set role = {_quote_sql(role)}, updated_at = now()
where {target}
returning id, email, role;
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to set a profile's role.")
    parser.add_argument("--role", choices=ROLES, default="admin", help="Role stored in profiles.role")
    identity_group = parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--user-id", help="profiles.id (UUID)")
    identity_group.add_argument("--email", help="profiles.email (case-insensitive)")
    args = parser.parse_args()

    print(render_sql(role=args.role, user_id=args.user_id, email=args.email))


if __name__ == "__main__":
    main()

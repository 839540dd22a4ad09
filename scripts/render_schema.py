#!/usr/bin/env python3
"""Emit deterministic SQL for the primary signature store schema."""

from __future__ import annotations

import argparse
import re

_ROLE_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


def render_sql(*, unique_signatures: bool, replica_role: str | None) -> str:
    statements = [
        """-- Primary signature store schema
-- Run this against the primary Postgres database before enabling PS_WRITE_PRIMARY_STORE.

create table if not exists petitions (
  id bigserial primary key,
  legacy_id text unique,
  title text,
  created_at timestamptz not null default now()
);

create table if not exists signatures (
  id bigserial primary key,
  petition_id bigint not null references petitions (id),
  user_id text,
  user_token text,
  ip_address text,
  city text,
  state text,
  country text,
  zip_code text,
  legacy_id text,
  created_at timestamptz not null default now(),
  check (user_id is not null or user_token is not null)
);

create index if not exists signatures_petition_user_idx on signatures (petition_id, user_id);
create index if not exists signatures_petition_token_idx on signatures (petition_id, user_token);
"""
    ]

    if unique_signatures:
        statements.append(
            """-- Rejects concurrent duplicate signatures that race past the application dedup check.
create unique index if not exists signatures_petition_identity_uniq
  on signatures (petition_id, coalesce(user_id, user_token));
"""
        )

    if replica_role:
        statements.append(f"grant select on petitions, signatures to {replica_role};\n")

    return "\n".join(statements)


def _role_name(value: str) -> str:
    if not _ROLE_RE.match(value):
        raise argparse.ArgumentTypeError(f"invalid role name: {value!r}")
    return value


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL for the primary signature store schema.")
    parser.add_argument(
        "--unique-signatures",
        action="store_true",
        help="Add a unique index on (petition_id, user identity)",
    )
    parser.add_argument(
        "--replica-grant",
        type=_role_name,
        default=None,
        help="Read-only role to grant select on both tables",
    )
    args = parser.parse_args()

    print(render_sql(unique_signatures=args.unique_signatures, replica_role=args.replica_grant))


if __name__ == "__main__":
    main()

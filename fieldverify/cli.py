"""
FieldVerify CLI
===============
Operator commands that run against the configured database.

Usage:
    fieldverify ingest cases.xlsx [--mode automate]
    fieldverify reverse-batch <batch_id>
    fieldverify create-member --name "Asha" --email asha@example.com [--role admin]
    fieldverify issue-claim <member_id> [--ttl 3600]
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from fieldverify.core.errors import FieldVerifyError
from fieldverify.core.logging import configure_logging

ACTOR = "cli"


def _session():
    from fieldverify.core.database import SessionLocal
    return SessionLocal()


def cmd_ingest(args) -> int:
    from fieldverify.services.ingestion import ingest_rows, read_workbook

    rows = read_workbook(Path(args.path).read_bytes())
    db = _session()
    try:
        result = ingest_rows(db, rows, args.mode, actor=ACTOR)
    finally:
        db.close()
    print(json.dumps(result.to_dict(), indent=2))
    return 0


def cmd_reverse_batch(args) -> int:
    from fieldverify.services.ingestion import reverse_batch

    db = _session()
    try:
        deleted = reverse_batch(db, args.batch_id, actor=ACTOR)
    finally:
        db.close()
    print(f"Deleted {deleted} cases from batch {args.batch_id}")
    return 0


def cmd_create_member(args) -> int:
    from fieldverify.services.members import create_member

    db = _session()
    try:
        member = create_member(db, name=args.name, email=args.email, role=args.role, actor=ACTOR)
        print(json.dumps({"id": member.id, "unique_id": member.unique_id, "role": member.role}, indent=2))
    finally:
        db.close()
    return 0


def cmd_issue_claim(args) -> int:
    from fieldverify.core.security import issue_claim

    print(issue_claim(args.member_id, ttl_seconds=args.ttl))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fieldverify",
        description="FieldVerify CLI — case ingestion and member administration",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    ingest = subparsers.add_parser("ingest", help="Ingest an .xlsx case sheet")
    ingest.add_argument("path", help="Path to the workbook")
    ingest.add_argument("--mode", choices=("manual", "automate"), default="manual")
    ingest.set_defaults(func=cmd_ingest)

    reverse = subparsers.add_parser("reverse-batch", help="Delete the cases of one ingest batch")
    reverse.add_argument("batch_id")
    reverse.set_defaults(func=cmd_reverse_batch)

    member = subparsers.add_parser("create-member", help="Register a member")
    member.add_argument("--name", required=True)
    member.add_argument("--email", required=True)
    member.add_argument("--role", choices=("member", "admin", "dev"), default="member")
    member.set_defaults(func=cmd_create_member)

    claim = subparsers.add_parser("issue-claim", help="Sign a session claim for a member")
    claim.add_argument("member_id")
    claim.add_argument("--ttl", type=int, default=None, help="Lifetime in seconds")
    claim.set_defaults(func=cmd_issue_claim)
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    configure_logging()
    try:
        return args.func(args)
    except FieldVerifyError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())

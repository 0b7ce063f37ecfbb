#!/usr/bin/env python3
"""
Verify the grant audit ledger hash chain for tamper detection.

Usage:
    python scripts/verify_audit_chain.py --database-url sqlite:///./medshare.db
"""
from __future__ import annotations

import argparse
import os
import sys

from medshare.app.infra.db import build_engine, make_session_factory
from medshare.app.services.ledger import GrantAuditLedger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Verify grant audit chain integrity.")
    parser.add_argument(
        "--database-url",
        default=os.getenv("DATABASE_URL", "sqlite:///./medshare.db"),
        help="Database URL (SQLAlchemy compatible)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    factory = make_session_factory(build_engine(args.database_url))
    with factory() as session:
        report = GrantAuditLedger(session).verify()

    for problem in report["problems"]:
        print(f"[WARN] {problem}", file=sys.stderr)
    if not report["entries"]:
        print("No audit entries found for verification.")
    elif report["ok"]:
        print(f"Verified {report['entries']} audit entries; chain intact")
    return 0 if report["ok"] else 1


if __name__ == "__main__":
    raise SystemExit(main())

#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from achievement_tracker.db.schema import PostgresSchemaManager


def main() -> int:
    shared = os.getenv("ACH_POSTGRES_DSN", "")
    parser = argparse.ArgumentParser(description="Create achievement document-store and reference-store tables")
    parser.add_argument(
        "--document-dsn",
        default=os.getenv("ACH_DOCUMENT_STORE_DSN", "") or shared,
        help="document store DSN",
    )
    parser.add_argument(
        "--reference-dsn",
        default=os.getenv("ACH_REFERENCE_STORE_DSN", "") or shared,
        help="reference store DSN",
    )
    args = parser.parse_args()

    targets = {"document": str(args.document_dsn or "").strip(), "reference": str(args.reference_dsn or "").strip()}
    missing = [name for name, dsn in targets.items() if not dsn]
    if missing:
        raise SystemExit(f"DSN required for: {', '.join(missing)} (pass flags or set ACH_POSTGRES_DSN)")

    applied = {name: PostgresSchemaManager(dsn, store=name).apply() for name, dsn in targets.items()}
    print(json.dumps({"applied_statements": applied}, ensure_ascii=True, sort_keys=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

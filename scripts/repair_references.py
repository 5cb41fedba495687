#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from achievement_tracker.config import Settings
from achievement_tracker.errors import ApiError
from achievement_tracker.logging_setup import configure_logging
from achievement_tracker.services import build_services


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Audit and repair achievement reference pointers for one student")
    parser.add_argument("--student-id", required=True, help="owning student's user id")
    parser.add_argument("--dry-run", action="store_true", help="report fixes without writing")
    parser.add_argument("--audit-only", action="store_true", help="only list inconsistencies")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    services = build_services(settings)
    try:
        if args.audit_only:
            found = services.repair.audit(args.student_id)
            result = {"student_id": args.student_id, "items": [x.to_dict() for x in found], "total": len(found)}
            exit_code = 0 if not found else 2
        else:
            report = services.repair.repair(args.student_id, dry_run=args.dry_run)
            result = report.to_dict()
            exit_code = 0 if not report.failed else 1
    except ApiError as exc:
        print(json.dumps({"error": {"code": exc.code, "message": exc.message}}, ensure_ascii=True, sort_keys=True))
        return 1
    print(json.dumps(result, ensure_ascii=True, sort_keys=True, indent=2))
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())

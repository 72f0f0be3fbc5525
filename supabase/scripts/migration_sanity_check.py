from __future__ import annotations

import json
import re
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]

REQUIRED_FILES = {
    "supabase/migrations/20250301_001_attendance_verifications.sql": [
        r"CREATE TABLE IF NOT EXISTS public\.attendance_verifications",
        r"UNIQUE \(user_id, attendance_date\)",
        r"ALTER TABLE public\.attendance_verifications ENABLE ROW LEVEL SECURITY",
        r"BEFORE UPDATE OR DELETE ON public\.attendance_verifications",
    ],
    "supabase/migrations/20250301_002_attendance_records.sql": [
        r"CREATE TABLE IF NOT EXISTS public\.attendance_records",
        r"CONSTRAINT attendance_records_user_date_key UNIQUE \(user_id, attendance_date\)",
        r"CREATE POLICY \"students_read_own_attendance\"",
    ],
}


def main() -> int:
    missing_files: list[str] = []
    missing_patterns: dict[str, list[str]] = {}

    for rel_path, patterns in REQUIRED_FILES.items():
        target = ROOT / rel_path
        if not target.exists():
            missing_files.append(rel_path)
            continue

        text = target.read_text(encoding="utf-8")
        for pattern in patterns:
            if not re.search(pattern, text, flags=re.IGNORECASE | re.MULTILINE):
                missing_patterns.setdefault(rel_path, []).append(pattern)

    result = {
        "ok": not missing_files and not missing_patterns,
        "checked_files": len(REQUIRED_FILES),
        "missing_files": missing_files,
        "missing_patterns": missing_patterns,
    }

    print(json.dumps(result, indent=2))
    return 0 if result["ok"] else 1


if __name__ == "__main__":
    sys.exit(main())

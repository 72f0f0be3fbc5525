import importlib.util
from pathlib import Path

SCRIPT = Path(__file__).resolve().parents[1] / "supabase" / "scripts" / "migration_sanity_check.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("migration_sanity_check", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_attendance_migrations_pass_sanity_check(capsys) -> None:
    module = _load_script()
    assert module.main() == 0
    assert '"ok": true' in capsys.readouterr().out


def test_sanity_check_reports_missing_pattern(monkeypatch, capsys) -> None:
    module = _load_script()
    monkeypatch.setitem(
        module.REQUIRED_FILES,
        "supabase/migrations/20250301_002_attendance_records.sql",
        [r"CREATE TABLE IF NOT EXISTS public\.attendance_summaries"],
    )
    assert module.main() == 1
    assert "attendance_summaries" in capsys.readouterr().out

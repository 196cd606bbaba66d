"""
Tests for the 'rewrite' command.

Verifies that:
1.  `--replay` is parsed into a ReplayMode.
2.  The rewritten unit is written to `--out`, or printed when no output is given.
3.  `--dry-run` leaves the file system untouched.
4.  `--json-trace` dumps the trace events.
5.  Missing and unanalyzable inputs exit with 1.
"""

import json
from pathlib import Path
from unittest.mock import patch

from scope_lift.cli.__main__ import main
from scope_lift.cli.handlers.rewrite import handle_rewrite
from scope_lift.enums import ReplayMode
from scope_lift.errors import PreservationViolation
from scope_lift.models import ViolationRecord
from tests.samples import GUARD_ONCE, SERIALIZED_QUEUE


@patch("scope_lift.cli.commands.handle_rewrite")
def test_rewrite_arguments(mock_handle):
  mock_handle.return_value = 0

  main(["rewrite", "unit.py", "--out", "out.py", "--replay", "synthesized", "--dry-run"])

  mock_handle.assert_called_once_with(Path("unit.py"), Path("out.py"), True, ReplayMode.SYNTHESIZED, None)


def test_rewrite_to_file(tmp_path, recorded_console):
  source = tmp_path / "unit.py"
  source.write_text(GUARD_ONCE, encoding="utf-8")
  target = tmp_path / "out" / "unit.py"

  assert handle_rewrite(source, target) == 0

  assert "load = make_load()" in target.read_text(encoding="utf-8")
  assert source.read_text(encoding="utf-8") == GUARD_ONCE
  output = recorded_console.export_text()
  assert "Applied Rewrites" in output
  assert "make_load()" in output
  assert "Call-Site Patches" in output


def test_rewrite_to_stdout(tmp_path, capsys, recorded_console):
  source = tmp_path / "unit.py"
  source.write_text(GUARD_ONCE, encoding="utf-8")

  assert main(["rewrite", str(source)]) == 0

  assert "def make_load():" in capsys.readouterr().out


def test_dry_run(tmp_path, capsys, recorded_console):
  source = tmp_path / "unit.py"
  source.write_text(GUARD_ONCE, encoding="utf-8")
  target = tmp_path / "out.py"

  assert handle_rewrite(source, target, dry_run=True) == 0

  assert not target.exists()
  assert "make_load" not in capsys.readouterr().out
  assert "Dry run" in recorded_console.export_text()


def test_json_trace(tmp_path, recorded_console):
  source = tmp_path / "unit.py"
  source.write_text(GUARD_ONCE, encoding="utf-8")
  trace = tmp_path / "trace" / "events.json"

  assert handle_rewrite(source, tmp_path / "out.py", json_trace_path=trace) == 0

  events = json.loads(trace.read_text(encoding="utf-8"))
  assert any(e["type"] == "rewrite" for e in events)


def test_nothing_to_rewrite(tmp_path, recorded_console):
  source = tmp_path / "queue.py"
  source.write_text(SERIALIZED_QUEUE, encoding="utf-8")

  assert handle_rewrite(source, tmp_path / "out.py") == 0

  output = recorded_console.export_text()
  assert "Flagged" in output
  assert "Nothing to rewrite" in output
  assert not (tmp_path / "out.py").exists()


def test_missing_input(tmp_path, recorded_console):
  assert handle_rewrite(tmp_path / "missing.py") == 1
  assert "Input file not found" in recorded_console.export_text()


def test_unparsable_input(tmp_path, recorded_console):
  source = tmp_path / "broken.py"
  source.write_text("def broken(:\n", encoding="utf-8")

  assert handle_rewrite(source) == 1
  assert "Failed to analyze" in recorded_console.export_text()


def test_all_rewrites_rejected(tmp_path, recorded_console):
  source = tmp_path / "unit.py"
  source.write_text(GUARD_ONCE, encoding="utf-8")
  record = ViolationRecord(group_id="g1", factory_name="make_load", check="replay", detail="diverged")

  with patch("scope_lift.cli.handlers.rewrite.ScopeLiftEngine.rewrite", return_value=PreservationViolation([record])):
    assert handle_rewrite(source, tmp_path / "out.py") == 1

  output = recorded_console.export_text()
  assert "Rejected Rewrites" in output
  assert "diverged" in output
  assert not (tmp_path / "out.py").exists()

"""
Scan Command Handler.

Runs the read-only analysis over a file or every `*.py` file of a directory
and reports the findings as a table (or JSON).
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.table import Table

from scope_lift.config import EngineConfig
from scope_lift.core.engine import Finding, ScopeLiftEngine
from scope_lift.errors import AnalysisError, ClassificationAmbiguous
from scope_lift.models import PatternMatch, SuppressedMatch
from scope_lift.utils.console import console, log_error, log_info, log_success, log_warning

_STATUS_STYLE = {
  "match": "[kind]match[/kind]",
  "suppressed": "[info]suppressed[/info]",
  "ambiguous": "[warning]ambiguous[/warning]",
  "error": "[error]error[/error]",
}


def finding_row(finding: Finding) -> Dict[str, Any]:
  """
  Flattens one finding into a JSON-friendly row.

  Args:
      finding: A PatternMatch, SuppressedMatch, ClassificationAmbiguous or AnalysisError.

  Returns:
      Dict[str, Any]: status, group, kind, bindings, accessors, detail (and
      confidence / scope policy for matches).
  """
  if isinstance(finding, PatternMatch):
    return {
      "status": "match",
      "group": finding.group.id,
      "kind": finding.kind.value,
      "bindings": list(finding.group.bindings),
      "accessors": list(finding.group.accessors),
      "confidence": round(finding.confidence, 2),
      "scope_policy": finding.scope_policy.value,
      "detail": "",
    }
  if isinstance(finding, SuppressedMatch):
    row = finding_row(finding.match)
    row.update(status="suppressed", detail=f"{finding.reason.value}: {finding.detail}")
    return row
  if isinstance(finding, ClassificationAmbiguous):
    return {
      "status": "ambiguous",
      "group": finding.group_id,
      "kind": " | ".join(k.value for k in finding.kinds),
      "bindings": list(finding.bindings),
      "accessors": [],
      "detail": str(finding),
    }
  if isinstance(finding, AnalysisError):
    location = f"line {finding.line}: " if finding.line else ""
    return {
      "status": "error",
      "group": None,
      "kind": None,
      "bindings": [finding.binding] if finding.binding else [],
      "accessors": [],
      "detail": f"{location}{finding.message}",
    }
  raise TypeError(f"Unknown finding type: {type(finding).__name__}")


def handle_scan(path: Path, json_mode: bool = False, max_workers: Optional[int] = None) -> int:
  """
  Scans a file or directory for closure patterns.

  Args:
      path: Input source file or directory.
      json_mode: If True, output JSON to stdout and suppress Rich tables.
      max_workers: Thread pool size for directory inputs.

  Returns:
      int: Exit code. 1 if the path is missing, or if any unit has an active
      match or could not be analyzed; 0 otherwise.
  """
  if not path.exists():
    log_error(f"Path not found: {path}")
    return 1

  files = [path] if path.is_file() else sorted(path.rglob("*.py"))
  if not files:
    log_warning(f"No .py files found in {path}")
    return 0

  sources: Dict[str, str] = {}
  for f in files:
    try:
      sources[str(f)] = f.read_text("utf-8")
    except (OSError, UnicodeDecodeError) as e:
      log_error(f"Failed to read {f}: {e}")

  if not json_mode:
    log_info(f"Scanning {len(sources)} file(s) under [path]{path}[/path]...")

  config = EngineConfig.load(search_path=path if path.is_dir() else path.parent)
  engine = ScopeLiftEngine(config)
  results = engine.analyze_many(sources, max_workers=max_workers)

  rows: Dict[str, List[Dict[str, Any]]] = {label: [finding_row(f) for f in found] for label, found in results.items()}
  flagged = any(r["status"] in ("match", "error") for found in rows.values() for r in found)

  if json_mode:
    print(json.dumps(rows, indent=2))
    return 1 if flagged else 0

  for label, found in rows.items():
    if not found:
      continue
    table = Table(title=label)
    table.add_column("Group", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Kind", style="bold")
    table.add_column("Bindings")
    table.add_column("Accessors")
    table.add_column("Detail", style="dim")
    for row in found:
      table.add_row(
        row["group"] or "-",
        _STATUS_STYLE[row["status"]],
        row["kind"] or "-",
        ", ".join(row["bindings"]),
        ", ".join(row["accessors"]),
        row["detail"],
      )
    console.print(table)

  counts = {status: 0 for status in _STATUS_STYLE}
  for found in rows.values():
    for row in found:
      counts[row["status"]] += 1

  console.print(f"\n[bold]Scan Summary for {path.name}[/bold]")
  console.print(f"Files:       {len(rows)}")
  console.print(f"Matches:     [green]{counts['match']}[/green]")
  console.print(f"Suppressed:  [blue]{counts['suppressed']}[/blue]")
  console.print(f"Ambiguous:   [yellow]{counts['ambiguous']}[/yellow]")
  console.print(f"Errors:      [red]{counts['error']}[/red]")

  if not flagged:
    log_success("No shared module state to lift.")
  return 1 if flagged else 0

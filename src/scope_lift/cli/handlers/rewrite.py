"""
Rewrite Command Handler.

Implements `scope-lift rewrite`: analyze one file, plan every accepted match,
apply and verify the plans, then print the patch table and emit the code.
"""

import json
from pathlib import Path
from typing import List, Optional

from rich.table import Table

from scope_lift.config import EngineConfig
from scope_lift.core.engine import ScopeLiftEngine
from scope_lift.enums import ReplayMode
from scope_lift.errors import AnalysisError, PreservationViolation
from scope_lift.models import RewriteResult, ViolationRecord
from scope_lift.utils.console import console, log_error, log_info, log_success, log_warning


def handle_rewrite(
  input_path: Path,
  output_path: Optional[Path] = None,
  dry_run: bool = False,
  replay_mode: Optional[ReplayMode] = None,
  json_trace_path: Optional[Path] = None,
) -> int:
  """
  Handles the 'rewrite' command execution.

  Args:
      input_path: Source file to rewrite.
      output_path: Where to write the rewritten code. Printed to stdout when omitted.
      dry_run: If True, only the patch table is shown.
      replay_mode: Override for the verifier replay mode.
      json_trace_path: Optional path to dump the execution trace JSON.

  Returns:
      int: Exit code (0 for success, 1 when the file cannot be analyzed or
      every attempted rewrite was rejected).
  """
  if not input_path.is_file():
    log_error(f"Input file not found: {input_path}")
    return 1

  config = EngineConfig.load(search_path=input_path.parent, replay_mode=replay_mode)
  engine = ScopeLiftEngine(config)

  with open(input_path, "rt", encoding="utf-8") as f:
    code = f.read()

  try:
    result = engine.rewrite(code)
  except AnalysisError as e:
    log_error(f"Failed to analyze {input_path}: {e.message}")
    return 1

  if isinstance(result, PreservationViolation):
    _print_rejections(result.records)
    log_error(f"Every rewrite of {input_path.name} was rejected; file left unchanged.")
    return 1

  if json_trace_path and result.trace_events:
    json_trace_path.parent.mkdir(parents=True, exist_ok=True)
    with open(json_trace_path, "wt", encoding="utf-8") as f:
      json.dump(result.trace_events, f, indent=2, default=str)
    log_info(f"Trace saved to [path]{json_trace_path}[/path]")

  _print_patches(result)
  if result.rejected:
    _print_rejections(result.rejected)

  if not result.changed:
    log_warning(f"Nothing to rewrite in {input_path.name}.")
    return 0

  if dry_run:
    log_info(f"Dry run: {len(result.applied)} rewrite(s) not written.")
    return 0

  if output_path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "wt", encoding="utf-8") as f:
      f.write(result.code)
    log_success(f"Rewritten: [path]{input_path}[/path] -> [path]{output_path}[/path]")
  else:
    print(result.code)
  return 0


def _print_patches(result: RewriteResult) -> None:
  """
  Renders the applied factories and the call sites they serve.

  Args:
      result: Outcome of the rewrite.
  """
  if result.applied:
    table = Table(title="Applied Rewrites")
    table.add_column("Group", style="cyan")
    table.add_column("Kind", style="bold")
    table.add_column("Factory", style="green")
    table.add_column("Bindings")
    table.add_column("Scope")
    table.add_column("Release")
    for plan in result.applied:
      table.add_row(
        plan.group_id,
        plan.kind.value,
        f"{plan.factory_name}()",
        ", ".join(plan.binding_names),
        plan.scope_policy.value,
        plan.release_point.value if plan.release_point else "-",
      )
    console.print(table)

  if result.patches:
    table = Table(title="Call-Site Patches")
    table.add_column("Line", justify="right")
    table.add_column("Scope", style="cyan")
    table.add_column("Reference")
    table.add_column("Served By", style="dim")
    for patch in result.patches:
      table.add_row(str(patch.line), patch.scope, patch.old_name, patch.invocation)
    console.print(table)

  if result.flagged:
    table = Table(title="Flagged (not rewritten)")
    table.add_column("Group", style="cyan")
    table.add_column("Kind", style="bold")
    table.add_column("Bindings")
    for match in result.flagged:
      table.add_row(match.group.id, match.kind.value, ", ".join(match.binding_names))
    console.print(table)

  summary = result.diff_summary
  console.print(f"[bold]Diff:[/bold] +{summary.lines_added} / -{summary.lines_removed} lines")


def _print_rejections(records: List[ViolationRecord]) -> None:
  table = Table(title="Rejected Rewrites")
  table.add_column("Group", style="cyan")
  table.add_column("Factory")
  table.add_column("Check", style="red")
  table.add_column("Detail", style="dim")
  for record in records:
    table.add_row(record.group_id, record.factory_name, record.check, record.detail)
  console.print(table)

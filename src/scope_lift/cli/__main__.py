"""
Main Entry Point for the scope-lift CLI.

This module handles argument parsing and dispatches to specific command
handlers defined in `scope_lift.cli.commands`.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from scope_lift import __version__
from scope_lift.cli import commands
from scope_lift.enums import ReplayMode
from scope_lift.utils.console import set_verbosity


def main(argv: Optional[List[str]] = None) -> int:
  """
  Main CLI entry point.

  Parses arguments via argparse and calls the appropriate handler function.

  Args:
      argv: Optional list of command line arguments (defaults to sys.argv).

  Returns:
      int: Exit code (0 for success, non-zero for failure).
  """
  parser = argparse.ArgumentParser(description="scope-lift: closure-pattern detection and rewriting")
  parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
  parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

  subparsers = parser.add_subparsers(dest="command", required=True)

  # --- Command: SCAN ---
  cmd_scan = subparsers.add_parser("scan", help="Report closure patterns in a file or directory")
  cmd_scan.add_argument("path", type=Path, help="Input source file or directory")
  cmd_scan.add_argument("--json", action="store_true", help="Print findings as JSON to stdout")
  cmd_scan.add_argument("--workers", type=int, default=None, help="Thread pool size for directory scans")

  # --- Command: REWRITE ---
  cmd_rw = subparsers.add_parser("rewrite", help="Rewrite shared module state into factories")
  cmd_rw.add_argument("path", type=Path, help="Input source file")
  cmd_rw.add_argument("--out", type=Path, default=None, help="Output file (default: print to stdout)")
  cmd_rw.add_argument("--dry-run", action="store_true", help="Show the patch table without emitting code")
  cmd_rw.add_argument(
    "--replay",
    choices=[m.value for m in ReplayMode],
    default=None,
    help="Replay mode of the preservation verifier (default: from toml, else 'supplied')",
  )
  cmd_rw.add_argument(
    "--json-trace", type=Path, default=None, help="Dump full execution trace (events, diffs) to a JSON file."
  )

  args = parser.parse_args(argv)

  if args.verbose:
    set_verbosity(logging.DEBUG)

  if args.command == "scan":
    return commands.handle_scan(args.path, args.json, args.workers)

  elif args.command == "rewrite":
    replay = ReplayMode(args.replay) if args.replay else None
    return commands.handle_rewrite(args.path, args.out, args.dry_run, replay, args.json_trace)

  return 0


if __name__ == "__main__":
  sys.exit(main())

"""
CLI Command Handlers Facade.

Re-exports the handlers from `scope_lift.cli.handlers` so the dispatcher (and
test patches) have a single import point.
"""

from scope_lift.cli.handlers.scan import handle_scan, finding_row
from scope_lift.cli.handlers.rewrite import handle_rewrite
from scope_lift.core.engine import ScopeLiftEngine

__all__ = [
  "ScopeLiftEngine",
  "finding_row",
  "handle_rewrite",
  "handle_scan",
]

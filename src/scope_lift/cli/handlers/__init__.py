from .scan import handle_scan, finding_row
from .rewrite import handle_rewrite

__all__ = [
  "finding_row",
  "handle_rewrite",
  "handle_scan",
]

"""
Error Taxonomy.

Every rejection produced by the pipeline is one of these exceptions. They are
raised inside a stage and caught at the stage boundary by the engine, which then
returns them as values next to the successful results so that nothing is
silently dropped. One failing sharing group never aborts the others.
"""

from typing import TYPE_CHECKING, List, Optional

from scope_lift.enums import BlockReason, PatternKind

if TYPE_CHECKING:
  from scope_lift.models import PatternMatch, ViolationRecord


class ScopeLiftError(Exception):
  """Base class for all engine rejections."""


class AnalysisError(ScopeLiftError):
  """
  The unit could not be parsed, timed out, or a binding is mutated through
  dynamic reflection and cannot be reasoned about statically.

  Attributes:
      binding: Name of the excluded binding, or None for unit-level failures.
      line: Declaration or offending line, when known.
  """

  def __init__(self, message: str, binding: Optional[str] = None, line: Optional[int] = None):
    super().__init__(message)
    self.message = message
    self.binding = binding
    self.line = line


class ClassificationAmbiguous(ScopeLiftError):
  """
  Two pattern kinds tie under the catalog priority order for one group.
  Reported for manual review; no kind is picked automatically.
  """

  def __init__(self, group_id: str, kinds: List[PatternKind], bindings: List[str]):
    names = ", ".join(k.value for k in kinds)
    super().__init__(f"Group {group_id} ({', '.join(bindings)}) matches {names} with no decisive priority")
    self.group_id = group_id
    self.kinds = kinds
    self.bindings = bindings


class PlanBlocked(ScopeLiftError):
  """
  The rewrite would alter a public contract (or needs a manual decision).

  Attributes:
      reason: Machine-readable block reason.
      symbols: Names responsible for the block.
      match: The PatternMatch that stays reported as flag-only.
  """

  def __init__(
    self,
    reason: BlockReason,
    symbols: List[str],
    detail: str,
    match: Optional["PatternMatch"] = None,
  ):
    super().__init__(f"{reason.value}: {detail}")
    self.reason = reason
    self.symbols = symbols
    self.detail = detail
    self.match = match

  @property
  def group_id(self) -> Optional[str]:
    """Identifier of the blocked group, if the match is known."""
    return self.match.group.id if self.match else None


class PreservationViolation(ScopeLiftError):
  """
  Post-rewrite verification failed; the rewrite was discarded.

  Attributes:
      records: One record per rejected plan.
  """

  def __init__(self, records: List["ViolationRecord"]):
    summary = "; ".join(f"{r.group_id} [{r.check}] {r.detail}" for r in records)
    super().__init__(f"Preservation check failed: {summary}")
    self.records = records


class RewriteConflict(ScopeLiftError):
  """
  A plan no longer fits the source it is applied to (a member moved, vanished
  or a generated name is already taken). Surfaces as a violation record.
  """

"""
Pipeline Trace Logger.

Records the step-by-step execution of one engine run:
1. Stage phases (Analysis, Grouping, Classification, Planning, Rewrite, Verification).
2. Pattern matches, suppressions and blocked plans.
3. Applied rewrites and rejected ones.

The output is a list of plain dictionaries suitable for JSON serialization. A
tracer belongs to exactly one run; the engine creates a fresh one every time.
"""

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class TraceEventType(str, Enum):
  PHASE_START = "phase_start"
  PHASE_END = "phase_end"
  PATTERN_MATCH = "pattern_match"
  SUPPRESSION = "suppression"
  AMBIGUITY = "ambiguity"
  PLAN_BLOCKED = "plan_blocked"
  REWRITE = "rewrite"
  VIOLATION = "violation"
  ANALYSIS_WARNING = "analysis_warning"


@dataclass
class TraceEvent:
  id: str
  type: TraceEventType
  timestamp: float
  description: str
  parent_id: Optional[str] = None
  metadata: Dict[str, Any] = field(default_factory=dict)


class TraceLogger:
  """
  Collects trace events for a single run.
  """

  def __init__(self):
    self._events: List[TraceEvent] = []
    self._active_phases: List[str] = []

  def start_phase(self, name: str, description: str = "") -> str:
    """Starts a nested phase. Returns the phase id."""
    phase_id = str(uuid.uuid4())
    parent = self._active_phases[-1] if self._active_phases else None
    self._events.append(
      TraceEvent(
        id=phase_id,
        type=TraceEventType.PHASE_START,
        timestamp=time.time(),
        description=name,
        parent_id=parent,
        metadata={"detail": description},
      )
    )
    self._active_phases.append(phase_id)
    return phase_id

  def end_phase(self):
    """Ends the current active phase."""
    if not self._active_phases:
      return

    phase_id = self._active_phases.pop()
    self._events.append(
      TraceEvent(
        id=str(uuid.uuid4()),
        type=TraceEventType.PHASE_END,
        timestamp=time.time(),
        description="End Phase",
        parent_id=phase_id,
      )
    )

  def log_match(self, group_id: str, kind: str, bindings: List[str]):
    self._log_simple(
      TraceEventType.PATTERN_MATCH,
      f"{group_id} -> {kind}",
      {"group": group_id, "kind": kind, "bindings": bindings},
    )

  def log_suppression(self, group_id: str, reason: str, detail: str):
    self._log_simple(TraceEventType.SUPPRESSION, f"{group_id} suppressed ({reason})", {"detail": detail})

  def log_ambiguity(self, group_id: str, kinds: List[str]):
    self._log_simple(TraceEventType.AMBIGUITY, f"{group_id} ambiguous", {"kinds": kinds})

  def log_blocked(self, group_id: Optional[str], reason: str, detail: str):
    self._log_simple(TraceEventType.PLAN_BLOCKED, f"{group_id} blocked ({reason})", {"detail": detail})

  def log_rewrite(self, group_id: str, factory: str, before: str, after: str):
    """Logs an applied rewrite with the unit text before and after it."""
    self._log_simple(
      TraceEventType.REWRITE,
      f"{group_id} rewritten into {factory}()",
      {"before": before, "after": after},
    )

  def log_violation(self, group_id: str, check: str, detail: str):
    self._log_simple(TraceEventType.VIOLATION, f"{group_id} rejected by {check}", {"detail": detail})

  def log_warning(self, message: str):
    self._log_simple(TraceEventType.ANALYSIS_WARNING, message, {"level": "warning"})

  def _log_simple(self, evt_type: TraceEventType, desc: str, meta: Dict[str, Any]):
    parent = self._active_phases[-1] if self._active_phases else None
    self._events.append(
      TraceEvent(
        id=str(uuid.uuid4()), type=evt_type, timestamp=time.time(), description=desc, parent_id=parent, metadata=meta
      )
    )

  def export(self) -> List[Dict[str, Any]]:
    """Returns list of dicts for JSON serialization."""
    return [asdict(e) for e in self._events]

"""
Default Pattern Catalog.

The catalog is plain data: one entry per pattern kind with its tie-break
priority (lower wins) and default scope-of-creation policy. The engine receives
it through `EngineConfig.catalog`, so priorities and policies can be tuned from
`pyproject.toml` without touching the analyzer or the group builder.

Priority rationale: correctness-critical patterns (unreleased resources,
concurrent retry corruption) precede performance and ergonomics patterns.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from scope_lift.enums import PatternKind, ScopePolicy


class PatternSpec(BaseModel):
  """
  Catalog entry describing one pattern kind.
  """

  kind: PatternKind
  priority: int = Field(description="Tie-break rank when several signatures match. Lower wins.")
  scope_policy: ScopePolicy = Field(description="Default scope-of-creation for the generated factory.")
  description: str = ""


_DEFAULT_CATALOG: List[Dict[str, Any]] = [
  {
    "kind": "resource-lifecycle",
    "priority": 0,
    "scope_policy": "module",
    "description": "Handle created without a matching release on every exit path.",
  },
  {
    "kind": "retry-backoff",
    "priority": 1,
    "scope_policy": "per-scope",
    "description": "Attempt counter mutated inside a bounded loop with backoff delay.",
  },
  {
    "kind": "serialized-queue",
    "priority": 2,
    "scope_policy": "per-scope",
    "description": "Container used as FIFO together with an in-flight flag.",
  },
  {
    "kind": "timer-debounce-throttle",
    "priority": 3,
    "scope_policy": "module",
    "description": "Timer handle created and cleared by the same accessor, or clock-gated state.",
  },
  {
    "kind": "memoized-cache",
    "priority": 4,
    "scope_policy": "module",
    "description": "Keyed container with check-then-insert access and no eviction.",
  },
  {
    "kind": "request-context",
    "priority": 5,
    "scope_policy": "per-scope",
    "description": "Storage keyed by a per-call identifier and read by unrelated accessors.",
  },
  {
    "kind": "unstable-callback-identity",
    "priority": 6,
    "scope_policy": "module",
    "description": "Callable re-created on every call and handed to a subscription API.",
  },
  {
    "kind": "lazy-init",
    "priority": 7,
    "scope_policy": "module",
    "description": "Value computed on first access behind a done-flag.",
  },
  {
    "kind": "guard-once",
    "priority": 8,
    "scope_policy": "module",
    "description": "Boolean written once, then only read and branched on.",
  },
  {
    "kind": "mutable-state-bag",
    "priority": 9,
    "scope_policy": "module",
    "description": "Any other state mutated and shared by several accessors.",
  },
]


def default_catalog() -> List[PatternSpec]:
  """
  Builds the shipped catalog.

  Returns:
      List[PatternSpec]: One validated entry per pattern kind, in priority order.
  """
  return [PatternSpec.model_validate(entry) for entry in _DEFAULT_CATALOG]

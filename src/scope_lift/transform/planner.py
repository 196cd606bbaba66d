"""
Transformation Planner.

Turns accepted PatternMatches into `TransformationPlan` recipes: the factory
name, the bindings it allocates, the capability surface it returns, where it is
invoked and which call sites are served by which capability.

Matches whose rewrite would change a public contract, or that need a decision a
machine should not make, come back as `PlanBlocked` values instead. Blocked
matches stay reported as flag-only.
"""

from typing import Dict, List, Optional, Set, Union

import libcst as cst

from scope_lift.analysis.signatures import GroupView
from scope_lift.config import EngineConfig
from scope_lift.enums import BlockReason, ScopePolicy
from scope_lift.errors import PlanBlocked
from scope_lift.models import (
  MODULE_SCOPE,
  AnalysisReport,
  Capability,
  CallSitePatch,
  PatternMatch,
  TransformationPlan,
)
from scope_lift.transform.strategies import get_strategy, missing_strategies


def unique_name(base: str, taken: Set[str]) -> str:
  """
  Suffixes `base` with `_2`, `_3`, ... until it collides with nothing in `taken`.
  """
  if base not in taken:
    return base
  index = 2
  while f"{base}_{index}" in taken:
    index += 1
  return f"{base}_{index}"


def factory_base_name(accessor: str) -> str:
  """`make_<accessor>`, kept private when the accessor is private."""
  stem = accessor.lstrip("_") or "state"
  return f"_make_{stem}" if accessor.startswith("_") else f"make_{stem}"


class TransformationPlanner:
  """
  Builds rewrite plans for one analyzed unit.
  """

  def __init__(self, config: Optional[EngineConfig] = None):
    self.config = config or EngineConfig()
    missing = missing_strategies()
    if missing:
      raise RuntimeError(f"No rewrite strategy registered for: {', '.join(k.value for k in missing)}")

  def plan(
    self,
    report: AnalysisReport,
    selected: List[PatternMatch],
    module: Optional[cst.Module] = None,
  ) -> List[Union[TransformationPlan, PlanBlocked]]:
    """
    Plans every selected match against a fresh analysis of the unit.

    Args:
        report: Analysis of the current source.
        selected: Matches chosen for rewriting.
        module: The parsed unit, used by strategies that copy source fragments.

    Returns:
        One TransformationPlan or PlanBlocked per selected match, in order.
    """
    taken: Set[str] = set(report.unit.identifiers)
    out: List[Union[TransformationPlan, PlanBlocked]] = []
    for match in selected:
      try:
        plan = self._plan_one(report, match, module, taken)
      except PlanBlocked as blocked:
        out.append(blocked)
        continue
      taken.add(plan.factory_name)
      taken.update(c.name for c in plan.capabilities)
      out.append(plan)
    return out

  def _current(self, report: AnalysisReport, match: PatternMatch) -> Optional[PatternMatch]:
    known = [*report.matches, *(s.match for s in report.suppressed)]
    for candidate in known:
      same_members = (
        candidate.group.bindings == match.group.bindings and candidate.group.accessors == match.group.accessors
      )
      if same_members and candidate.kind == match.kind:
        return candidate
    return None

  def _plan_one(
    self,
    report: AnalysisReport,
    match: PatternMatch,
    module: Optional[cst.Module],
    taken: Set[str],
  ) -> TransformationPlan:
    current = self._current(report, match)
    if current is None:
      raise PlanBlocked(
        BlockReason.STALE_MATCH,
        list(match.group.bindings),
        "the match does not describe the current source",
        match=match,
      )
    match = current
    unit = report.unit
    view = GroupView(match.group, unit, self.config, module)
    policy = match.scope_policy

    self._check_contract(match, view, policy)

    strategy = get_strategy(match.kind)
    bindings, dropped = strategy.bindings(view)
    release_point, release_methods = strategy.release(view, policy)

    primary = match.group.accessors[0]
    factory_name = unique_name(factory_base_name(primary), taken)
    reserved = taken | {factory_name}

    capabilities = [Capability(name=a, role="accessor", accessor=a) for a in match.group.accessors]
    for binding in release_methods:
      name = unique_name(f"release_{binding.lstrip('_') or 'handle'}", reserved)
      reserved.add(name)
      capabilities.append(Capability(name=name, role="release"))

    sites = view.external_call_sites()
    if policy == ScopePolicy.MODULE:
      scopes = [MODULE_SCOPE]
    else:
      scopes = sorted({s.scope for s in sites if s.scope != MODULE_SCOPE})
      if not scopes or any(s.scope == MODULE_SCOPE for s in sites):
        scopes.append(MODULE_SCOPE)

    plan = TransformationPlan(
      match=match,
      factory_name=factory_name,
      bindings=bindings,
      accessors=list(match.group.accessors),
      capabilities=capabilities,
      scope_policy=policy,
      invocation_scopes=scopes,
      release_point=release_point,
      release_methods=release_methods,
      dropped_rebinds=dropped,
    )
    plan.patches = [
      CallSitePatch(
        old_name=site.target,
        new_reference=site.target,
        scope=site.scope,
        line=site.line,
        invocation=plan.invocation,
      )
      for site in sorted(sites, key=lambda s: s.line)
    ]
    return plan

  def _check_contract(self, match: PatternMatch, view: GroupView, policy: ScopePolicy) -> None:
    """
    Raises:
        PlanBlocked: If the rewrite needs a manual decision.
    """
    methods = [a.name for a in view.accessors if a.is_method]
    if methods:
      raise PlanBlocked(
        BlockReason.METHOD_ACCESSOR,
        methods,
        "methods would leave their class; the class API would change",
        match=match,
      )

    nested = [a.name for a in view.accessors if not a.top_level]
    if nested:
      raise PlanBlocked(
        BlockReason.NESTED_DEFINITION,
        nested,
        "accessor is defined conditionally or inside another construct",
        match=match,
      )

    exported = [b.name for b in view.bindings if b.exported]
    if exported:
      raise PlanBlocked(
        BlockReason.EXPORTED_BINDING,
        exported,
        "public module attribute would disappear",
        match=match,
      )

    referenced: Dict[str, List[int]] = {b.name: b.module_refs for b in view.bindings if b.module_refs}
    if referenced:
      lines = sorted({line for refs in referenced.values() for line in refs})
      raise PlanBlocked(
        BlockReason.MODULE_REFERENCE,
        sorted(referenced),
        f"referenced from module scope on line(s) {', '.join(map(str, lines))}",
        match=match,
      )

    if policy == ScopePolicy.PER_SCOPE:
      public = [a.name for a in view.accessors if a.exported]
      if public:
        raise PlanBlocked(
          BlockReason.EXPORTED_ACCESSOR,
          public,
          "per-scope state would change the sharing seen by external callers",
          match=match,
        )

      split = _split_scopes(view)
      if split:
        raise PlanBlocked(
          BlockReason.SPLIT_SHARING,
          list(view.group.accessors),
          f"scopes {', '.join(split)} reach different accessors and would each get a separate instance",
          match=match,
        )

    last = max([b.statement for b in view.bindings] + [a.statement for a in view.accessors])
    early = [s for s in view.external_call_sites() if s.scope == MODULE_SCOPE and s.statement < last]
    if early:
      raise PlanBlocked(
        BlockReason.INTERLEAVED_MODULE_USE,
        sorted({s.target for s in early}),
        f"used at module scope on line {early[0].line}, before the group is complete",
        match=match,
      )


def _split_scopes(view: GroupView) -> List[str]:
  """
  Invoking scopes of a per-scope group when they do not all reach the same accessors.

  Each scope gets its own factory instance, so a write made through one
  accessor in `handler_a` would be invisible to another accessor called only
  from `handler_b`.
  """
  reached: Dict[str, Set[str]] = {}
  for site in view.external_call_sites():
    reached.setdefault(site.scope, set()).add(site.target)
  if len(reached) < 2:
    return []
  called = set().union(*reached.values())
  if all(targets == called for targets in reached.values()):
    return []
  return sorted(reached)

"""
Pattern Classifier.

Assigns each sharing group at most one kind from the closed catalog. Every
registered signature is evaluated; matching kinds are ranked by catalog
priority (lower wins) and then by confidence. Ties that the priority order
cannot break are raised as `ClassificationAmbiguous` instead of being decided
arbitrarily.

The catalog comes from configuration, so priorities and default scope policies
are data. Two policies are refined per group from the code itself:

*   guard-once is created per scope when the guard is reset by some accessor
    and every scope that sets it also resets it, meaning its "once" is tied
    to a caller lifecycle. A guard set in one function and reset in another
    stays a module-wide singleton.
*   resource-lifecycle is created per scope when every use happens inside
    functions and nothing about the group is public.
"""

from typing import Dict, List, Optional, Set

from scope_lift.analysis.signatures import GroupView, get_signature, missing_signatures, reset_guards
from scope_lift.config import EngineConfig
from scope_lift.enums import PatternKind, ScopePolicy
from scope_lift.errors import ClassificationAmbiguous
from scope_lift.models import MODULE_SCOPE, PatternMatch, SharingGroup, SignatureMatch, UnitAnalysis


class PatternClassifier:
  """
  Classifies sharing groups against the configured catalog.
  """

  def __init__(self, config: Optional[EngineConfig] = None):
    self.config = config or EngineConfig()
    missing = [k for k in missing_signatures() if self.config.spec_for(k) is not None]
    if missing:
      raise RuntimeError(f"No structural signature registered for: {', '.join(k.value for k in missing)}")

  def candidates(self, view: GroupView) -> List[SignatureMatch]:
    """
    Evaluates every catalog signature against a group.

    Returns:
        List[SignatureMatch]: Matching kinds, best first.
    """
    found = []
    for spec in self.config.catalog:
      signature = get_signature(spec.kind)
      confidence = signature(view) if signature else None
      if confidence:
        found.append(SignatureMatch(kind=spec.kind, priority=spec.priority, confidence=confidence))
    found.sort(key=lambda m: (m.priority, -m.confidence))
    return found

  def classify(self, group: SharingGroup, unit: UnitAnalysis) -> Optional[PatternMatch]:
    """
    Classifies one group.

    Args:
        group: The sharing group.
        unit: The analyzed unit the group was built from.

    Returns:
        Optional[PatternMatch]: The match, or None when no signature matches.

    Raises:
        ClassificationAmbiguous: If the best candidates cannot be ordered.
    """
    view = GroupView(group, unit, self.config)
    found = self.candidates(view)
    if not found:
      return None

    best = found[0]
    if len(found) > 1:
      runner_up = found[1]
      if runner_up.priority == best.priority:
        raise ClassificationAmbiguous(group.id, [best.kind, runner_up.kind], list(group.bindings))
      more_confident = [m for m in found[1:] if m.confidence > best.confidence]
      if best.confidence < self.config.ambiguity_threshold and more_confident:
        raise ClassificationAmbiguous(group.id, [best.kind, more_confident[0].kind], list(group.bindings))

    return PatternMatch(
      group=group,
      kind=best.kind,
      confidence=best.confidence,
      scope_policy=self.scope_policy(best.kind, view),
      candidates=found,
    )

  def scope_policy(self, kind: PatternKind, view: GroupView) -> ScopePolicy:
    """
    Resolves the scope-of-creation policy for a matched kind.
    """
    spec = self.config.spec_for(kind)
    policy = spec.scope_policy if spec else ScopePolicy.MODULE

    if kind == PatternKind.GUARD_ONCE and reset_guards(view):
      return ScopePolicy.PER_SCOPE if _reset_within_scope(view) else ScopePolicy.MODULE

    if kind == PatternKind.RESOURCE_LIFECYCLE:
      sites = view.external_call_sites()
      public = any(a.exported for a in view.accessors) or any(b.exported for b in view.bindings)
      if sites and not public and all(s.scope != MODULE_SCOPE for s in sites):
        return ScopePolicy.PER_SCOPE
      return ScopePolicy.MODULE

    return policy


def _reset_within_scope(view: GroupView) -> bool:
  """
  True if every function that calls a guard setter also calls its reset.

  Module-level callers, or a setter and a reset reached from different
  functions, mean the guard state is shared between scopes.
  """
  setters, resetters = set(), set()
  for name in reset_guards(view):
    initial = view.unit.bindings[name].initial
    for accessor, profile in view.profiles(name):
      if initial in profile.rebind_values:
        resetters.add(accessor.name)
      if any(v != initial for v in profile.rebind_values):
        setters.add(accessor.name)

  sites = view.external_call_sites()
  if not sites or any(s.scope == MODULE_SCOPE for s in sites):
    return False
  reached: Dict[str, Set[str]] = {}
  for site in sites:
    reached.setdefault(site.scope, set()).add(site.target)
  return all(targets & setters and targets & resetters for targets in reached.values())

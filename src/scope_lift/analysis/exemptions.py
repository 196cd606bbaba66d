"""
Exemption Filter.

Do-not-refactor rules applied to every PatternMatch, in the order configured in
`EngineConfig.exemptions`. The first rule that fires converts the match into a
`SuppressedMatch` carrying the rule and a short detail string for audit.

Rules are registered with `@exemption_rule(reason)` and receive the match and
the `GroupView` it was classified from. A rule returns a detail string when it
fires and None otherwise.
"""

from typing import Callable, Dict, List, Optional, Union

from scope_lift.analysis.signatures import GroupView
from scope_lift.config import EngineConfig
from scope_lift.enums import ExemptionReason, PatternKind
from scope_lift.models import MODULE_SCOPE, PatternMatch, SuppressedMatch, UnitAnalysis

ExemptionRule = Callable[[PatternMatch, GroupView], Optional[str]]

_RULES: Dict[ExemptionReason, ExemptionRule] = {}


def exemption_rule(reason: ExemptionReason) -> Callable[[ExemptionRule], ExemptionRule]:
  """
  Decorator registering an exemption rule under its reason.
  """

  def decorator(func: ExemptionRule) -> ExemptionRule:
    _RULES[reason] = func
    return func

  return decorator


def get_rule(reason: ExemptionReason) -> Optional[ExemptionRule]:
  return _RULES.get(reason)


@exemption_rule(ExemptionReason.CORRECTLY_SCOPED)
def correctly_scoped(match: PatternMatch, view: GroupView) -> Optional[str]:
  local = [b.name for b in view.bindings if b.scope != "module"]
  if local:
    return f"{', '.join(local)} already bounded to one invocation"
  return None


@exemption_rule(ExemptionReason.FROZEN_CONSTANT)
def frozen_constant(match: PatternMatch, view: GroupView) -> Optional[str]:
  # The built-in signatures all require a write; this fires for signatures
  # registered on top of them that also accept read-only groups.
  # An open handle is never a constant, even if the name is never rebound.
  if match.kind == PatternKind.RESOURCE_LIFECYCLE:
    return None
  if any(p.writes for _, p in view.profiles()):
    return None
  return "never reassigned or mutated after initialization"


@exemption_rule(ExemptionReason.SINGLE_CALL_SITE)
def single_call_site(match: PatternMatch, view: GroupView) -> Optional[str]:
  own = set(view.group.accessors)
  sites = [s for a in view.accessors for s in a.call_sites]
  # Any reference from inside the group is a re-entrant path.
  if any(s.scope in own for s in sites):
    return None
  if len(sites) != 1:
    return None
  site = sites[0]
  if site.scope != MODULE_SCOPE or site.in_loop or not site.is_call:
    return None
  return f"only called once, from line {site.line}"


@exemption_rule(ExemptionReason.TRIVIAL_LOGIC)
def trivial_logic(match: PatternMatch, view: GroupView) -> Optional[str]:
  if not all(a.side_effect_free for a in view.accessors):
    return None
  if any(b.exported or b.module_refs for b in view.bindings):
    return None
  # A binding handed to a subscription API outlives the call that reset it.
  if any(p.subscribed for _, p in view.profiles()):
    return None
  if not all(p.first_event == "reset" for _, p in view.profiles()):
    return None
  return "accessors reset the state before use and touch nothing else"


class ExemptionFilter:
  """
  Applies the configured exemption rules to pattern matches.
  """

  def __init__(self, config: Optional[EngineConfig] = None):
    self.config = config or EngineConfig()

  def apply(self, match: PatternMatch, unit: UnitAnalysis) -> Union[PatternMatch, SuppressedMatch]:
    """
    Runs the rules against one match.

    Args:
        match: A classified group.
        unit: The analyzed unit.

    Returns:
        The match unchanged, or a SuppressedMatch naming the first rule that fired.
    """
    view = GroupView(match.group, unit, self.config)
    for reason in self.config.exemptions:
      rule = get_rule(reason)
      if rule is None:
        continue
      detail = rule(match, view)
      if detail is not None:
        return SuppressedMatch(match=match, reason=reason, detail=detail)
    return match

  def partition(self, matches: List[PatternMatch], unit: UnitAnalysis):
    """
    Splits matches into accepted and suppressed lists.

    Returns:
        Tuple[List[PatternMatch], List[SuppressedMatch]]
    """
    accepted, suppressed = [], []
    for match in matches:
      result = self.apply(match, unit)
      if isinstance(result, SuppressedMatch):
        suppressed.append(result)
      else:
        accepted.append(result)
    return accepted, suppressed

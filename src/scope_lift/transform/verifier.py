"""
Preservation Verifier.

Accepts or rejects one applied plan by checking, in order:

1.  **compile**: the rewritten unit compiles (`nonlocal` misuse is a compile error).
2.  **fixpoint**: re-running analysis, grouping, classification and exemptions
    over the rewritten unit finds nothing left over the transformed bindings.
3.  **replay**: every scenario yields the same observation log before and after.
    When no scenario is supplied, a synthesized one is replayed instead.

A failed check yields a `ViolationRecord`; the caller discards the rewrite and
keeps the match as flag-only.
"""

import difflib
from typing import Callable, Iterable, List, Optional

from scope_lift.config import EngineConfig
from scope_lift.enums import ReplayMode
from scope_lift.errors import AnalysisError
from scope_lift.models import AnalysisReport, DiffSummary, ReplayScenario, TransformationPlan, ViolationRecord
from scope_lift.transform.replay import run_scenario, synthesized_scenario

Analyze = Callable[[str], AnalysisReport]


class PreservationVerifier:
  """
  Checks a rewrite against the source it was produced from.
  """

  def __init__(self, analyze: Analyze, config: Optional[EngineConfig] = None):
    """
    Args:
        analyze: Runs the analysis stages over a source text.
        config: Engine configuration (replay mode, release vocabulary).
    """
    self.analyze = analyze
    self.config = config or EngineConfig()

  def verify(
    self,
    before: str,
    after: str,
    plan: TransformationPlan,
    scenarios: Iterable[ReplayScenario] = (),
  ) -> Optional[ViolationRecord]:
    """
    Runs every check.

    Returns:
        Optional[ViolationRecord]: The first failure, or None when the rewrite is accepted.
    """
    for check in (self.check_compile, self.check_fixpoint):
      detail = check(after, plan)
      if detail:
        return self._record(plan, check.__name__.replace("check_", ""), detail)

    detail = self.check_replay(before, after, plan, list(scenarios))
    if detail:
      return self._record(plan, "replay", detail)
    return None

  def _record(self, plan: TransformationPlan, check: str, detail: str) -> ViolationRecord:
    return ViolationRecord(group_id=plan.group_id, factory_name=plan.factory_name, check=check, detail=detail)

  def check_compile(self, after: str, plan: TransformationPlan) -> Optional[str]:
    try:
      compile(after, "<rewritten>", "exec")
    except SyntaxError as e:
      return f"{e.msg} (line {e.lineno})"
    return None

  def check_fixpoint(self, after: str, plan: TransformationPlan) -> Optional[str]:
    """
    Asserts that no match, suppression or ambiguity survives over the plan's bindings.
    """
    try:
      report = self.analyze(after)
    except AnalysisError as e:
      return f"re-analysis failed: {e.message}"

    names = set(plan.binding_names)
    leftovers = [m.kind.value for m in report.matches if names & set(m.binding_names)]
    leftovers += [s.match.kind.value for s in report.suppressed if names & set(s.match.binding_names)]
    leftovers += ["ambiguous" for a in report.ambiguous if names & set(a.bindings)]
    if leftovers:
      return f"re-analysis still reports {', '.join(sorted(set(leftovers)))} over {', '.join(sorted(names))}"
    return None

  def check_replay(
    self,
    before: str,
    after: str,
    plan: TransformationPlan,
    scenarios: List[ReplayScenario],
  ) -> Optional[str]:
    """
    Compares observation logs of the original and rewritten unit.
    """
    mode = self.config.replay_mode
    if mode == ReplayMode.OFF:
      return None
    if mode == ReplayMode.SYNTHESIZED or not scenarios:
      required = {a: self._required(before, a) for a in plan.accessors}
      synthesized = synthesized_scenario(plan, required)
      if synthesized.calls:
        scenarios = [*scenarios, synthesized]

    ignored = set(plan.release_methods.values())
    for scenario in scenarios:
      original = run_scenario(before, scenario, plan, ignored)
      rewritten = run_scenario(after, scenario, plan, ignored)
      if original != rewritten:
        return f"scenario '{scenario.name}' diverged: {_first_difference(original, rewritten)}"
    return None

  def _required(self, source: str, accessor: str) -> int:
    try:
      report = self.analyze(source)
    except AnalysisError:
      return 1
    found = report.unit.accessors.get(accessor)
    return found.required_params if found else 1


def _first_difference(original: list, rewritten: list) -> str:
  for index, (a, b) in enumerate(zip(original, rewritten)):
    if a != b:
      return f"step {index}: {a!r} != {b!r}"
  return f"{len(original)} vs {len(rewritten)} observations"


def diff_summary(before: str, after: str, plans: List[TransformationPlan]) -> DiffSummary:
  """
  Summarizes the accepted rewrites of one `apply` call.
  """
  added = removed = 0
  for line in difflib.unified_diff(before.splitlines(), after.splitlines(), lineterm=""):
    if line.startswith("+") and not line.startswith("+++"):
      added += 1
    elif line.startswith("-") and not line.startswith("---"):
      removed += 1
  return DiffSummary(
    lines_added=added,
    lines_removed=removed,
    factories=[p.factory_name for p in plans],
    bindings=[name for p in plans for name in p.binding_names],
    kinds=[p.kind for p in plans],
    release_points=[p.release_point for p in plans if p.release_point is not None],
  )

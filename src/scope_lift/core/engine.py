"""
Orchestration Engine.

This module provides the `ScopeLiftEngine`, the driver that chains the pipeline
stages over one source unit:

1.  **Analysis**: `ScopeAnalyzer` finds bindings, accessors and call sites.
2.  **Grouping**: `build_groups` partitions them into sharing groups.
3.  **Classification**: `PatternClassifier` tags each group with a catalog kind.
4.  **Exemptions**: `ExemptionFilter` suppresses do-not-refactor matches.
5.  **Planning**: `TransformationPlanner` synthesizes factories, or blocks.
6.  **Rewrite**: `RewriteApplier` applies one plan at a time.
7.  **Verification**: `PreservationVerifier` accepts or discards each rewrite.

Rejections are exceptions inside a stage and values at the engine surface: each
group fails on its own and every failure is returned next to the successes.

The engine keeps no state between runs. Every call owns its tracer, its
analysis and its plans, so one engine can serve several threads.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional, Sequence, Union

import libcst as cst

from scope_lift.analysis.classifier import PatternClassifier
from scope_lift.analysis.exemptions import ExemptionFilter
from scope_lift.analysis.groups import build_groups
from scope_lift.analysis.scope import ScopeAnalyzer
from scope_lift.config import EngineConfig
from scope_lift.core.tracer import TraceLogger
from scope_lift.errors import AnalysisError, ClassificationAmbiguous, PlanBlocked, PreservationViolation, RewriteConflict
from scope_lift.models import (
  AnalysisReport,
  PatternMatch,
  ReplayScenario,
  RewriteResult,
  SuppressedMatch,
  TransformationPlan,
  ViolationRecord,
)
from scope_lift.transform.applier import RewriteApplier
from scope_lift.transform.planner import TransformationPlanner
from scope_lift.transform.verifier import PreservationVerifier, diff_summary
from scope_lift.utils.console import log_debug, log_success, log_warning

Finding = Union[PatternMatch, SuppressedMatch, ClassificationAmbiguous, AnalysisError]
PlanOutcome = Union[TransformationPlan, PlanBlocked]


class ScopeLiftEngine:
  """
  Closure-pattern detection and transformation over Python source units.
  """

  def __init__(self, config: Optional[EngineConfig] = None):
    """
    Args:
        config: Engine configuration. Defaults to `EngineConfig()`; use
            `EngineConfig.load()` to honor `[tool.scope_lift]`.
    """
    self.config = config or EngineConfig()
    self.analyzer = ScopeAnalyzer(self.config)
    self.classifier = PatternClassifier(self.config)
    self.exemptions = ExemptionFilter(self.config)
    self.planner = TransformationPlanner(self.config)
    self.applier = RewriteApplier()
    self.verifier = PreservationVerifier(self.run_analysis, self.config)

  # --- Analysis ---

  def run_analysis(self, source: str, tracer: Optional[TraceLogger] = None) -> AnalysisReport:
    """
    Runs analysis, grouping, classification and exemptions.

    Args:
        source: Python source of the unit.
        tracer: Optional tracer receiving phase and match events.

    Returns:
        AnalysisReport: Structured result.

    Raises:
        AnalysisError: If the unit cannot be parsed or times out.
    """
    tracer = tracer or TraceLogger()

    tracer.start_phase("Analysis", "Scope & alias analysis")
    try:
      unit = self.analyzer.analyze(source)
    finally:
      tracer.end_phase()
    for error in unit.errors:
      tracer.log_warning(f"{error.binding}: {error.message}")

    tracer.start_phase("Grouping", "Sharing groups")
    groups = build_groups(unit)
    tracer.end_phase()

    tracer.start_phase("Classification", "Pattern catalog")
    matches: List[PatternMatch] = []
    ambiguous: List[ClassificationAmbiguous] = []
    for group in groups:
      try:
        match = self.classifier.classify(group, unit)
      except ClassificationAmbiguous as e:
        tracer.log_ambiguity(group.id, [k.value for k in e.kinds])
        ambiguous.append(e)
        continue
      if match is not None:
        tracer.log_match(group.id, match.kind.value, list(group.bindings))
        matches.append(match)
    tracer.end_phase()

    tracer.start_phase("Exemptions", "Do-not-refactor rules")
    accepted, suppressed = self.exemptions.partition(matches, unit)
    for item in suppressed:
      tracer.log_suppression(item.match.group.id, item.reason.value, item.detail)
    tracer.end_phase()

    log_debug(
      f"{len(unit.bindings)} binding(s), {len(groups)} group(s), "
      f"{len(accepted)} match(es), {len(suppressed)} suppressed"
    )
    return AnalysisReport(unit=unit, groups=groups, matches=accepted, suppressed=suppressed, ambiguous=ambiguous)

  def analyze(self, source: str) -> List[Finding]:
    """
    Read-only analysis of one unit.

    Returns:
        List: PatternMatch and SuppressedMatch findings, then surfaced
        ClassificationAmbiguous and AnalysisError rejections. A unit that
        cannot be analyzed yields a single AnalysisError.
    """
    try:
      return self.run_analysis(source).findings
    except AnalysisError as e:
      log_warning(f"Analysis failed: {e.message}")
      return [e]

  def analyze_many(self, sources: Dict[str, str], max_workers: Optional[int] = None) -> Dict[str, List[Finding]]:
    """
    Analyzes independent units in parallel.

    Args:
        sources: Unit label (e.g. a file path) -> source text.
        max_workers: Thread pool size.

    Returns:
        Dict[str, List[Finding]]: Findings per unit, in input order.
    """
    labels = list(sources)
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
      results = list(pool.map(lambda label: self.analyze(sources[label]), labels))
    return dict(zip(labels, results))

  # --- Planning ---

  def plan(self, source: str, selected: Sequence[PatternMatch]) -> List[PlanOutcome]:
    """
    Builds rewrite plans for the selected matches.

    Returns:
        List: One TransformationPlan or PlanBlocked per selected match.

    Raises:
        AnalysisError: If the unit cannot be analyzed.
    """
    report = self.run_analysis(source)
    return self.planner.plan(report, list(selected), cst.parse_module(source))

  # --- Rewrite ---

  def apply(
    self,
    source: str,
    plans: Sequence[PlanOutcome],
    scenarios: Iterable[ReplayScenario] = (),
    tracer: Optional[TraceLogger] = None,
  ) -> Union[RewriteResult, PreservationViolation]:
    """
    Applies plans one at a time, verifying each rewrite before keeping it.

    Args:
        source: Python source the plans were made for.
        plans: Output of `plan`; PlanBlocked entries are reported as flag-only.
        scenarios: Call sequences to replay before accepting each rewrite.
        tracer: Optional tracer; a fresh one is used otherwise.

    Returns:
        RewriteResult, or PreservationViolation when every attempted plan was rejected.
    """
    tracer = tracer or TraceLogger()
    scenarios = list(scenarios)
    current = source
    applied: List[TransformationPlan] = []
    flagged: List[PatternMatch] = []
    rejected: List[ViolationRecord] = []

    tracer.start_phase("Rewrite", "Apply and verify")
    for plan in plans:
      if isinstance(plan, PlanBlocked):
        tracer.log_blocked(plan.group_id, plan.reason.value, plan.detail)
        if plan.match is not None:
          flagged.append(plan.match)
        continue

      record = self._apply_one(current, plan, scenarios)
      if isinstance(record, ViolationRecord):
        tracer.log_violation(record.group_id, record.check, record.detail)
        log_warning(f"Rejected {record.group_id} ({record.check}): {record.detail}")
        rejected.append(record)
        flagged.append(plan.match)
        continue

      tracer.log_rewrite(plan.group_id, plan.factory_name, current, record)
      current = record
      applied.append(plan)
    tracer.end_phase()

    if rejected and not applied:
      return PreservationViolation(rejected)

    if applied:
      log_success(f"Applied {len(applied)} rewrite(s)")
    return RewriteResult(
      code=current,
      patches=[patch for plan in applied for patch in plan.patches],
      diff_summary=diff_summary(source, current, applied),
      applied=applied,
      flagged=flagged,
      rejected=rejected,
      trace_events=tracer.export(),
    )

  def _apply_one(
    self,
    current: str,
    plan: TransformationPlan,
    scenarios: List[ReplayScenario],
  ) -> Union[str, ViolationRecord]:
    try:
      candidate = self.applier.apply(current, plan)
    except RewriteConflict as e:
      return ViolationRecord(group_id=plan.group_id, factory_name=plan.factory_name, check="apply", detail=str(e))
    violation = self.verifier.verify(current, candidate, plan, scenarios)
    return violation if violation is not None else candidate

  def rewrite(
    self,
    source: str,
    scenarios: Iterable[ReplayScenario] = (),
  ) -> Union[RewriteResult, PreservationViolation]:
    """
    Analyze, plan every accepted match, then apply.

    Returns:
        RewriteResult (unchanged code when there is nothing to do), or
        PreservationViolation when every attempted plan was rejected.

    Raises:
        AnalysisError: If the unit cannot be analyzed.
    """
    tracer = TraceLogger()
    report = self.run_analysis(source, tracer)
    tracer.start_phase("Planning", "Factories and call-site patches")
    outcomes = self.planner.plan(report, report.matches, cst.parse_module(source))
    tracer.end_phase()
    return self.apply(source, outcomes, scenarios, tracer)

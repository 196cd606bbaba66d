"""
scope-lift: Closure-Pattern Detection and Transformation.

This package finds module-level mutable state shared across call sites of a
Python module (guards, caches, timers, handles, counters, queues) and rewrites
each sharing group into a factory that owns the state and returns the bound
functions. Every rewrite is verified before it is kept.

Usage
-----

Programmatic usage via the `rewrite` helper:

.. code-block:: python

    import scope_lift

    code = '''
    _loaded = False

    def load():
        global _loaded
        if _loaded:
            return
        _loaded = True
        print("loading")
    '''

    result = scope_lift.rewrite(code)
    print(result.code)

For finer control (selecting matches, supplying replay scenarios, reading the
trace), use `scope_lift.core.engine.ScopeLiftEngine` directly.
"""

from typing import Iterable, List, Optional, Sequence, Union

from scope_lift.config import EngineConfig
from scope_lift.core.engine import Finding, PlanOutcome, ScopeLiftEngine
from scope_lift.errors import (
  AnalysisError,
  ClassificationAmbiguous,
  PlanBlocked,
  PreservationViolation,
  ScopeLiftError,
)
from scope_lift.models import PatternMatch, ReplayCall, ReplayScenario, RewriteResult

__version__ = "0.0.1"


def analyze(source: str, config: Optional[EngineConfig] = None) -> List[Finding]:
  """
  Lists the closure patterns found in one source unit.

  Args:
      source (str): Python source code.
      config (EngineConfig, optional): Engine configuration.

  Returns:
      List: PatternMatch and SuppressedMatch findings, followed by the
      ClassificationAmbiguous and AnalysisError rejections.
  """
  return ScopeLiftEngine(config).analyze(source)


def plan(
  source: str,
  selected: Sequence[PatternMatch],
  config: Optional[EngineConfig] = None,
) -> List[PlanOutcome]:
  """
  Builds a TransformationPlan (or a PlanBlocked) for each selected match.
  """
  return ScopeLiftEngine(config).plan(source, selected)


def apply(
  source: str,
  plans: Sequence[PlanOutcome],
  scenarios: Iterable[ReplayScenario] = (),
  config: Optional[EngineConfig] = None,
) -> Union[RewriteResult, PreservationViolation]:
  """
  Applies plans to the source they were made for, verifying each one.
  """
  return ScopeLiftEngine(config).apply(source, plans, scenarios)


def rewrite(
  source: str,
  scenarios: Iterable[ReplayScenario] = (),
  config: Optional[EngineConfig] = None,
) -> RewriteResult:
  """
  Analyzes, plans and applies every accepted match in one call.

  Args:
      source (str): Python source code.
      scenarios: Call sequences replayed against the original and rewritten unit.
      config (EngineConfig, optional): Engine configuration.

  Returns:
      RewriteResult: The rewritten code with patches, flagged and rejected plans.

  Raises:
      AnalysisError: If the unit cannot be parsed.
      PreservationViolation: If every attempted rewrite failed verification.
  """
  result = ScopeLiftEngine(config).rewrite(source, scenarios)
  if isinstance(result, PreservationViolation):
    raise result
  return result


__all__ = [
  "AnalysisError",
  "ClassificationAmbiguous",
  "EngineConfig",
  "PlanBlocked",
  "PreservationViolation",
  "ReplayCall",
  "ReplayScenario",
  "ScopeLiftEngine",
  "ScopeLiftError",
  "__version__",
  "analyze",
  "apply",
  "plan",
  "rewrite",
]

"""
Tests for Structural Signatures and the Pattern Classifier.

Verifies:
1.  Each catalog kind is recognized on a representative unit.
2.  Catalog priority decides between overlapping signatures.
3.  Scope-of-creation policy refinements (resettable guards, private resources).
4.  Ambiguity is raised for priority ties and low-confidence winners.
"""

import pytest

from scope_lift.analysis import signatures
from scope_lift.analysis.classifier import PatternClassifier
from scope_lift.analysis.groups import build_groups
from scope_lift.analysis.scope import analyze_unit
from scope_lift.catalog import default_catalog
from scope_lift.config import EngineConfig
from scope_lift.enums import PatternKind, ScopePolicy
from scope_lift.errors import ClassificationAmbiguous
from tests.samples import (
  CLOCK_THROTTLE,
  DEBOUNCE_TIMER,
  GUARD_ONCE,
  LAZY_CONFIG,
  LEAKED_CONNECTION,
  MEMOIZED_FIB,
  PUBLIC_CONNECTION,
  REQUEST_CONTEXT,
  REQUEST_STORE,
  RESETTABLE_GUARD,
  RETRY_BACKOFF,
  RETRY_COUNTER,
  SERIALIZED_QUEUE,
  SESSION_GREETING,
  SHARED_COUNTER,
  SPLIT_GUARD,
  UNSTABLE_CALLBACK,
  unit,
)


def classify(code, config=None):
  config = config or EngineConfig()
  analysis = analyze_unit(code, config)
  classifier = PatternClassifier(config)
  return [classifier.classify(group, analysis) for group in build_groups(analysis)]


@pytest.mark.parametrize(
  "code, kind, policy",
  [
    (GUARD_ONCE, PatternKind.GUARD_ONCE, ScopePolicy.MODULE),
    (RESETTABLE_GUARD, PatternKind.GUARD_ONCE, ScopePolicy.MODULE),
    (SPLIT_GUARD, PatternKind.GUARD_ONCE, ScopePolicy.MODULE),
    (SESSION_GREETING, PatternKind.GUARD_ONCE, ScopePolicy.PER_SCOPE),
    (MEMOIZED_FIB, PatternKind.MEMOIZED_CACHE, ScopePolicy.MODULE),
    (DEBOUNCE_TIMER, PatternKind.TIMER_DEBOUNCE_THROTTLE, ScopePolicy.MODULE),
    (CLOCK_THROTTLE, PatternKind.TIMER_DEBOUNCE_THROTTLE, ScopePolicy.MODULE),
    (LEAKED_CONNECTION, PatternKind.RESOURCE_LIFECYCLE, ScopePolicy.PER_SCOPE),
    (PUBLIC_CONNECTION, PatternKind.RESOURCE_LIFECYCLE, ScopePolicy.MODULE),
    (RETRY_BACKOFF, PatternKind.RETRY_BACKOFF, ScopePolicy.PER_SCOPE),
    (SERIALIZED_QUEUE, PatternKind.SERIALIZED_QUEUE, ScopePolicy.PER_SCOPE),
    (LAZY_CONFIG, PatternKind.LAZY_INIT, ScopePolicy.MODULE),
    (REQUEST_CONTEXT, PatternKind.REQUEST_CONTEXT, ScopePolicy.PER_SCOPE),
    (REQUEST_STORE, PatternKind.REQUEST_CONTEXT, ScopePolicy.PER_SCOPE),
    (RETRY_COUNTER, PatternKind.RETRY_BACKOFF, ScopePolicy.PER_SCOPE),
    (UNSTABLE_CALLBACK, PatternKind.UNSTABLE_CALLBACK_IDENTITY, ScopePolicy.MODULE),
    (SHARED_COUNTER, PatternKind.MUTABLE_STATE_BAG, ScopePolicy.MODULE),
  ],
)
def test_catalog_kind_recognized(code, kind, policy):
  matches = classify(code)
  assert len(matches) == 1
  match = matches[0]
  assert match.kind == kind
  assert match.scope_policy == policy
  assert 0 < match.confidence <= 1


def test_priority_breaks_overlap():
  """
  Scenario: A None-tested handle created by `connect` and never closed.
  Expectation: resource-lifecycle outranks lazy-init; both are listed as candidates.
  """
  match = classify(LEAKED_CONNECTION)[0]
  assert [c.kind for c in match.candidates] == [PatternKind.RESOURCE_LIFECYCLE, PatternKind.LAZY_INIT]


def test_released_handle_is_not_a_leak():
  code = unit(
    """
    _conn = None


    def query(sql):
        global _conn
        if _conn is None:
            _conn = connect("db")
        return _conn.execute(sql)


    def shutdown():
        _conn.close()
    """
  )
  match = classify(code)[0]
  assert match.kind != PatternKind.RESOURCE_LIFECYCLE


def test_group_without_shape_is_unclassified():
  code = unit(
    """
    _log = []


    def record(x):
        _log.append(x)
    """
  )
  assert classify(code) == [None]


def test_priority_tie_is_ambiguous():
  catalog = [
    spec.model_copy(update={"priority": 0}) if spec.kind == PatternKind.LAZY_INIT else spec
    for spec in default_catalog()
  ]
  config = EngineConfig(catalog=catalog)

  with pytest.raises(ClassificationAmbiguous) as excinfo:
    classify(LEAKED_CONNECTION, config)

  assert set(excinfo.value.kinds) == {PatternKind.LAZY_INIT, PatternKind.RESOURCE_LIFECYCLE}
  assert excinfo.value.bindings == ["_conn"]


def test_low_confidence_winner_is_ambiguous():
  """
  Scenario: Clock-gated state (weak timer signature) shared by two accessors.
  Expectation: The weak winner yields to the more confident state bag as ambiguous.
  """
  code = CLOCK_THROTTLE + unit(
    """


    def reset_throttle():
        global _last
        _last = 0.0
    """
  )
  with pytest.raises(ClassificationAmbiguous) as excinfo:
    classify(code)
  assert excinfo.value.kinds == [PatternKind.TIMER_DEBOUNCE_THROTTLE, PatternKind.MUTABLE_STATE_BAG]


def test_every_kind_has_a_signature():
  assert signatures.missing_signatures() == []


def test_classifier_refuses_incomplete_registry(monkeypatch):
  monkeypatch.delitem(signatures._SIGNATURES, PatternKind.LAZY_INIT)
  with pytest.raises(RuntimeError, match="lazy-init"):
    PatternClassifier(EngineConfig())


def test_reset_guards_lists_resettable_flags():
  analysis = analyze_unit(RESETTABLE_GUARD)
  group = build_groups(analysis)[0]
  view = signatures.GroupView(group, analysis, EngineConfig())
  assert signatures.reset_guards(view) == ["_done"]


def test_keyed_store_split_across_accessors_is_not_a_cache():
  """
  Scenario: One accessor stores under a caller-supplied key, another looks it up.
  Expectation: Per-request context, not a module-wide memoized cache.
  """
  [match] = classify(REQUEST_STORE)
  kinds = [c.kind for c in match.candidates]

  assert PatternKind.MEMOIZED_CACHE not in kinds
  assert kinds[0] == PatternKind.REQUEST_CONTEXT


def test_guard_reset_from_another_function_stays_module_wide():
  """
  Scenario: `startup()` sets the guard through `_init`, `shutdown()` clears it through `_reset`.
  Expectation: One shared guard; per-scope instances would split the setter from its reset.
  """
  [match] = classify(SPLIT_GUARD)
  assert match.scope_policy == ScopePolicy.MODULE

  joined = SPLIT_GUARD.replace("def shutdown():\n    _reset()\n", "def shutdown():\n    _init()\n    _reset()\n")
  joined = joined.replace("def startup():\n    return _init()\n", "def startup():\n    _reset()\n    return _init()\n")
  [match] = classify(joined)
  assert match.scope_policy == ScopePolicy.PER_SCOPE


def test_guard_used_at_module_scope_stays_module_wide():
  code = SESSION_GREETING + "\n\n_announce()\n"
  [match] = classify(code)
  assert match.scope_policy == ScopePolicy.MODULE

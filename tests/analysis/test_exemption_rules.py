"""
Tests for the Exemption Filter.

Verifies:
1.  single-call-site: state touched from one module-level call is left alone.
2.  frozen-constant: state never written after initialization is left alone.
3.  correctly-scoped: state already bounded to one invocation is left alone.
4.  trivial-logic: pure accessors that reset before use are left alone.
5.  Rule order and configuration control which rule is reported.
"""

from scope_lift.analysis import signatures
from scope_lift.analysis.classifier import PatternClassifier
from scope_lift.analysis.exemptions import ExemptionFilter, get_rule
from scope_lift.analysis.groups import build_groups
from scope_lift.analysis.scope import analyze_unit
from scope_lift.analysis.signatures import GroupView
from scope_lift.config import EngineConfig
from scope_lift.enums import ExemptionReason, PatternKind, ScopePolicy
from scope_lift.models import PatternMatch, SuppressedMatch
from tests.samples import GUARD_ONCE, LEAKED_CONNECTION, SHARED_COUNTER, unit

SETUP_ONCE = unit(
  """
  _ready = False


  def setup():
      global _ready
      if _ready:
          return
      _ready = True


  setup()
  """
)

LOOKUP_TABLE = unit(
  """
  _table = {"a": 1, "b": 2}


  def lookup(key):
      return _table[key]


  def known(key):
      return key in _table
  """
)

RESET_BUFFER = unit(
  """
  _buffer = []


  def collect(items):
      global _buffer
      _buffer = []
      for item in items:
          _buffer.append(item)
      return len(_buffer)


  def summarize(items):
      global _buffer
      _buffer = []
      _buffer.extend(items)
      return sorted(_buffer)
  """
)


def match_for(code, kind=None, config=None):
  """Builds a PatternMatch over the first group, classifying it unless `kind` is forced."""
  config = config or EngineConfig()
  analysis = analyze_unit(code, config)
  group = build_groups(analysis)[0]
  if kind is None:
    match = PatternClassifier(config).classify(group, analysis)
  else:
    match = PatternMatch(group=group, kind=kind, confidence=0.9, scope_policy=ScopePolicy.MODULE)
  return match, analysis


def test_single_call_site_suppressed():
  match, analysis = match_for(SETUP_ONCE)
  assert match.kind == PatternKind.GUARD_ONCE

  result = ExemptionFilter().apply(match, analysis)

  assert isinstance(result, SuppressedMatch)
  assert result.reason == ExemptionReason.SINGLE_CALL_SITE
  assert "line 11" in result.detail


def test_two_call_sites_not_suppressed():
  match, analysis = match_for(GUARD_ONCE)
  assert ExemptionFilter().apply(match, analysis) is match


def test_call_in_loop_not_single():
  code = SETUP_ONCE.replace("setup()\n", "for _ in range(3):\n    setup()\n")
  match, analysis = match_for(code)
  assert ExemptionFilter().apply(match, analysis) is match


def test_frozen_constant_suppressed():
  match, analysis = match_for(LOOKUP_TABLE, kind=PatternKind.MEMOIZED_CACHE)

  result = ExemptionFilter().apply(match, analysis)

  assert result.reason == ExemptionReason.FROZEN_CONSTANT


def test_frozen_constant_skips_open_handles():
  """
  Scenario: A connection never rebound after creation.
  Expectation: It is not a constant; the leak stays reported.
  """
  match, analysis = match_for(LEAKED_CONNECTION)
  rule = get_rule(ExemptionReason.FROZEN_CONSTANT)
  assert rule(match, GroupView(match.group, analysis, EngineConfig())) is None


def test_correctly_scoped_suppressed():
  match, analysis = match_for(SHARED_COUNTER)
  analysis.bindings["_count"].scope = "function"

  result = ExemptionFilter().apply(match, analysis)

  assert result.reason == ExemptionReason.CORRECTLY_SCOPED
  assert "_count" in result.detail


def test_trivial_logic_suppressed():
  match, analysis = match_for(RESET_BUFFER)
  assert match.kind == PatternKind.MUTABLE_STATE_BAG

  result = ExemptionFilter().apply(match, analysis)

  assert result.reason == ExemptionReason.TRIVIAL_LOGIC


def test_trivial_logic_requires_purity():
  code = RESET_BUFFER.replace("return sorted(_buffer)", 'print("summary")\n    return sorted(_buffer)')
  match, analysis = match_for(code)
  assert ExemptionFilter().apply(match, analysis) is match


def test_counter_is_not_trivial():
  # `_count += 1` reads before it writes.
  match, analysis = match_for(SHARED_COUNTER)
  assert ExemptionFilter().apply(match, analysis) is match


def test_disabled_rules_do_not_fire():
  config = EngineConfig(exemptions=[])
  match, analysis = match_for(SETUP_ONCE, config=config)
  assert ExemptionFilter(config).apply(match, analysis) is match


def test_first_rule_wins():
  """
  Scenario: A read-only table that is also touched from a single call site.
  Expectation: The configured order decides which reason is reported.
  """
  code = LOOKUP_TABLE + "\n\nlookup('a')\n"
  reordered = EngineConfig(exemptions=[ExemptionReason.SINGLE_CALL_SITE, ExemptionReason.FROZEN_CONSTANT])

  default_result = ExemptionFilter().apply(*match_for(code, PatternKind.MEMOIZED_CACHE))
  reordered_result = ExemptionFilter(reordered).apply(*match_for(code, PatternKind.MEMOIZED_CACHE))

  assert default_result.reason == ExemptionReason.FROZEN_CONSTANT
  assert reordered_result.reason == ExemptionReason.SINGLE_CALL_SITE


def test_partition_keeps_order():
  guard, guard_unit = match_for(GUARD_ONCE)
  accepted, suppressed = ExemptionFilter().partition([guard], guard_unit)
  assert accepted == [guard]
  assert suppressed == []


def test_frozen_constant_through_engine(monkeypatch, engine):
  """
  Scenario: A registered signature accepts the read-only lookup table.
  Expectation: The engine reports the match as suppressed, not accepted.
  """
  monkeypatch.setitem(signatures._SIGNATURES, PatternKind.MUTABLE_STATE_BAG, lambda view: 0.5)

  findings = engine.analyze(LOOKUP_TABLE)

  assert [type(f) for f in findings] == [SuppressedMatch]
  assert findings[0].reason == ExemptionReason.FROZEN_CONSTANT
  assert findings[0].match.kind == PatternKind.MUTABLE_STATE_BAG

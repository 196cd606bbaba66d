"""
Tests for the Scope & Alias Analyzer.

Verifies:
1.  Binding discovery and kind inference from initial values.
2.  Python scoping: locals, parameters and comprehension targets shadow bindings.
3.  Access profiles through nested functions, lambdas and methods.
4.  Call-site collection (scope, loop nesting, call vs. reference).
5.  Aliases, exports and module-level references.
6.  Dynamic reflection exclusion, parse errors and the analysis budget.
"""

import libcst as cst
import pytest

from scope_lift.analysis.scope import ScopeAnalyzer, analyze_unit, function_scope, infer_kind
from scope_lift.config import EngineConfig
from scope_lift.enums import AccessDirection, BindingKind
from scope_lift.errors import AnalysisError
from scope_lift.models import MODULE_SCOPE
from tests.samples import GUARD_ONCE, unit



def test_binding_kinds_inferred_from_initial_values():
  code = unit(
    """
    _flag = False
    _hits = 0
    _items = {}
    _conn = None
    _name = "x"
    LIMIT = 10


    def touch(key):
        global _flag, _hits, _conn, _name
        _flag = True
        _hits += 1
        _items[key] = 1
        _conn = open("f")
        _name = "y"
        return LIMIT
    """
  )
  analysis = analyze_unit(code)

  kinds = {name: b.kind for name, b in analysis.bindings.items()}
  assert kinds == {
    "_flag": BindingKind.GUARD,
    "_hits": BindingKind.COUNTER,
    "_items": BindingKind.CONTAINER,
    "_conn": BindingKind.HANDLE,
    "_name": BindingKind.RECORD,
  }
  # Immutable constants that nobody rebinds are not state.
  assert "LIMIT" not in analysis.bindings


def test_access_profile_details():
  code = unit(
    """
    _flag = False
    _hits = 0
    _items = {}
    _conn = None


    def touch(key):
        global _flag, _hits, _conn
        _flag = True
        _hits += 1
        _items[key] = 1
        _conn = open("f")
    """
  )
  touch = analyze_unit(code).accessors["touch"]

  assert touch.profiles["_flag"].rebind_values == ["True"]
  assert touch.profiles["_hits"].augmented
  assert touch.profiles["_items"].param_keyed_store
  assert touch.profiles["_conn"].handle_constructor == "open"
  assert touch.directions["_items"] == AccessDirection.WRITE
  assert touch.directions["_hits"] == AccessDirection.READ_WRITE


def test_container_constructor_kinds():
  config = EngineConfig()
  assert infer_kind(cst.parse_expression("collections.deque()"), config) == (BindingKind.CONTAINER, "deque")
  assert infer_kind(cst.parse_expression("socket.socket()"), config) == (BindingKind.HANDLE, "socket")
  assert infer_kind(cst.parse_expression("-1"), config) == (BindingKind.COUNTER, None)
  assert infer_kind(cst.parse_expression("make()"), config) == (BindingKind.RECORD, "make")


def test_locals_and_params_shadow_bindings():
  code = unit(
    """
    _cache = {}


    def uses_local():
        _cache = {}
        _cache["a"] = 1
        return _cache


    def uses_param(_cache):
        _cache["b"] = 2
    """
  )
  analysis = analyze_unit(code)
  assert "_cache" in analysis.bindings
  assert analysis.accessors == {}


def test_comprehension_target_is_local():
  code = unit(
    """
    _seen = set()


    def collect(items):
        return [_seen for _seen in items]
    """
  )
  assert analyze_unit(code).accessors == {}


def test_nested_function_and_lambda_count_for_outer_accessor():
  code = unit(
    """
    _events = []


    def register():
        def inner():
            _events.append(1)
        return lambda: len(_events)
    """
  )
  profile = analyze_unit(code).accessors["register"].profiles["_events"]
  assert profile.mutators == ["append"]
  assert profile.reads >= 1


def test_methods_are_accessors():
  code = unit(
    """
    _pool = []


    class Worker:
        def take(self):
            return _pool.pop()
    """
  )
  accessor = analyze_unit(code).accessors["Worker.take"]
  assert accessor.is_method
  assert not accessor.exported
  assert accessor.profiles["_pool"].mutators == ["pop"]


def test_call_sites_track_scope_loops_and_references():
  code = unit(
    """
    _hits = 0


    def bump():
        global _hits
        _hits += 1


    def loop_user():
        for _ in range(3):
            bump()


    bump()
    callbacks = [bump]
    """
  )
  sites = analyze_unit(code).accessors["bump"].call_sites
  assert [(s.scope, s.is_call, s.in_loop) for s in sites] == [
    ("loop_user", True, True),
    (MODULE_SCOPE, True, False),
    (MODULE_SCOPE, False, False),
  ]


def test_alias_shares_storage_and_is_not_a_module_reference():
  code = unit(
    """
    _registry = {}
    registry = _registry


    def add(key, value):
        _registry[key] = value
    """
  )
  analysis = analyze_unit(code)
  assert analysis.bindings["registry"].alias_of == "_registry"
  assert analysis.bindings["registry"].exported
  assert analysis.bindings["_registry"].module_refs == []


def test_module_level_use_is_recorded():
  code = unit(
    """
    _hits = {}


    def hit(key):
        _hits[key] = 1


    print(_hits)
    """
  )
  assert analyze_unit(code).bindings["_hits"].module_refs == [8]


def test_exports_follow_dunder_all():
  code = unit(
    """
    __all__ = ["run"]

    _state = []


    def run():
        _state.append(1)


    def helper():
        _state.append(2)
    """
  )
  analysis = analyze_unit(code)
  assert analysis.exports == ["run"]
  assert analysis.accessors["run"].exported
  assert not analysis.accessors["helper"].exported


def test_conditional_definition_is_not_top_level():
  code = unit(
    """
    _seen = set()

    if True:
        def mark(x):
            _seen.add(x)
    """
  )
  assert analyze_unit(code).accessors["mark"].top_level is False


def test_identifiers_cover_attribute_names():
  analysis = analyze_unit(GUARD_ONCE)
  assert {"_loaded", "load", "print"} <= set(analysis.identifiers)


def test_literal_reflection_excludes_one_binding():
  code = unit(
    """
    _state = {}
    _other = []


    def poke():
        globals()["_state"] = {}
        _other.append(1)
    """
  )
  analysis = analyze_unit(code)
  assert "_state" not in analysis.bindings
  assert "_other" in analysis.bindings
  assert [e.binding for e in analysis.errors] == ["_state"]


def test_dynamic_reflection_excludes_every_binding():
  code = unit(
    """
    _a = []
    _b = {}


    def poke(name):
        globals()[name] = None
        _a.append(1)
    """
  )
  analysis = analyze_unit(code)
  assert analysis.bindings == {}
  assert sorted(e.binding for e in analysis.errors) == ["_a", "_b"]


def test_parse_error_raises_analysis_error():
  with pytest.raises(AnalysisError, match="Parse Error"):
    ScopeAnalyzer().analyze("def broken(:\n")


def test_exhausted_budget_raises_analysis_error():
  analyzer = ScopeAnalyzer(EngineConfig(analysis_timeout=1e-9))
  with pytest.raises(AnalysisError, match="budget"):
    analyzer.analyze(GUARD_ONCE)


def test_function_scope_respects_global_declarations():
  func = cst.parse_statement("def f(a, b=1):\n    global g\n    g = a\n    c = b\n")
  scope = function_scope(func)
  assert scope.params == ["a", "b"]
  assert scope.locals == {"a", "b", "c"}
  assert scope.globals == {"g"}

"""
Tests for Call-Sequence Replay.

Verifies:
1.  Stub calls and scenario results are logged in order; setup effects are tagged.
2.  Handles returned by stubs record their method calls; ignored methods are skipped.
3.  Exceptions, missing targets and failing unit setup are observations, not errors.
4.  Object identity is logged as per-run references.
5.  `import atexit` and `print` inside a replayed unit never reach the host process.
"""

from unittest.mock import patch

from scope_lift.enums import PatternKind, ReleasePoint, ScopePolicy
from scope_lift.models import (
  Capability,
  PatternMatch,
  ReplayCall,
  ReplayScenario,
  SharingGroup,
  TransformationPlan,
)
from scope_lift.transform.replay import run_scenario, synthesized_scenario
from tests.samples import GUARD_ONCE, LEAKED_CONNECTION, FakeConnection, unit


def calls(*targets, **kwargs):
  return [ReplayCall(target=t, **kwargs) for t in targets]


def test_setup_and_call_effects():
  printed = []
  scenario = ReplayScenario(calls=calls("load", "load"), stubs={"print": lambda *a: printed.append(a)})

  log = run_scenario(GUARD_ONCE, scenario)

  assert log == [
    ("setup", "call", "print", (("loading",), ())),
    ("return", "load", None),
    ("return", "load", None),
  ]
  assert printed == [("loading",)]


def test_print_is_recorded_without_reaching_stdout(capsys):
  log = run_scenario(GUARD_ONCE, ReplayScenario(calls=calls("load")))

  assert log == [
    ("setup", "call", "print", (("loading",), ())),
    ("return", "load", None),
  ]
  assert capsys.readouterr().out == ""


def test_handle_methods_are_recorded():
  scenario = ReplayScenario(
    calls=[ReplayCall(target="query", args=["a"]), ReplayCall(target="query", args=["b"])],
    stubs={"connect": lambda dsn: FakeConnection()},
  )

  log = run_scenario(LEAKED_CONNECTION, scenario)

  assert log == [
    ("call", "connect", (("db",), ())),
    ("method", "connect#0", "execute", (("a",), ())),
    ("return", "query", "rows for a"),
    ("method", "connect#0", "execute", (("b",), ())),
    ("return", "query", "rows for b"),
  ]


def test_ignored_methods_are_skipped():
  code = LEAKED_CONNECTION + unit(
    """


    def shutdown():
        _conn.close()
    """
  )
  scenario = ReplayScenario(
    calls=[ReplayCall(target="query", args=["a"]), ReplayCall(target="shutdown")],
    stubs={"connect": lambda dsn: FakeConnection()},
  )

  with_close = run_scenario(code, scenario)
  without_close = run_scenario(code, scenario, ignored_methods={"close"})

  assert ("method", "connect#0", "close", ((), ())) in with_close
  assert len(without_close) == len(with_close) - 1


def test_exceptions_are_observations():
  code = unit(
    """
    def fail(reason):
        raise ValueError(reason)
    """
  )
  log = run_scenario(code, ReplayScenario(calls=[ReplayCall(target="fail", args=["boom"])]))
  assert log == [("raise", "fail", "ValueError", "boom")]


def test_missing_target():
  log = run_scenario("x = 1\n", ReplayScenario(calls=calls("nope")))
  assert log == [("missing", "nope")]


def test_setup_failure():
  log = run_scenario("raise RuntimeError('bad unit')\n", ReplayScenario(calls=calls("anything")))
  assert log == [("setup-raise", "RuntimeError", "bad unit")]


def test_identity_is_logged_as_reference():
  code = unit(
    """
    _items = []


    def items():
        return _items


    def fresh():
        return []
    """
  )
  log = run_scenario(code, ReplayScenario(calls=calls("items", "items", "fresh")))

  first, second, third = (entry[2] for entry in log)
  assert first == second
  assert third[0] == "list" and third[1] != first[1]


def test_coroutines_are_awaited():
  code = unit(
    """
    async def ping():
        return "pong"
    """
  )
  log = run_scenario(code, ReplayScenario(calls=calls("ping")))
  assert log == [("return", "ping", "pong")]


def test_atexit_is_sandboxed():
  code = unit(
    """
    import atexit

    _hooks = []


    def cleanup():
        _hooks.append("ran")


    atexit.register(cleanup)


    def hooks():
        return len(_hooks)
    """
  )
  with patch("atexit.register") as register:
    log = run_scenario(code, ReplayScenario(calls=calls("hooks")))

  register.assert_not_called()
  assert log == [("return", "hooks", 0)]


def _per_scope_plan(factory, accessors, release=None):
  group = SharingGroup(id="g1", bindings=["_conn"], accessors=accessors)
  match = PatternMatch(
    group=group, kind=PatternKind.RESOURCE_LIFECYCLE, confidence=0.9, scope_policy=ScopePolicy.PER_SCOPE
  )
  capabilities = [Capability(name=a, role="accessor", accessor=a) for a in accessors]
  if release:
    capabilities.append(Capability(name=release, role="release"))
  return TransformationPlan(
    match=match,
    factory_name=factory,
    bindings=[],
    accessors=accessors,
    capabilities=capabilities,
    scope_policy=ScopePolicy.PER_SCOPE,
    release_point=ReleasePoint.FINALLY if release else None,
    release_methods={"_conn": "close"} if release else {},
  )


def test_per_scope_calls_share_one_factory_instance():
  code = unit(
    """
    def make_query():
        _conn = None

        def query(sql):
            nonlocal _conn
            if _conn is None:
                _conn = connect("db")
            return _conn.execute(sql)

        def release_conn():
            nonlocal _conn
            if _conn is not None:
                _conn.close()
                _conn = None

        return query, release_conn
    """
  )
  plan = _per_scope_plan("make_query", ["query"], release="release_conn")
  scenario = ReplayScenario(
    calls=[ReplayCall(target="query", args=["a"]), ReplayCall(target="query", args=["b"])],
    stubs={"connect": lambda dsn: FakeConnection()},
  )

  assert run_scenario(code, scenario, plan) == run_scenario(LEAKED_CONNECTION, scenario)


def test_synthesized_scenario_skips_required_params():
  plan = _per_scope_plan("make_query", ["query", "reset"])

  scenario = synthesized_scenario(plan, {"query": 1, "reset": 0})

  assert scenario.name == "synthesized-g1"
  assert [c.target for c in scenario.calls] == ["reset", "reset"]

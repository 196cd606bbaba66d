"""
Call-Sequence Replay.

Executes a `ReplayScenario` against a source unit in a fresh namespace and
returns the ordered list of externally observable effects:

*   the result of every scenario call (or the exception it raised),
*   every call to a stub, and every method call on an object a stub returned.

Non-primitive values are described by a per-run reference index instead of
their identity, so two runs agree when they return "the same object twice"
in the same places. Release-method calls on stub handles are excluded: adding
the missing release is the point of a resource-lifecycle rewrite.

Stubs are visible while the unit executes (as builtins, so module-level
initializers can reach them) and replace same-named module globals afterwards.
`import atexit` inside the unit resolves to a per-run registry, so replayed
units never register exit hooks in the host process. Likewise `print` is
recorded as a stub call unless the scenario supplies its own, and nothing
reaches the host's stdout.
"""

import asyncio
import builtins
import inspect
import types
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from scope_lift.enums import ScopePolicy
from scope_lift.models import ReplayCall, ReplayScenario, TransformationPlan

_PRIMITIVES = (type(None), bool, int, float, complex, str, bytes)
_MAX_DEPTH = 6

Observation = Tuple[Any, ...]


class _Observer:
  """Maps objects to stable per-run reference indices."""

  def __init__(self) -> None:
    self._refs: Dict[int, int] = {}
    self._keep: List[Any] = []

  def ref(self, obj: Any) -> int:
    key = id(obj)
    if key not in self._refs:
      self._refs[key] = len(self._refs)
      # Keep the object alive so its id is not reused during the run.
      self._keep.append(obj)
    return self._refs[key]

  def describe(self, value: Any, depth: int = 0) -> Any:
    if isinstance(value, _PRIMITIVES):
      return value
    if isinstance(value, _HandleProxy):
      return ("handle", value._label)
    if isinstance(value, BaseException):
      return ("exception", type(value).__name__, str(value))
    if depth >= _MAX_DEPTH:
      return ("ref", self.ref(value), type(value).__name__)
    if isinstance(value, (list, tuple, set, frozenset)):
      items = [self.describe(v, depth + 1) for v in value]
      if isinstance(value, (set, frozenset)):
        items = sorted(items, key=repr)
      return (type(value).__name__, self.ref(value), tuple(items))
    if isinstance(value, dict):
      items = [(self.describe(k, depth + 1), self.describe(v, depth + 1)) for k, v in value.items()]
      return ("dict", self.ref(value), tuple(sorted(items, key=repr)))
    return ("ref", self.ref(value), type(value).__name__)


class _HandleProxy:
  """
  Wraps an object returned by a stub and records method calls made on it.
  """

  def __init__(self, target: Any, label: str, recorder: "EffectRecorder"):
    self._target = target
    self._label = label
    self._recorder = recorder

  def __getattr__(self, name: str) -> Any:
    attr = getattr(self._target, name)
    if not callable(attr):
      return attr

    def method(*args: Any, **kwargs: Any) -> Any:
      self._recorder.record(("method", self._label, name, args, kwargs), ignored=name in self._recorder.ignored)
      return attr(*args, **kwargs)

    return method

  def __enter__(self) -> Any:
    self._recorder.record(("method", self._label, "__enter__", (), {}))
    return self

  def __exit__(self, *exc: Any) -> None:
    self._recorder.record(("method", self._label, "__exit__", (), {}))
    exit_ = getattr(self._target, "__exit__", None)
    if exit_ is not None:
      exit_(*exc)


class EffectRecorder:
  """
  Collects the external effects of one run.
  """

  def __init__(self, observer: _Observer, ignored: Iterable[str] = ()):
    self.observer = observer
    self.ignored: Set[str] = set(ignored)
    self._pending: List[Observation] = []
    self._counters: Dict[str, int] = {}

  def record(self, event: Tuple[Any, ...], ignored: bool = False) -> None:
    if ignored:
      return
    kind, *rest = event
    if kind == "method":
      label, name, args, kwargs = rest
      self._pending.append(("method", label, name, self._args(args, kwargs)))
    else:
      name, args, kwargs = rest
      self._pending.append(("call", name, self._args(args, kwargs)))

  def _args(self, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> Tuple[Any, ...]:
    described = tuple(self.observer.describe(a) for a in args)
    named = tuple(sorted((k, self.observer.describe(v)) for k, v in kwargs.items()))
    return described, named

  def wrap(self, name: str, stub: Callable[..., Any]) -> Callable[..., Any]:
    """
    Wraps a stub so that calls and returned handles are recorded.
    """

    def recorded(*args: Any, **kwargs: Any) -> Any:
      self.record(("call", name, args, kwargs))
      result = stub(*args, **kwargs)
      if isinstance(result, _PRIMITIVES) or isinstance(result, (list, tuple, dict, set)):
        return result
      index = self._counters.get(name, 0)
      self._counters[name] = index + 1
      return _HandleProxy(result, f"{name}#{index}", self)

    recorded.__name__ = name
    return recorded

  def drain(self) -> List[Observation]:
    out, self._pending = self._pending, []
    return out


def _exit_registry() -> types.ModuleType:
  """A stand-in `atexit` module that collects hooks without running them."""
  registry = types.ModuleType("atexit")
  hooks: List[Callable[..., Any]] = []

  def register(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Callable[..., Any]:
    hooks.append(func)
    return func

  def unregister(func: Callable[..., Any]) -> None:
    hooks[:] = [h for h in hooks if h is not func]

  registry.register = register
  registry.unregister = unregister
  registry.hooks = hooks
  return registry


def _sandboxed_import(exit_registry: types.ModuleType) -> Callable[..., Any]:
  def importer(name, globals=None, locals=None, fromlist=(), level=0):
    if name == "atexit" and level == 0:
      return exit_registry
    return builtins.__import__(name, globals, locals, fromlist, level)

  return importer


def _discard(*args: Any, **kwargs: Any) -> None:
  return None


def _invoke(func: Callable[..., Any], call: ReplayCall) -> Any:
  result = func(*call.args, **call.kwargs)
  if inspect.iscoroutine(result):
    result = asyncio.run(result)
  return result


def run_scenario(
  code: str,
  scenario: ReplayScenario,
  plan: Optional[TransformationPlan] = None,
  ignored_methods: Iterable[str] = (),
) -> List[Observation]:
  """
  Executes a scenario and returns its observation log.

  Args:
      code: Source text of the unit.
      scenario: Calls and stubs to replay.
      plan: When given and per-scope, calls targeting the plan's capabilities
          go through one factory instance instead of module globals.
      ignored_methods: Handle methods left out of the log.

  Returns:
      List[Observation]: Setup effects, then each call's effects and result.
  """
  observer = _Observer()
  recorder = EffectRecorder(observer, ignored_methods)
  stubs = {name: recorder.wrap(name, stub) for name, stub in scenario.stubs.items()}
  if "print" not in stubs:
    stubs["print"] = recorder.wrap("print", _discard)

  namespace: Dict[str, Any] = {
    "__name__": "__scope_lift_replay__",
    "__builtins__": {**vars(builtins), "__import__": _sandboxed_import(_exit_registry()), **stubs},
  }
  log: List[Observation] = []
  try:
    exec(compile(code, "<replay>", "exec"), namespace)
  except Exception as e:
    log.append(("setup-raise", type(e).__name__, str(e)))
    return log
  namespace.update(stubs)

  entry: Dict[str, Any] = namespace
  if plan is not None and plan.scope_policy == ScopePolicy.PER_SCOPE and plan.factory_name in namespace:
    try:
      capabilities = namespace[plan.factory_name]()
    except Exception as e:
      log.append(("setup-raise", type(e).__name__, str(e)))
      return log
    if len(plan.capability_names) == 1:
      capabilities = (capabilities,)
    entry = {**namespace, **dict(zip(plan.capability_names, capabilities))}
  log.extend(("setup",) + effect for effect in recorder.drain())

  for call in scenario.calls:
    target = entry.get(call.target)
    if not callable(target):
      log.append(("missing", call.target))
      continue
    try:
      result = _invoke(target, call)
      log.extend(recorder.drain())
      log.append(("return", call.target, observer.describe(result)))
    except Exception as e:
      log.extend(recorder.drain())
      log.append(("raise", call.target, type(e).__name__, str(e)))
  return log


def synthesized_scenario(plan: TransformationPlan, required_params: Dict[str, int]) -> ReplayScenario:
  """
  Two calls of every group accessor that takes no required arguments.
  """
  calls = []
  for name in plan.accessors:
    if required_params.get(name, 1) == 0:
      calls.extend([ReplayCall(target=name), ReplayCall(target=name)])
  return ReplayScenario(name=f"synthesized-{plan.group_id}", calls=calls)

"""
Rewrite Strategies.

Every pattern kind maps to exactly one `RewriteStrategy`. Most kinds share the
plain factory shape; two kinds add to it:

*   resource-lifecycle contributes a release callable per handle and picks the
    release point from the scope policy.
*   unstable-callback-identity hoists a callback re-created on every call into
    the binding's initial value so the factory hands out one stable identity.

`missing_strategies()` lets the planner refuse to start when a catalog kind has
no strategy.
"""

from typing import Callable, Dict, List, Optional, Set, Tuple, Type

import libcst as cst

from scope_lift.analysis.signatures import GroupView
from scope_lift.enums import BindingKind, PatternKind, ReleasePoint, ScopePolicy
from scope_lift.models import BindingPlan

_STRATEGIES: Dict[PatternKind, "RewriteStrategy"] = {}


def register_strategy(*kinds: PatternKind) -> Callable[[Type["RewriteStrategy"]], Type["RewriteStrategy"]]:
  """
  Class decorator registering a strategy for one or more pattern kinds.
  """

  def wrapper(cls: Type["RewriteStrategy"]) -> Type["RewriteStrategy"]:
    for kind in kinds:
      _STRATEGIES[kind] = cls()
    return cls

  return wrapper


def get_strategy(kind: PatternKind) -> Optional["RewriteStrategy"]:
  return _STRATEGIES.get(kind)


def missing_strategies() -> List[PatternKind]:
  """Pattern kinds with no registered strategy."""
  return [k for k in PatternKind if k not in _STRATEGIES]


class RewriteStrategy:
  """
  Plain factory shape: fresh storage per invocation, one capability per accessor.
  """

  def bindings(self, view: GroupView) -> Tuple[List[BindingPlan], Dict[str, List[str]]]:
    """
    Declarations the factory allocates, in original order.

    Returns:
        Tuple of the binding declarations and the rebinds to drop per accessor.
    """
    plans = [BindingPlan(name=b.name, initial=b.initial) for b in view.bindings]
    return plans, {}

  def release(self, view: GroupView, policy: ScopePolicy) -> Tuple[Optional[ReleasePoint], Dict[str, str]]:
    """
    Release point and release method per handle binding. None for most kinds.
    """
    return None, {}


@register_strategy(
  PatternKind.GUARD_ONCE,
  PatternKind.MEMOIZED_CACHE,
  PatternKind.TIMER_DEBOUNCE_THROTTLE,
  PatternKind.MUTABLE_STATE_BAG,
  PatternKind.REQUEST_CONTEXT,
  PatternKind.RETRY_BACKOFF,
  PatternKind.LAZY_INIT,
  PatternKind.SERIALIZED_QUEUE,
)
class FactoryStrategy(RewriteStrategy):
  pass


@register_strategy(PatternKind.RESOURCE_LIFECYCLE)
class ResourceLifecycleStrategy(RewriteStrategy):
  """
  Adds a `release_<handle>` capability closing the handle at most once.

  Per-scope plans release in a `finally` around the invoking scope; module plans
  register the release callable with `atexit`.
  """

  def release(self, view: GroupView, policy: ScopePolicy) -> Tuple[Optional[ReleasePoint], Dict[str, str]]:
    methods: Dict[str, str] = {}
    for binding in view.bindings:
      if binding.kind != BindingKind.HANDLE or binding.alias_of:
        continue
      constructors = [binding.constructor] + [p.handle_constructor for _, p in view.profiles(binding.name)]
      created = [c for c in constructors if c in view.config.handle_constructors]
      if created:
        methods[binding.name] = view.config.handle_constructors[created[0]]
    if not methods:
      return None, {}
    point = ReleasePoint.FINALLY if policy == ScopePolicy.PER_SCOPE else ReleasePoint.ATEXIT
    return point, methods


class _LambdaRebindFinder(cst.CSTVisitor):
  """Finds `name = lambda ...` statements for a set of names."""

  def __init__(self, names: Set[str]):
    self.names = names
    self.found: Dict[str, List[cst.Lambda]] = {}

  def visit_Assign(self, node: cst.Assign) -> Optional[bool]:
    if len(node.targets) == 1 and isinstance(node.value, cst.Lambda):
      target = node.targets[0].target
      if isinstance(target, cst.Name) and target.value in self.names:
        self.found.setdefault(target.value, []).append(node.value)
    return True


class _FreeNames(cst.CSTVisitor):
  def __init__(self) -> None:
    self.names: Set[str] = set()

  def visit_Name(self, node: cst.Name) -> Optional[bool]:
    self.names.add(node.value)
    return False

  def visit_Attribute(self, node: cst.Attribute) -> Optional[bool]:
    node.value.visit(self)
    return False

  def visit_Arg(self, node: cst.Arg) -> Optional[bool]:
    node.value.visit(self)
    return False


def lambda_free_names(node: cst.Lambda) -> Set[str]:
  """
  Names a lambda reads from enclosing scopes.
  """
  collector = _FreeNames()
  node.body.visit(collector)
  params = node.params
  own = {p.name.value for p in [*params.posonly_params, *params.params, *params.kwonly_params]}
  if isinstance(params.star_arg, cst.Param):
    own.add(params.star_arg.name.value)
  if params.star_kwarg is not None:
    own.add(params.star_kwarg.name.value)
  return collector.names - own


@register_strategy(PatternKind.UNSTABLE_CALLBACK_IDENTITY)
class StableCallbackStrategy(RewriteStrategy):
  """
  Hoists a re-created lambda into the binding's initial value.

  Only lambdas that do not capture locals of the re-creating accessor are hoisted;
  anything else is kept as written and only encapsulated.
  """

  def bindings(self, view: GroupView) -> Tuple[List[BindingPlan], Dict[str, List[str]]]:
    plans, dropped = super().bindings(view)
    rebinds: Dict[str, int] = {}
    tested: Set[str] = set()
    for _, profile in view.profiles():
      rebinds[profile.binding] = rebinds.get(profile.binding, 0) + profile.rebinds
      if profile.branch_tested or profile.none_tested:
        tested.add(profile.binding)
    # Hoisting is only safe when the lambda is the sole value the binding ever takes.
    callable_bindings = {
      p.binding for _, p in view.profiles() if p.callable_rebind and rebinds[p.binding] == 1 and p.binding not in tested
    }
    module = view.module
    if module is None:
      return plans, dropped

    hoisted: Dict[str, str] = {}
    for accessor in view.accessors:
      node = _find_function(module, accessor.name)
      if node is None:
        continue
      finder = _LambdaRebindFinder(callable_bindings & set(accessor.profiles))
      node.body.visit(finder)
      local = set(accessor.local_names)
      for name, lambdas in finder.found.items():
        if len(lambdas) != 1 or name in hoisted or lambda_free_names(lambdas[0]) & local:
          continue
        hoisted[name] = module.code_for_node(lambdas[0])
        dropped.setdefault(accessor.name, []).append(name)

    plans = [
      BindingPlan(name=p.name, initial=hoisted[p.name], hoisted=True) if p.name in hoisted else p for p in plans
    ]
    return plans, dropped


def _find_function(module: cst.Module, name: str) -> Optional[cst.FunctionDef]:
  for stmt in module.body:
    if isinstance(stmt, cst.FunctionDef) and stmt.name.value == name:
      return stmt
  return None

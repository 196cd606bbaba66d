"""
Structural Signature Registry.

One signature function per pattern kind. A signature inspects a `GroupView`
(the bindings and accessor profiles of one sharing group) and returns a
confidence in (0, 1] when the group has the kind's shape, or None otherwise.

Signatures are registered with `@register_signature(kind)`; the registry is
checked for exhaustiveness against `PatternKind` so adding a kind without a
signature fails loudly instead of silently never matching.
"""

from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple

import libcst as cst

from scope_lift.config import EngineConfig
from scope_lift.enums import BindingKind, PatternKind
from scope_lift.models import AccessProfile, Accessor, Binding, SharingGroup, UnitAnalysis

EVICTION_METHODS: Set[str] = {"pop", "popitem", "clear", "remove", "discard"}
INSERT_METHODS: Set[str] = {"setdefault"}
ENQUEUE_METHODS: Set[str] = {"append", "appendleft", "put", "put_nowait"}
DEQUEUE_METHODS: Set[str] = {"popleft", "pop", "get", "get_nowait"}

_NEGATED = {"True": "False", "False": "True"}


class GroupView:
  """
  Read-only view over one sharing group and the unit facts it refers to.
  """

  def __init__(
    self,
    group: SharingGroup,
    unit: UnitAnalysis,
    config: EngineConfig,
    module: Optional[cst.Module] = None,
  ):
    self.group = group
    self.unit = unit
    self.config = config
    self.module = module
    self.bindings: List[Binding] = [unit.bindings[n] for n in group.bindings]
    self.accessors: List[Accessor] = [unit.accessors[n] for n in group.accessors]

  def of_kind(self, kind: BindingKind) -> List[Binding]:
    return [b for b in self.bindings if b.kind == kind]

  def profiles(self, binding: Optional[str] = None) -> Iterator[Tuple[Accessor, AccessProfile]]:
    """
    Yields `(accessor, profile)` pairs, optionally limited to one binding.
    """
    for accessor in self.accessors:
      for name, profile in accessor.profiles.items():
        if binding is None or name == binding:
          yield accessor, profile

  def mutators(self, binding: str) -> Set[str]:
    return {m for _, p in self.profiles(binding) for m in p.mutators}

  def rebind_values(self, binding: str) -> Set[str]:
    return {v for _, p in self.profiles(binding) for v in p.rebind_values}

  def external_call_sites(self):
    """Call sites of group accessors outside the group's own accessors."""
    own = set(self.group.accessors)
    return [site for a in self.accessors for site in a.call_sites if site.scope not in own]


SignatureFunction = Callable[[GroupView], Optional[float]]

_SIGNATURES: Dict[PatternKind, SignatureFunction] = {}


def register_signature(kind: PatternKind) -> Callable[[SignatureFunction], SignatureFunction]:
  """
  Decorator registering the structural signature of a pattern kind.

  Args:
      kind: The pattern kind the function recognizes.
  """

  def decorator(func: SignatureFunction) -> SignatureFunction:
    _SIGNATURES[kind] = func
    return func

  return decorator


def get_signature(kind: PatternKind) -> Optional[SignatureFunction]:
  return _SIGNATURES.get(kind)


def missing_signatures() -> List[PatternKind]:
  """Pattern kinds with no registered signature."""
  return [k for k in PatternKind if k not in _SIGNATURES]


def reset_guards(view: GroupView) -> List[str]:
  """
  Names of guard bindings some accessor sets back to their initial value.
  """
  out = []
  for binding in view.of_kind(BindingKind.GUARD):
    if binding.initial in view.rebind_values(binding.name):
      out.append(binding.name)
  return out


@register_signature(PatternKind.GUARD_ONCE)
def guard_once(view: GroupView) -> Optional[float]:
  for binding in view.of_kind(BindingKind.GUARD):
    negated = _NEGATED.get(binding.initial)
    if negated is None:
      continue
    setters = [
      p
      for _, p in view.profiles(binding.name)
      if p.branch_tested and p.rebinds and not p.augmented and set(p.rebind_values) == {negated}
    ]
    if not setters:
      continue
    others_ok = all(
      not p.augmented and not p.mutators and set(p.rebind_values) <= {negated, binding.initial}
      for _, p in view.profiles(binding.name)
    )
    if others_ok:
      return 0.9 if len(view.bindings) == 1 else 0.6
  return None


@register_signature(PatternKind.MEMOIZED_CACHE)
def memoized_cache(view: GroupView) -> Optional[float]:
  for binding in view.of_kind(BindingKind.CONTAINER):
    profiles = [p for _, p in view.profiles(binding.name)]
    if any(p.rebinds or p.subscript_delete or EVICTION_METHODS & set(p.mutators) for p in profiles):
      continue
    # Check-then-insert must happen in one accessor; a store written by one
    # accessor and looked up by another is keyed state, not a cache.
    if any(p.membership_test and (p.subscript_store or INSERT_METHODS & set(p.mutators)) for p in profiles):
      return 0.9
  return None


@register_signature(PatternKind.TIMER_DEBOUNCE_THROTTLE)
def timer_debounce_throttle(view: GroupView) -> Optional[float]:
  for _, profile in view.profiles():
    if profile.timer_constructor and "cancel" in profile.mutators:
      return 0.9
  for accessor, profile in view.profiles():
    if accessor.reads_clock and profile.rebinds and profile.branch_tested:
      return 0.45
  return None


@register_signature(PatternKind.RESOURCE_LIFECYCLE)
def resource_lifecycle(view: GroupView) -> Optional[float]:
  release = set(view.config.release_methods)
  for binding in view.of_kind(BindingKind.HANDLE):
    created = binding.constructor in view.config.handle_constructors or any(
      p.handle_constructor for _, p in view.profiles(binding.name)
    )
    if created and not (view.mutators(binding.name) & release):
      return 0.9
  return None


@register_signature(PatternKind.RETRY_BACKOFF)
def retry_backoff(view: GroupView) -> Optional[float]:
  for accessor, profile in view.profiles():
    if not accessor.sleeps_in_loop or not profile.rebinds:
      continue
    binding = view.unit.bindings[profile.binding]
    if profile.loop_write:
      return 0.9 if binding.kind == BindingKind.COUNTER else 0.75
    return 0.5
  return None


@register_signature(PatternKind.SERIALIZED_QUEUE)
def serialized_queue(view: GroupView) -> Optional[float]:
  queues = [
    b
    for b in view.of_kind(BindingKind.CONTAINER)
    if view.mutators(b.name) & ENQUEUE_METHODS and view.mutators(b.name) & DEQUEUE_METHODS
  ]
  if not queues:
    return None
  for flag in view.of_kind(BindingKind.GUARD):
    if {"True", "False"} <= view.rebind_values(flag.name):
      return 0.9
  return None


@register_signature(PatternKind.LAZY_INIT)
def lazy_init(view: GroupView) -> Optional[float]:
  for binding in view.of_kind(BindingKind.HANDLE):
    if binding.initial != "None":
      continue
    for _, profile in view.profiles(binding.name):
      if profile.none_tested and any(v != "None" for v in profile.rebind_values):
        return 0.9
  guards = {b.name for b in view.of_kind(BindingKind.GUARD)}
  for accessor in view.accessors:
    tested_guards = [
      n for n, p in accessor.profiles.items() if n in guards and p.branch_tested and p.rebinds
    ]
    values = [n for n, p in accessor.profiles.items() if n not in guards and p.rebinds]
    if tested_guards and values:
      return 0.8
  return None


@register_signature(PatternKind.REQUEST_CONTEXT)
def request_context(view: GroupView) -> Optional[float]:
  for binding in view.of_kind(BindingKind.CONTAINER):
    writers = {a.name for a, p in view.profiles(binding.name) if p.param_keyed_store}
    if not writers:
      continue
    readers = {
      a.name
      for a, p in view.profiles(binding.name)
      if a.name not in writers and (p.reads or p.membership_test)
    }
    if readers:
      return 0.8
  return None


@register_signature(PatternKind.UNSTABLE_CALLBACK_IDENTITY)
def unstable_callback_identity(view: GroupView) -> Optional[float]:
  for binding in view.bindings:
    profiles = [p for _, p in view.profiles(binding.name)]
    if any(p.callable_rebind for p in profiles) and any(p.subscribed for p in profiles):
      return 0.9
  return None


@register_signature(PatternKind.MUTABLE_STATE_BAG)
def mutable_state_bag(view: GroupView) -> Optional[float]:
  if len(view.accessors) < 2:
    return None
  if any(p.writes for _, p in view.profiles()):
    return 0.5
  return None

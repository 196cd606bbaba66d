"""
Enumerations for scope-lift.

This module defines the closed vocabularies shared across the pipeline:
binding kinds, access directions, the pattern catalog tags, scope-of-creation
policies and the reasons attached to suppressed or blocked matches.
"""

from enum import Enum


class BindingKind(str, Enum):
  """
  Declared kind of an outer-scope mutable binding, inferred from its initial value.
  """

  GUARD = "guard"  # True / False
  COUNTER = "counter"  # int / float literals
  CONTAINER = "container"  # dict, list, set, deque, ... (map/cache)
  HANDLE = "handle"  # None placeholder or a handle constructor call
  RECORD = "record"  # anything else


class AccessDirection(str, Enum):
  """
  Direction in which an Accessor touches a Binding.
  """

  READ = "read"
  WRITE = "write"
  READ_WRITE = "read-write"


class PatternKind(str, Enum):
  """
  Closed catalog of closure patterns the classifier can assign to a sharing group.
  """

  GUARD_ONCE = "guard-once"
  MEMOIZED_CACHE = "memoized-cache"
  TIMER_DEBOUNCE_THROTTLE = "timer-debounce-throttle"
  MUTABLE_STATE_BAG = "mutable-state-bag"
  RESOURCE_LIFECYCLE = "resource-lifecycle"
  REQUEST_CONTEXT = "request-context"
  UNSTABLE_CALLBACK_IDENTITY = "unstable-callback-identity"
  RETRY_BACKOFF = "retry-backoff"
  LAZY_INIT = "lazy-init"
  SERIALIZED_QUEUE = "serialized-queue"


class ScopePolicy(str, Enum):
  """
  Lifecycle boundary at which a generated factory is invoked.
  """

  MODULE = "module"  # once at module init
  PER_SCOPE = "per-scope"  # once per logical scope instance (function call)


class ReleasePoint(str, Enum):
  """
  Where the release callable of a resource-lifecycle rewrite is invoked.
  """

  FINALLY = "finally"
  ATEXIT = "atexit"


class ExemptionReason(str, Enum):
  """
  Do-not-refactor criteria applied by the exemption filter.
  """

  SINGLE_CALL_SITE = "single-call-site"
  FROZEN_CONSTANT = "frozen-constant"
  CORRECTLY_SCOPED = "correctly-scoped"
  TRIVIAL_LOGIC = "trivial-logic"


class BlockReason(str, Enum):
  """
  Reasons the planner refuses to synthesize a rewrite.
  """

  EXPORTED_ACCESSOR = "exported-accessor"
  EXPORTED_BINDING = "exported-binding"
  METHOD_ACCESSOR = "method-accessor"
  MODULE_REFERENCE = "module-reference"
  INTERLEAVED_MODULE_USE = "interleaved-module-use"
  NESTED_DEFINITION = "nested-definition"
  SPLIT_SHARING = "split-sharing"
  STALE_MATCH = "stale-match"


class ReplayMode(str, Enum):
  """
  Controls which call sequences the preservation verifier replays.
  """

  OFF = "off"
  SUPPLIED = "supplied"
  SYNTHESIZED = "synthesized"

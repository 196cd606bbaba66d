"""
Idempotence: rewriting a rewritten unit changes nothing.

A rewrite removes every matched group from module scope, so a second pass must
find nothing left to lift, whatever pattern kind the first pass handled.
"""

import pytest

from scope_lift import ScopeLiftEngine
from tests import samples

SAMPLES = [
  "GUARD_ONCE",
  "MEMOIZED_FIB",
  "SHARED_COUNTER",
  "RETRY_BACKOFF",
  "LEAKED_CONNECTION",
  "PUBLIC_CONNECTION",
  "RESETTABLE_GUARD",
  "DEBOUNCE_TIMER",
  "SERIALIZED_QUEUE",
  "LAZY_CONFIG",
  "REQUEST_CONTEXT",
  "UNSTABLE_CALLBACK",
  "CLOCK_THROTTLE",
  "SPLIT_GUARD",
  "SESSION_GREETING",
  "REQUEST_STORE",
  "RETRY_COUNTER",
]


@pytest.mark.parametrize("name", SAMPLES)
def test_second_rewrite_is_a_noop(name):
  engine = ScopeLiftEngine()
  source = getattr(samples, name)

  first = engine.rewrite(source)
  second = engine.rewrite(first.code)

  assert not second.changed
  assert second.code == first.code


@pytest.mark.parametrize("name", ["GUARD_ONCE", "SHARED_COUNTER", "LEAKED_CONNECTION", "UNSTABLE_CALLBACK"])
def test_rewritten_unit_has_no_findings(name):
  engine = ScopeLiftEngine()
  rewritten = engine.rewrite(getattr(samples, name)).code
  assert engine.analyze(rewritten) == []

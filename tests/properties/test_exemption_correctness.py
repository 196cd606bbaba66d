"""
Exemption correctness: units whose only findings are suppressed come back
unchanged from a rewrite.
"""

import pytest

from scope_lift import ScopeLiftEngine
from scope_lift.models import SuppressedMatch
from tests.samples import GUARD_ONCE, unit

SINGLE_CALL = GUARD_ONCE.replace("load()\nload()\n", "load()\n")

RESET_FIRST = unit(
  """
  _scratch = []


  def tokens(text):
      global _scratch
      _scratch = []
      for part in text.split():
          _scratch.append(part)
      return list(_scratch)


  def count(text):
      global _scratch
      _scratch = []
      _scratch.extend(text.split())
      return len(_scratch)
  """
)


@pytest.mark.parametrize("source", [SINGLE_CALL, RESET_FIRST])
def test_suppressed_units_are_unchanged(source):
  engine = ScopeLiftEngine()

  findings = engine.analyze(source)
  result = engine.rewrite(source)

  assert findings and all(isinstance(f, SuppressedMatch) for f in findings)
  assert not result.changed
  assert result.code == source
  assert result.flagged == []

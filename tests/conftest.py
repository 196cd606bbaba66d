"""
Pytest Configuration and Fixtures.

Includes:
- Syspath patching for local imports.
- A default engine.
- A recording console so CLI tests can read tables and log lines.
"""

import io
import sys
from pathlib import Path

import pytest
from rich.console import Console

# Add src to path so we can import 'scope_lift' without installing it
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from scope_lift.config import EngineConfig
from scope_lift.core.engine import ScopeLiftEngine
from scope_lift.utils.console import reset_console, set_console


@pytest.fixture
def engine():
  """Engine with default configuration."""
  return ScopeLiftEngine(EngineConfig())


@pytest.fixture
def recorded_console():
  """Routes console output and package logs to an in-memory console."""
  console = Console(file=io.StringIO(), record=True, width=200, force_terminal=False)
  set_console(console)
  yield console
  reset_console()

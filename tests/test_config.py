"""
Tests for Engine Configuration.

Verifies:
1.  Defaults: full catalog in priority order, all exemption rules enabled.
2.  Loading `[tool.scope_lift]` from the nearest pyproject.toml.
3.  Per-kind catalog overrides merge onto the default catalog.
4.  Explicit arguments override TOML values.
5.  Invalid sections surface as ValueError.
"""

import pytest

from scope_lift.catalog import PatternSpec, default_catalog
from scope_lift.config import DEFAULT_HANDLE_CONSTRUCTORS, EngineConfig
from scope_lift.enums import ExemptionReason, PatternKind, ReplayMode, ScopePolicy


def write_pyproject(directory, body):
  (directory / "pyproject.toml").write_text(body, encoding="utf-8")


def test_defaults():
  config = EngineConfig()

  assert [s.kind for s in config.catalog][:2] == [PatternKind.RESOURCE_LIFECYCLE, PatternKind.RETRY_BACKOFF]
  assert {s.kind for s in config.catalog} == set(PatternKind)
  assert config.exemptions == [
    ExemptionReason.CORRECTLY_SCOPED,
    ExemptionReason.FROZEN_CONSTANT,
    ExemptionReason.SINGLE_CALL_SITE,
    ExemptionReason.TRIVIAL_LOGIC,
  ]
  assert config.replay_mode == ReplayMode.SUPPLIED
  assert config.handle_constructors["connect"] == "close"


def test_release_methods_cover_constructors():
  config = EngineConfig()
  assert set(DEFAULT_HANDLE_CONSTRUCTORS.values()) <= set(config.release_methods)
  assert "cancel" in config.release_methods


def test_spec_for():
  config = EngineConfig()
  assert config.spec_for(PatternKind.RETRY_BACKOFF).scope_policy == ScopePolicy.PER_SCOPE
  assert EngineConfig(catalog=[]).spec_for(PatternKind.RETRY_BACKOFF) is None


def test_duplicate_catalog_entry_rejected():
  spec = default_catalog()[0]
  with pytest.raises(ValueError, match="Duplicate catalog entry"):
    EngineConfig(catalog=[spec, spec])


def test_catalog_sorted_by_priority():
  specs = [
    PatternSpec(kind=PatternKind.LAZY_INIT, priority=5, scope_policy=ScopePolicy.MODULE),
    PatternSpec(kind=PatternKind.GUARD_ONCE, priority=1, scope_policy=ScopePolicy.MODULE),
  ]
  config = EngineConfig(catalog=specs)
  assert [s.kind for s in config.catalog] == [PatternKind.GUARD_ONCE, PatternKind.LAZY_INIT]


def test_load_without_pyproject(tmp_path):
  config = EngineConfig.load(search_path=tmp_path)
  assert config.replay_mode == ReplayMode.SUPPLIED


def test_load_from_toml(tmp_path):
  write_pyproject(
    tmp_path,
    """
[tool.scope_lift]
replay_mode = "off"
analysis_timeout = 2.5
exemptions = ["single-call-site"]

[tool.scope_lift.handle_constructors]
open_pool = "dispose"

[[tool.scope_lift.catalog]]
kind = "lazy-init"
priority = -1
""",
  )
  nested = tmp_path / "pkg" / "sub"
  nested.mkdir(parents=True)

  config = EngineConfig.load(search_path=nested)

  assert config.replay_mode == ReplayMode.OFF
  assert config.analysis_timeout == 2.5
  assert config.exemptions == [ExemptionReason.SINGLE_CALL_SITE]
  assert config.handle_constructors["open_pool"] == "dispose"
  assert config.handle_constructors["connect"] == "close"
  assert config.catalog[0].kind == PatternKind.LAZY_INIT
  assert config.catalog[0].scope_policy == ScopePolicy.MODULE
  assert len(config.catalog) == len(PatternKind)


def test_explicit_arguments_override_toml(tmp_path):
  write_pyproject(tmp_path, '[tool.scope_lift]\nreplay_mode = "off"\n')

  config = EngineConfig.load(search_path=tmp_path, replay_mode=ReplayMode.SYNTHESIZED, analysis_timeout=1.0)

  assert config.replay_mode == ReplayMode.SYNTHESIZED
  assert config.analysis_timeout == 1.0


def test_unrelated_pyproject_uses_defaults(tmp_path):
  write_pyproject(tmp_path, '[project]\nname = "demo"\n')
  assert EngineConfig.load(search_path=tmp_path) == EngineConfig()


def test_invalid_section_raises_value_error(tmp_path):
  write_pyproject(tmp_path, "[tool.scope_lift]\nanalysis_timeout = -1\n")
  with pytest.raises(ValueError, match=r"Invalid \[tool.scope_lift\] configuration"):
    EngineConfig.load(search_path=tmp_path)


def test_malformed_toml_is_ignored(tmp_path):
  write_pyproject(tmp_path, "[tool.scope_lift\n")
  assert EngineConfig.load(search_path=tmp_path).replay_mode == ReplayMode.SUPPLIED

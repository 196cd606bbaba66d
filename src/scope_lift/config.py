"""
Engine Configuration Store.

Holds the pattern catalog, the enabled exemption rules and the vocabulary the
structural signatures rely on. Values come from `[tool.scope_lift]` in the
nearest `pyproject.toml` and may be overridden programmatically or from the CLI.
"""

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from scope_lift.catalog import PatternSpec, default_catalog
from scope_lift.enums import ExemptionReason, PatternKind, ReplayMode

if sys.version_info >= (3, 11):
  import tomllib
else:
  try:
    import tomli as tomllib
  except ImportError:
    tomllib = None  # type: ignore

DEFAULT_HANDLE_CONSTRUCTORS: Dict[str, str] = {
  "open": "close",
  "connect": "close",
  "socket": "close",
  "create_connection": "close",
  "urlopen": "close",
  "Session": "close",
  "Client": "close",
  "AsyncClient": "aclose",
  "NamedTemporaryFile": "close",
  "Popen": "kill",
  "Thread": "join",
  "Timer": "cancel",
  "ThreadPoolExecutor": "shutdown",
  "ProcessPoolExecutor": "shutdown",
  "Pool": "close",
  "subscribe": "unsubscribe",
}

DEFAULT_TIMER_CONSTRUCTORS: List[str] = ["Timer", "call_later", "call_at", "enter", "enterabs"]
DEFAULT_SLEEP_FUNCTIONS: List[str] = ["sleep", "wait"]
DEFAULT_CLOCK_FUNCTIONS: List[str] = ["time", "monotonic", "perf_counter", "monotonic_ns", "time_ns", "now"]
DEFAULT_SUBSCRIPTION_METHODS: List[str] = [
  "subscribe",
  "add_listener",
  "add_handler",
  "addHandler",
  "add_callback",
  "add_done_callback",
  "connect",
  "on",
  "register",
  "bind",
  "observe",
]


class EngineConfig(BaseModel):
  """
  Configuration container for one engine instance.
  """

  catalog: List[PatternSpec] = Field(default_factory=default_catalog, description="Closed pattern catalog.")
  exemptions: List[ExemptionReason] = Field(
    default_factory=lambda: [
      ExemptionReason.CORRECTLY_SCOPED,
      ExemptionReason.FROZEN_CONSTANT,
      ExemptionReason.SINGLE_CALL_SITE,
      ExemptionReason.TRIVIAL_LOGIC,
    ],
    description="Exemption rules applied in order. The first rule that fires wins.",
  )
  analysis_timeout: float = Field(10.0, gt=0, description="Whole-unit analysis budget in seconds.")
  ambiguity_threshold: float = Field(
    0.5,
    ge=0,
    le=1,
    description="Below this confidence the winning kind yields to a more confident candidate as ambiguous.",
  )
  replay_mode: ReplayMode = Field(ReplayMode.SUPPLIED, description="Which call sequences the verifier replays.")
  handle_constructors: Dict[str, str] = Field(
    default_factory=lambda: dict(DEFAULT_HANDLE_CONSTRUCTORS),
    description="Handle constructor terminal name -> release method.",
  )
  timer_constructors: List[str] = Field(default_factory=lambda: list(DEFAULT_TIMER_CONSTRUCTORS))
  sleep_functions: List[str] = Field(default_factory=lambda: list(DEFAULT_SLEEP_FUNCTIONS))
  clock_functions: List[str] = Field(default_factory=lambda: list(DEFAULT_CLOCK_FUNCTIONS))
  subscription_methods: List[str] = Field(default_factory=lambda: list(DEFAULT_SUBSCRIPTION_METHODS))

  @field_validator("catalog")
  @classmethod
  def validate_catalog(cls, v: List[PatternSpec]) -> List[PatternSpec]:
    """
    Ensures each pattern kind appears at most once.

    Args:
        v (List[PatternSpec]): Candidate catalog.

    Returns:
        List[PatternSpec]: The catalog sorted by priority.

    Raises:
        ValueError: If a kind is declared twice.
    """
    seen = set()
    for spec in v:
      if spec.kind in seen:
        raise ValueError(f"Duplicate catalog entry for '{spec.kind.value}'")
      seen.add(spec.kind)
    return sorted(v, key=lambda s: (s.priority, s.kind.value))

  def spec_for(self, kind: PatternKind) -> Optional[PatternSpec]:
    """
    Looks up the catalog entry of a pattern kind.

    Args:
        kind (PatternKind): The kind to look up.

    Returns:
        Optional[PatternSpec]: The entry, or None when the kind is not in the catalog.
    """
    for spec in self.catalog:
      if spec.kind == kind:
        return spec
    return None

  @property
  def release_methods(self) -> List[str]:
    """All release method names known to the configuration."""
    return sorted(set(self.handle_constructors.values()) | {"close", "cancel", "stop", "release", "disconnect"})

  @classmethod
  def load(
    cls,
    search_path: Optional[Path] = None,
    replay_mode: Optional[ReplayMode] = None,
    analysis_timeout: Optional[float] = None,
    exemptions: Optional[List[ExemptionReason]] = None,
  ) -> "EngineConfig":
    """
    Loads configuration from pyproject.toml and overrides with explicit arguments.

    Catalog entries in TOML are merged per kind onto the default catalog, so a
    project can reprioritize a single pattern without restating the others.

    Args:
        search_path (Optional[Path]): Directory to start searching for TOML config.
        replay_mode (Optional[ReplayMode]): Override for the replay mode.
        analysis_timeout (Optional[float]): Override for the analysis budget.
        exemptions (Optional[List[ExemptionReason]]): Override for enabled exemption rules.

    Returns:
        EngineConfig: The fully resolved configuration object.

    Raises:
        ValueError: If the TOML section fails validation.
    """
    start_dir = search_path or Path.cwd()
    toml_config, _ = _load_toml_settings(start_dir)

    data: Dict[str, Any] = {k: v for k, v in toml_config.items() if k != "catalog"}

    overrides = toml_config.get("catalog", [])
    if overrides:
      merged = {spec.kind.value: spec.model_dump(mode="json") for spec in default_catalog()}
      for entry in overrides:
        key = entry.get("kind")
        if key in merged:
          merged[key].update(entry)
        else:
          merged[key] = entry
      data["catalog"] = list(merged.values())

    if "handle_constructors" in data:
      data["handle_constructors"] = {**DEFAULT_HANDLE_CONSTRUCTORS, **data["handle_constructors"]}

    if replay_mode is not None:
      data["replay_mode"] = replay_mode
    if analysis_timeout is not None:
      data["analysis_timeout"] = analysis_timeout
    if exemptions is not None:
      data["exemptions"] = exemptions

    try:
      return cls.model_validate(data)
    except ValidationError as e:
      raise ValueError(f"Invalid [tool.scope_lift] configuration: {e}")


def _load_toml_settings(start_path: Path) -> Tuple[Dict[str, Any], Optional[Path]]:
  """
  Recursively searches parents for 'pyproject.toml' and extracts config.

  Args:
      start_path (Path): Directory to start search from.

  Returns:
      Tuple[Dict, Optional[Path]]: The config dict and the directory definition was found in.
  """
  if not tomllib:
    return {}, None

  current = start_path.resolve()

  for parent in [current, *current.parents]:
    toml_path = parent / "pyproject.toml"
    if toml_path.exists() and toml_path.is_file():
      try:
        with open(toml_path, "rb") as f:
          data = tomllib.load(f)
      except (OSError, tomllib.TOMLDecodeError):
        return {}, None

      tool_section = data.get("tool", {})
      return tool_section.get("scope_lift", {}), parent

  return {}, None

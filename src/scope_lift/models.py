"""
Data structures exchanged between pipeline stages.

Everything here is derived from the current source unit and recomputed on each
run; nothing is persisted between analyses. The models are Pydantic so that the
downstream note generator and the CLI can serialize them directly.
"""

from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from scope_lift.enums import (
  AccessDirection,
  BindingKind,
  ExemptionReason,
  PatternKind,
  ReleasePoint,
  ScopePolicy,
)
from scope_lift.errors import AnalysisError, ClassificationAmbiguous

MODULE_SCOPE = "<module>"


class Binding(BaseModel):
  """
  A named mutable storage location declared at module scope.
  """

  name: str
  kind: BindingKind
  initial: str = Field(description="Source of the initial value expression.")
  line: int
  statement: int = Field(description="Index of the declaring top-level statement.")
  scope: str = Field(default="module", description="Declaration scope. Always 'module' for analyzed units.")
  constructor: Optional[str] = Field(default=None, description="Terminal name of the initial call, if any.")
  alias_of: Optional[str] = Field(default=None, description="Original binding when this is a re-exported alias.")
  exported: bool = False
  module_refs: List[int] = Field(default_factory=list, description="Lines referencing it from module scope.")


class CallSite(BaseModel):
  """
  A reference to an accessor's module-level name outside its own definition.
  """

  target: str
  scope: str = Field(description="'<module>' or the outermost enclosing function / method.")
  line: int
  statement: int = Field(description="Index of the enclosing top-level statement.")
  is_call: bool = True
  in_loop: bool = False


class AccessProfile(BaseModel):
  """
  Structural facts about how one accessor touches one binding.
  """

  binding: str
  reads: int = 0
  rebinds: int = 0
  rebind_values: List[str] = Field(default_factory=list)
  augmented: bool = False
  mutators: List[str] = Field(default_factory=list)
  subscript_store: bool = False
  subscript_delete: bool = False
  attribute_store: bool = False
  param_keyed_store: bool = False
  membership_test: bool = False
  branch_tested: bool = False
  none_tested: bool = False
  loop_write: bool = False
  handle_constructor: Optional[str] = None
  timer_constructor: bool = False
  callable_rebind: bool = False
  subscribed: bool = False
  first_event: Optional[str] = Field(default=None, description="'read', 'reset', 'write' or 'mutate'.")

  @property
  def writes(self) -> bool:
    """True if the accessor rebinds or mutates the binding."""
    return bool(
      self.rebinds or self.mutators or self.subscript_store or self.subscript_delete or self.attribute_store
    )

  @property
  def direction(self) -> AccessDirection:
    """
    Collapses the profile into a single access direction.

    Returns:
        AccessDirection: READ, WRITE or READ_WRITE.
    """
    reads = self.reads > 0 or self.membership_test or bool(self.mutators) or self.augmented
    if self.writes and reads:
      return AccessDirection.READ_WRITE
    if self.writes:
      return AccessDirection.WRITE
    return AccessDirection.READ


class Accessor(BaseModel):
  """
  A callable unit (module function or class method) touching one or more bindings.
  """

  name: str
  line: int
  statement: int
  is_method: bool = False
  is_async: bool = False
  exported: bool = False
  top_level: bool = Field(default=True, description="Defined directly in the module body or in a module-level class.")
  params: List[str] = Field(default_factory=list)
  required_params: int = 0
  local_names: List[str] = Field(default_factory=list)
  profiles: Dict[str, AccessProfile] = Field(default_factory=dict)
  call_sites: List[CallSite] = Field(default_factory=list)
  impurities: List[str] = Field(default_factory=list)
  sleeps_in_loop: bool = False
  reads_clock: bool = False

  @property
  def directions(self) -> Dict[str, AccessDirection]:
    """Direction of access per binding name."""
    return {name: profile.direction for name, profile in self.profiles.items()}

  @property
  def side_effect_free(self) -> bool:
    """True when nothing but the flagged bindings is touched."""
    return not self.impurities


class SharingGroup(BaseModel):
  """
  Maximal set of bindings and accessors connected by mutual access.
  """

  id: str
  bindings: List[str]
  accessors: List[str]


class UnitAnalysis(BaseModel):
  """
  Output of the Scope & Alias Analyzer for one source unit.
  """

  model_config = ConfigDict(arbitrary_types_allowed=True)

  bindings: Dict[str, Binding] = Field(default_factory=dict)
  accessors: Dict[str, Accessor] = Field(default_factory=dict)
  exports: Optional[List[str]] = None
  identifiers: List[str] = Field(default_factory=list, description="Every identifier spelled in the unit.")
  errors: List[AnalysisError] = Field(default_factory=list)


class SignatureMatch(BaseModel):
  """One structurally matching pattern kind with its confidence."""

  kind: PatternKind
  priority: int
  confidence: float


class PatternMatch(BaseModel):
  """
  A sharing group tagged with its winning pattern kind.
  """

  group: SharingGroup
  kind: PatternKind
  confidence: float
  scope_policy: ScopePolicy
  candidates: List[SignatureMatch] = Field(default_factory=list, description="All matching kinds, best first.")

  @property
  def binding_names(self) -> List[str]:
    """Names of the bindings owned by the group."""
    return list(self.group.bindings)


class SuppressedMatch(BaseModel):
  """
  A PatternMatch withheld by an exemption rule, kept for audit.
  """

  match: PatternMatch
  reason: ExemptionReason
  detail: str = ""


class AnalysisReport(BaseModel):
  """
  Structured result of one analysis pass.
  """

  model_config = ConfigDict(arbitrary_types_allowed=True)

  unit: UnitAnalysis
  groups: List[SharingGroup] = Field(default_factory=list)
  matches: List[PatternMatch] = Field(default_factory=list)
  suppressed: List[SuppressedMatch] = Field(default_factory=list)
  ambiguous: List[ClassificationAmbiguous] = Field(default_factory=list)

  @property
  def errors(self) -> List[AnalysisError]:
    """Per-binding analysis errors surfaced by the analyzer."""
    return list(self.unit.errors)

  @property
  def findings(self) -> List[Union[PatternMatch, SuppressedMatch, ClassificationAmbiguous, AnalysisError]]:
    """
    Flattens the report into the engine's `analyze` result.

    Returns:
        List: Matches, suppressed matches, then surfaced rejections.
    """
    return [*self.matches, *self.suppressed, *self.ambiguous, *self.unit.errors]


class Capability(BaseModel):
  """One callable returned by a generated factory."""

  name: str
  role: str = Field(description="'accessor' or 'release'.")
  accessor: Optional[str] = None


class BindingPlan(BaseModel):
  """Declaration of one binding inside a factory."""

  name: str
  initial: str
  hoisted: bool = False


class CallSitePatch(BaseModel):
  """
  Records how one reference to an original accessor is served after the rewrite.
  """

  old_name: str
  new_reference: str
  scope: str
  line: int
  invocation: str = Field(description="The factory invocation statement binding the new reference.")


class TransformationPlan(BaseModel):
  """
  Rewrite recipe for one accepted PatternMatch.
  """

  match: PatternMatch
  factory_name: str
  bindings: List[BindingPlan]
  accessors: List[str]
  capabilities: List[Capability]
  scope_policy: ScopePolicy
  invocation_scopes: List[str] = Field(default_factory=list)
  patches: List[CallSitePatch] = Field(default_factory=list)
  release_point: Optional[ReleasePoint] = None
  release_methods: Dict[str, str] = Field(default_factory=dict)
  dropped_rebinds: Dict[str, List[str]] = Field(default_factory=dict)

  @property
  def group_id(self) -> str:
    """Identifier of the group being transformed."""
    return self.match.group.id

  @property
  def kind(self) -> PatternKind:
    """Pattern kind of the underlying match."""
    return self.match.kind

  @property
  def binding_names(self) -> List[str]:
    """Names of the bindings moved into the factory."""
    return [b.name for b in self.bindings]

  @property
  def capability_names(self) -> List[str]:
    """Names bound by the factory invocation, in return order."""
    return [c.name for c in self.capabilities]

  @property
  def invocation(self) -> str:
    """The statement that invokes the factory."""
    return f"{', '.join(self.capability_names)} = {self.factory_name}()"


class ViolationRecord(BaseModel):
  """Why the verifier rejected one plan."""

  group_id: str
  factory_name: str
  check: str = Field(description="'apply', 'compile', 'fixpoint' or 'replay'.")
  detail: str


class DiffSummary(BaseModel):
  """Short, structured summary of an applied rewrite."""

  lines_added: int = 0
  lines_removed: int = 0
  factories: List[str] = Field(default_factory=list)
  bindings: List[str] = Field(default_factory=list)
  kinds: List[PatternKind] = Field(default_factory=list)
  release_points: List[ReleasePoint] = Field(default_factory=list)


class RewriteResult(BaseModel):
  """
  Final output of the Rewrite Applier after verification.
  """

  code: str
  patches: List[CallSitePatch] = Field(default_factory=list)
  diff_summary: DiffSummary = Field(default_factory=DiffSummary)
  applied: List[TransformationPlan] = Field(default_factory=list)
  flagged: List[PatternMatch] = Field(default_factory=list, description="Matches reported without a rewrite.")
  rejected: List[ViolationRecord] = Field(default_factory=list)
  trace_events: List[Dict[str, Any]] = Field(default_factory=list)

  @property
  def changed(self) -> bool:
    """True if at least one plan was applied."""
    return bool(self.applied)


class ReplayCall(BaseModel):
  """One call in a replay scenario."""

  target: str
  args: List[Any] = Field(default_factory=list)
  kwargs: Dict[str, Any] = Field(default_factory=dict)


class ReplayScenario(BaseModel):
  """
  A call sequence replayed against the original and the rewritten unit.

  `stubs` replace module globals after the unit is executed; every call to a stub
  (and every method call on objects it returns) is recorded as an external effect.
  """

  model_config = ConfigDict(arbitrary_types_allowed=True)

  name: str = "scenario"
  calls: List[ReplayCall] = Field(default_factory=list)
  stubs: Dict[str, Callable[..., Any]] = Field(default_factory=dict)

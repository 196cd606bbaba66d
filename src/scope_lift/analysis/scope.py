"""
Scope & Alias Analysis.

This module builds the use-def picture of module-level mutable state for one
source unit. It produces:

1.  **Bindings**: module-level names holding mutable storage, with their declared
    kind, initial value and any re-exported aliases of the same storage.
2.  **Accessors**: module functions and class methods that resolve a Name to a
    binding (directly, through nested functions and lambdas, or through an
    alias), with a structural `AccessProfile` per binding touched.
3.  **Call sites**: every module-level reference to an accessor's name.

Python scoping is honored while walking: parameters and names assigned inside a
function are local unless declared `global`, comprehension targets are local
to the comprehension, and class bodies do not leak names into methods.

Bindings mutated through dynamic reflection (`globals()[...]`, `vars()`,
`setattr(sys.modules[__name__], ...)`, `exec`) are reported as `AnalysisError`
records and excluded instead of being guessed at.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple, Union

import libcst as cst
from libcst.metadata import MetadataWrapper, PositionProvider

from scope_lift.analysis.purity import MUTATION_METHODS, scan_side_effects
from scope_lift.config import EngineConfig
from scope_lift.enums import BindingKind
from scope_lift.errors import AnalysisError
from scope_lift.models import MODULE_SCOPE, AccessProfile, Accessor, Binding, CallSite, UnitAnalysis

_CONTAINER_CONSTRUCTORS: Set[str] = {
  "dict",
  "list",
  "set",
  "bytearray",
  "deque",
  "OrderedDict",
  "defaultdict",
  "Counter",
  "ChainMap",
  "WeakValueDictionary",
  "WeakKeyDictionary",
  "WeakSet",
  "Queue",
  "SimpleQueue",
  "LifoQueue",
  "PriorityQueue",
}

_QUEUE_CONSTRUCTORS: Set[str] = {"Queue", "SimpleQueue", "LifoQueue", "PriorityQueue", "JoinableQueue"}

_LOOKUP_METHODS: Set[str] = {"get", "__contains__"}

_RESET_METHODS: Set[str] = {"clear"}

_REFLECTION_SOURCES: Set[str] = {"globals", "vars"}

FunctionNode = Union[cst.FunctionDef, cst.Lambda]


class Deadline:
  """
  Whole-unit time budget for the analyzer.
  """

  def __init__(self, seconds: float):
    self.seconds = seconds
    self._expires = time.monotonic() + seconds

  def check(self) -> None:
    """
    Raises:
        AnalysisError: If the budget is exhausted.
    """
    if time.monotonic() > self._expires:
      raise AnalysisError(f"Analysis exceeded its {self.seconds:g}s budget")


def terminal_name(node: Optional[cst.BaseExpression]) -> Optional[str]:
  """
  Returns the last identifier of a name or attribute chain (`a.b.c` -> `c`).
  """
  if isinstance(node, cst.Name):
    return node.value
  if isinstance(node, cst.Attribute):
    return node.attr.value
  return None


def call_terminal(node: Optional[cst.BaseExpression]) -> Optional[str]:
  """
  Returns the terminal callee name if `node` is a (possibly awaited) call.
  """
  if isinstance(node, cst.Await):
    node = node.expression
  if isinstance(node, cst.Call):
    return terminal_name(node.func)
  return None


def infer_kind(value: cst.BaseExpression, config: EngineConfig) -> Tuple[BindingKind, Optional[str]]:
  """
  Infers the declared kind of a binding from its initial value expression.

  Args:
      value: The initial value expression.
      config: Engine configuration (handle and timer vocabularies).

  Returns:
      Tuple[BindingKind, Optional[str]]: The kind and the constructor name, if any.
  """
  if isinstance(value, cst.Name):
    if value.value in ("True", "False"):
      return BindingKind.GUARD, None
    if value.value == "None":
      return BindingKind.HANDLE, None
    return BindingKind.RECORD, None
  if isinstance(value, (cst.Integer, cst.Float)):
    return BindingKind.COUNTER, None
  if isinstance(value, cst.UnaryOperation) and isinstance(value.expression, (cst.Integer, cst.Float)):
    return BindingKind.COUNTER, None
  if isinstance(value, (cst.Dict, cst.List, cst.Set, cst.DictComp, cst.ListComp, cst.SetComp)):
    return BindingKind.CONTAINER, None
  constructor = call_terminal(value)
  if constructor is not None:
    if constructor in _CONTAINER_CONSTRUCTORS:
      return BindingKind.CONTAINER, constructor
    if constructor in config.handle_constructors or constructor in config.timer_constructors:
      return BindingKind.HANDLE, constructor
    return BindingKind.RECORD, constructor
  return BindingKind.RECORD, None


def _param_nodes(params: cst.Parameters) -> List[cst.Param]:
  nodes = [*params.posonly_params, *params.params, *params.kwonly_params]
  if isinstance(params.star_arg, cst.Param):
    nodes.append(params.star_arg)
  if params.star_kwarg is not None:
    nodes.append(params.star_kwarg)
  return nodes


def _required_param_count(params: cst.Parameters) -> int:
  positional = [*params.posonly_params, *params.params, *params.kwonly_params]
  return sum(1 for p in positional if p.default is None)


class _LocalNameCollector(cst.CSTVisitor):
  """
  Collects the names a function body binds, without entering nested scopes.
  """

  def __init__(self) -> None:
    self.assigned: Set[str] = set()
    self.defs: Set[str] = set()
    self.globals: Set[str] = set()
    self.nonlocals: Set[str] = set()

  def _add(self, target: cst.BaseExpression) -> None:
    if isinstance(target, cst.Name):
      self.assigned.add(target.value)
    elif isinstance(target, (cst.Tuple, cst.List)):
      for element in target.elements:
        self._add(element.value)
    elif isinstance(target, cst.StarredElement):
      self._add(target.value)

  def visit_FunctionDef(self, node: cst.FunctionDef) -> Optional[bool]:
    self.assigned.add(node.name.value)
    self.defs.add(node.name.value)
    return False

  def visit_ClassDef(self, node: cst.ClassDef) -> Optional[bool]:
    self.assigned.add(node.name.value)
    return False

  def visit_Lambda(self, node: cst.Lambda) -> Optional[bool]:
    return False

  def visit_ListComp(self, node: cst.ListComp) -> Optional[bool]:
    return False

  def visit_SetComp(self, node: cst.SetComp) -> Optional[bool]:
    return False

  def visit_DictComp(self, node: cst.DictComp) -> Optional[bool]:
    return False

  def visit_GeneratorExp(self, node: cst.GeneratorExp) -> Optional[bool]:
    return False

  def visit_Global(self, node: cst.Global) -> Optional[bool]:
    self.globals.update(n.name.value for n in node.names)
    return False

  def visit_Nonlocal(self, node: cst.Nonlocal) -> Optional[bool]:
    self.nonlocals.update(n.name.value for n in node.names)
    return False

  def visit_Assign(self, node: cst.Assign) -> Optional[bool]:
    for target in node.targets:
      self._add(target.target)
    return True

  def visit_AugAssign(self, node: cst.AugAssign) -> Optional[bool]:
    self._add(node.target)
    return True

  def visit_AnnAssign(self, node: cst.AnnAssign) -> Optional[bool]:
    self._add(node.target)
    return True

  def visit_For(self, node: cst.For) -> Optional[bool]:
    self._add(node.target)
    return True

  def visit_WithItem(self, node: cst.WithItem) -> Optional[bool]:
    if node.asname is not None:
      self._add(node.asname.name)
    return True

  def visit_ExceptHandler(self, node: cst.ExceptHandler) -> Optional[bool]:
    if node.name is not None:
      self._add(node.name.name)
    return True

  def visit_NamedExpr(self, node: cst.NamedExpr) -> Optional[bool]:
    self._add(node.target)
    return True

  def visit_Del(self, node: cst.Del) -> Optional[bool]:
    self._add(node.target)
    return False

  def visit_Import(self, node: cst.Import) -> Optional[bool]:
    for alias in node.names:
      if alias.asname is not None:
        self._add(alias.asname.name)
      else:
        root = alias.name
        while isinstance(root, cst.Attribute):
          root = root.value
        self._add(root)
    return False

  def visit_ImportFrom(self, node: cst.ImportFrom) -> Optional[bool]:
    if isinstance(node.names, cst.ImportStar):
      return False
    for alias in node.names:
      self._add(alias.asname.name if alias.asname is not None else alias.name)
    return False


@dataclass
class FunctionScope:
  """
  Name resolution facts for one function (or lambda) scope.
  """

  params: List[str]
  locals: Set[str]
  globals: Set[str] = field(default_factory=set)
  defs: Set[str] = field(default_factory=set)


def function_scope(node: FunctionNode) -> FunctionScope:
  """
  Computes parameters, locals and `global` declarations of a function.

  Args:
      node: A FunctionDef or Lambda node.

  Returns:
      FunctionScope: The resolution facts.
  """
  params = [p.name.value for p in _param_nodes(node.params)]
  collector = _LocalNameCollector()
  node.body.visit(collector)
  local_names = (set(params) | collector.assigned) - collector.globals - collector.nonlocals
  return FunctionScope(params=params, locals=local_names, globals=collector.globals, defs=collector.defs)


@dataclass
class _Frame:
  kind: str  # "function", "class" or "comprehension"
  locals: Set[str]
  globals: Set[str] = field(default_factory=set)
  params: Set[str] = field(default_factory=set)
  defs: Set[str] = field(default_factory=set)


@dataclass
class _Candidate:
  name: str
  kind: BindingKind
  initial: str
  line: int
  statement: int
  constructor: Optional[str] = None
  alias_of: Optional[str] = None


@dataclass
class _OwnerInfo:
  name: str
  node: cst.FunctionDef
  line: int
  statement: int
  is_method: bool
  top_level: bool
  sleeps_in_loop: bool = False
  reads_clock: bool = False


class _NameCollector(cst.CSTVisitor):
  """Gathers expression Names, skipping attribute members and keywords."""

  def __init__(self) -> None:
    self.names: List[cst.Name] = []

  def visit_Name(self, node: cst.Name) -> Optional[bool]:
    self.names.append(node)
    return False

  def visit_Attribute(self, node: cst.Attribute) -> Optional[bool]:
    node.value.visit(self)
    return False

  def visit_Arg(self, node: cst.Arg) -> Optional[bool]:
    node.value.visit(self)
    return False

  def visit_Lambda(self, node: cst.Lambda) -> Optional[bool]:
    return False


def _expression_names(node: cst.CSTNode) -> List[cst.Name]:
  collector = _NameCollector()
  node.visit(collector)
  return collector.names


class _UnitCollector(cst.CSTVisitor):
  """
  Walks one module recording how functions touch candidate bindings.

  The analyzer feeds top-level statements one by one, setting `statement`
  before each so that references can be attributed to their top-level
  statement.
  """

  def __init__(
    self,
    module: cst.Module,
    positions: Dict[cst.CSTNode, object],
    candidates: Dict[str, _Candidate],
    functions: Dict[str, int],
    config: EngineConfig,
    deadline: Deadline,
  ):
    self.module = module
    self.positions = positions
    self.candidates = candidates
    self.functions = functions
    self.config = config
    self.deadline = deadline
    self.statement = 0

    self.profiles: Dict[Tuple[str, str], AccessProfile] = {}
    self.owners: Dict[str, _OwnerInfo] = {}
    self.call_sites: Dict[str, List[CallSite]] = {}
    self.module_refs: Dict[str, List[int]] = {}
    self.ambiguous: List[Tuple[Optional[str], str, int]] = []

    self._release_methods = set(config.release_methods)
    self._sleep_functions = set(config.sleep_functions)
    self._clock_functions = set(config.clock_functions)
    self._subscription_methods = set(config.subscription_methods)

    self._frames: List[_Frame] = []
    self._class_stack: List[str] = []
    self._owner: Optional[str] = None
    self._loop_depth = 0
    self._claimed: Set[int] = set()
    self._call_funcs: Set[int] = set()
    self._top_level_defs: Set[int] = _top_level_defs(module)
    self._alias_statements: Dict[int, str] = {
      c.statement: c.initial for c in candidates.values() if c.alias_of is not None
    }

  # --- Helpers ---

  def _line(self, node: cst.CSTNode) -> int:
    pos = self.positions.get(node)
    return pos.start.line if pos is not None else 0

  def _code(self, node: cst.CSTNode) -> str:
    return self.module.code_for_node(node).strip()

  def _resolves_to_module(self, name: str) -> bool:
    for depth, frame in enumerate(reversed(self._frames)):
      if frame.kind == "class" and depth != 0:
        continue
      if name in frame.globals:
        return True
      if name in frame.locals:
        return False
    return True

  def _is_binding(self, name: str) -> bool:
    return name in self.candidates and self._resolves_to_module(name)

  def _innermost_function(self) -> Optional[_Frame]:
    for frame in reversed(self._frames):
      if frame.kind == "function":
        return frame
    return None

  def _profile(self, name: str) -> AccessProfile:
    key = (self._owner, name)
    if key not in self.profiles:
      self.profiles[key] = AccessProfile(binding=name)
    return self.profiles[key]

  def _event(self, profile: AccessProfile, kind: str) -> None:
    if profile.first_event is None:
      profile.first_event = kind

  def _module_ref(self, name: str, node: cst.CSTNode) -> None:
    self.module_refs.setdefault(name, []).append(self._line(node))

  def _owner_info(self) -> Optional[_OwnerInfo]:
    return self.owners.get(self._owner) if self._owner else None

  # --- Scopes ---

  def visit_FunctionDef(self, node: cst.FunctionDef) -> Optional[bool]:
    self.deadline.check()
    for decorator in node.decorators:
      decorator.decorator.visit(self)
    for param in _param_nodes(node.params):
      if param.default is not None:
        param.default.visit(self)

    entering_owner = self._owner is None
    if entering_owner:
      qualname = ".".join([*self._class_stack, node.name.value])
      is_method = bool(self._class_stack)
      self._owner = qualname
      self.owners[qualname] = _OwnerInfo(
        name=qualname,
        node=node,
        line=self._line(node),
        statement=self.statement,
        is_method=is_method,
        top_level=id(node) in self._top_level_defs,
      )

    scope = function_scope(node)
    self._frames.append(
      _Frame("function", scope.locals, globals=scope.globals, params=set(scope.params), defs=scope.defs)
    )
    saved_loop, self._loop_depth = self._loop_depth, 0
    node.body.visit(self)
    self._loop_depth = saved_loop
    self._frames.pop()

    if entering_owner:
      self._owner = None
    return False

  def visit_Lambda(self, node: cst.Lambda) -> Optional[bool]:
    for param in _param_nodes(node.params):
      if param.default is not None:
        param.default.visit(self)
    scope = function_scope(node)
    self._frames.append(_Frame("function", scope.locals, params=set(scope.params)))
    node.body.visit(self)
    self._frames.pop()
    return False

  def visit_ClassDef(self, node: cst.ClassDef) -> Optional[bool]:
    self.deadline.check()
    for decorator in node.decorators:
      decorator.decorator.visit(self)
    for base in node.bases:
      base.value.visit(self)

    pushed = self._owner is None and not self._frames
    if pushed:
      self._class_stack.append(node.name.value)
    collector = _LocalNameCollector()
    node.body.visit(collector)
    self._frames.append(_Frame("class", collector.assigned))
    node.body.visit(self)
    self._frames.pop()
    if pushed:
      self._class_stack.pop()
    return False

  def _enter_comprehension(self, for_in: cst.CompFor) -> None:
    targets: Set[str] = set()
    current: Optional[cst.CompFor] = for_in
    while current is not None:
      targets.update(n.value for n in _expression_names(current.target))
      current = current.inner_for_in
    self._frames.append(_Frame("comprehension", targets))

  def visit_ListComp(self, node: cst.ListComp) -> Optional[bool]:
    self._enter_comprehension(node.for_in)
    return True

  def leave_ListComp(self, original_node: cst.ListComp) -> None:
    self._frames.pop()

  def visit_SetComp(self, node: cst.SetComp) -> Optional[bool]:
    self._enter_comprehension(node.for_in)
    return True

  def leave_SetComp(self, original_node: cst.SetComp) -> None:
    self._frames.pop()

  def visit_DictComp(self, node: cst.DictComp) -> Optional[bool]:
    self._enter_comprehension(node.for_in)
    return True

  def leave_DictComp(self, original_node: cst.DictComp) -> None:
    self._frames.pop()

  def visit_GeneratorExp(self, node: cst.GeneratorExp) -> Optional[bool]:
    self._enter_comprehension(node.for_in)
    return True

  def leave_GeneratorExp(self, original_node: cst.GeneratorExp) -> None:
    self._frames.pop()

  # --- Non-reference names ---

  def visit_Global(self, node: cst.Global) -> Optional[bool]:
    return False

  def visit_Nonlocal(self, node: cst.Nonlocal) -> Optional[bool]:
    return False

  def visit_Import(self, node: cst.Import) -> Optional[bool]:
    return False

  def visit_ImportFrom(self, node: cst.ImportFrom) -> Optional[bool]:
    return False

  def visit_Attribute(self, node: cst.Attribute) -> Optional[bool]:
    node.value.visit(self)
    return False

  def visit_Arg(self, node: cst.Arg) -> Optional[bool]:
    node.value.visit(self)
    return False

  # --- Control flow ---

  def _record_test(self, test: cst.BaseExpression) -> None:
    if self._owner is None:
      return
    for name in _expression_names(test):
      if self._is_binding(name.value):
        self._profile(name.value).branch_tested = True

    for name in self._none_tested(test):
      if self._is_binding(name):
        self._profile(name).none_tested = True

  def _none_tested(self, test: cst.BaseExpression) -> List[str]:
    if isinstance(test, cst.UnaryOperation) and isinstance(test.operator, cst.Not):
      if isinstance(test.expression, cst.Name):
        return [test.expression.value]
      return self._none_tested(test.expression)
    if isinstance(test, cst.BooleanOperation):
      return self._none_tested(test.left) + self._none_tested(test.right)
    if isinstance(test, cst.Comparison) and isinstance(test.left, cst.Name):
      for target in test.comparisons:
        is_none = isinstance(target.comparator, cst.Name) and target.comparator.value == "None"
        if is_none and isinstance(target.operator, (cst.Is, cst.IsNot)):
          return [test.left.value]
    return []

  def visit_If(self, node: cst.If) -> Optional[bool]:
    self._record_test(node.test)
    return True

  def visit_IfExp(self, node: cst.IfExp) -> Optional[bool]:
    self._record_test(node.test)
    return True

  def visit_While(self, node: cst.While) -> Optional[bool]:
    self._record_test(node.test)
    self._loop_depth += 1
    node.test.visit(self)
    node.body.visit(self)
    self._loop_depth -= 1
    if node.orelse is not None:
      node.orelse.visit(self)
    return False

  def visit_For(self, node: cst.For) -> Optional[bool]:
    node.iter.visit(self)
    self._loop_depth += 1
    self._record_store(node.target, None)
    node.body.visit(self)
    self._loop_depth -= 1
    if node.orelse is not None:
      node.orelse.visit(self)
    return False

  def visit_Comparison(self, node: cst.Comparison) -> Optional[bool]:
    if self._owner is None:
      return True
    for target in node.comparisons:
      if isinstance(target.operator, (cst.In, cst.NotIn)) and isinstance(target.comparator, cst.Name):
        if self._is_binding(target.comparator.value):
          profile = self._profile(target.comparator.value)
          profile.membership_test = True
    return True

  # --- Calls ---

  def visit_Call(self, node: cst.Call) -> Optional[bool]:
    func = node.func
    if isinstance(func, cst.Name):
      self._call_funcs.add(id(func))
    self._check_reflection(node)

    term = terminal_name(func)
    owner = self._owner_info()
    if owner is not None:
      if term in self._sleep_functions and self._loop_depth > 0:
        owner.sleeps_in_loop = True
      if term in self._clock_functions:
        owner.reads_clock = True

    if isinstance(func, cst.Attribute) and isinstance(func.value, cst.Name):
      name = func.value.value
      if self._is_binding(name):
        self._claimed.add(id(func.value))
        self._on_method(name, func.attr.value, func.value)

    if term in self._subscription_methods and self._owner is not None:
      for arg in node.args:
        if isinstance(arg.value, cst.Name) and self._is_binding(arg.value.value):
          self._profile(arg.value.value).subscribed = True
    return True

  def _on_method(self, name: str, method: str, node: cst.Name) -> None:
    if self._owner is None:
      self._module_ref(name, node)
      return
    profile = self._profile(name)
    queue_like = self.candidates[name].constructor in _QUEUE_CONSTRUCTORS
    if method in MUTATION_METHODS or method in self._release_methods or (method == "get" and queue_like):
      if method not in profile.mutators:
        profile.mutators.append(method)
      self._event(profile, "reset" if method in _RESET_METHODS else "mutate")
    else:
      profile.reads += 1
      if method in _LOOKUP_METHODS:
        profile.membership_test = True
      self._event(profile, "read")

  def _check_reflection(self, node: cst.Call) -> None:
    func = node.func
    line = self._line(node)
    if isinstance(func, cst.Name) and func.value == "exec":
      self.ambiguous.append((None, "exec() may rebind any module name", line))
    elif isinstance(func, cst.Attribute) and func.attr.value in ("update", "__setitem__"):
      if call_terminal(func.value) in _REFLECTION_SOURCES:
        key = node.args[0].value if func.attr.value == "__setitem__" and node.args else None
        self._reflective_write(key, line)
    elif isinstance(func, cst.Name) and func.value == "setattr" and len(node.args) >= 2:
      receiver = self._code(node.args[0].value)
      if "sys.modules" in receiver:
        self._reflective_write(node.args[1].value, line)

  def _reflective_write(self, key: Optional[cst.BaseExpression], line: int) -> None:
    if isinstance(key, cst.SimpleString):
      name = key.evaluated_value
      if isinstance(name, str) and name in self.candidates:
        self.ambiguous.append((name, f"'{name}' is rebound through dynamic reflection", line))
      return
    self.ambiguous.append((None, "module namespace is written through dynamic reflection", line))

  # --- Names ---

  def visit_Name(self, node: cst.Name) -> Optional[bool]:
    if id(node) in self._claimed:
      return False
    name = node.value
    if self._is_binding(name):
      if self._owner is None:
        if self._frames or self._alias_statements.get(self.statement) != name:
          self._module_ref(name, node)
      else:
        profile = self._profile(name)
        profile.reads += 1
        self._event(profile, "read")
    if name in self.functions and self._resolves_to_module(name):
      self.call_sites.setdefault(name, []).append(
        CallSite(
          target=name,
          scope=self._owner or MODULE_SCOPE,
          line=self._line(node),
          statement=self.statement,
          is_call=id(node) in self._call_funcs,
          in_loop=self._loop_depth > 0,
        )
      )
    return False

  # --- Stores ---

  def _is_declaration(self, name: str) -> bool:
    return not self._frames and self._owner is None and self.candidates[name].statement == self.statement

  def _record_store(self, target: cst.BaseExpression, value: Optional[cst.BaseExpression]) -> None:
    if isinstance(target, cst.Name):
      name = target.value
      if self._is_binding(name):
        if self._owner is None:
          if not self._is_declaration(name):
            self._module_ref(name, target)
        else:
          self._on_rebind(name, value, augmented=False)
    elif isinstance(target, (cst.Tuple, cst.List)):
      for element in target.elements:
        self._record_store(element.value, None)
    elif isinstance(target, cst.StarredElement):
      self._record_store(target.value, None)
    elif isinstance(target, cst.Subscript):
      self._record_item_store(target, delete=False)
    elif isinstance(target, cst.Attribute):
      if isinstance(target.value, cst.Name) and self._is_binding(target.value.value):
        name = target.value.value
        if self._owner is None:
          self._module_ref(name, target)
        else:
          profile = self._profile(name)
          profile.attribute_store = True
          self._event(profile, "mutate")
      else:
        target.value.visit(self)

  def _record_item_store(self, target: cst.Subscript, delete: bool) -> None:
    receiver = target.value
    if isinstance(receiver, cst.Call) and call_terminal(receiver) in _REFLECTION_SOURCES:
      key = target.slice[0].slice.value if target.slice and isinstance(target.slice[0].slice, cst.Index) else None
      self._reflective_write(key, self._line(target))
    elif isinstance(receiver, cst.Name) and self._is_binding(receiver.value):
      name = receiver.value
      if self._owner is None:
        self._module_ref(name, target)
      else:
        profile = self._profile(name)
        if delete:
          profile.subscript_delete = True
        else:
          profile.subscript_store = True
          frame = self._innermost_function()
          index = target.slice[0].slice if target.slice else None
          if (
            frame is not None
            and isinstance(index, cst.Index)
            and isinstance(index.value, cst.Name)
            and index.value.value in frame.params
          ):
            profile.param_keyed_store = True
        self._event(profile, "mutate")
    else:
      receiver.visit(self)
    for element in target.slice:
      element.slice.visit(self)

  def _on_rebind(self, name: str, value: Optional[cst.BaseExpression], augmented: bool) -> None:
    profile = self._profile(name)
    profile.rebinds += 1
    if augmented:
      profile.augmented = True
    if value is not None and not augmented:
      profile.rebind_values.append(self._code(value))
    if self._loop_depth > 0:
      profile.loop_write = True

    term = call_terminal(value)
    if term is not None:
      if term in self.config.handle_constructors:
        profile.handle_constructor = term
      if term in self.config.timer_constructors:
        profile.timer_constructor = True

    frame = self._innermost_function()
    if isinstance(value, cst.Lambda) or (
      isinstance(value, cst.Name) and frame is not None and value.value in frame.defs
    ):
      profile.callable_rebind = True
    self._event(profile, "write" if augmented else "reset")

  def visit_Assign(self, node: cst.Assign) -> Optional[bool]:
    node.value.visit(self)
    for target in node.targets:
      self._record_store(target.target, node.value)
    return False

  def visit_AnnAssign(self, node: cst.AnnAssign) -> Optional[bool]:
    if node.value is None:
      return False
    node.value.visit(self)
    self._record_store(node.target, node.value)
    return False

  def visit_AugAssign(self, node: cst.AugAssign) -> Optional[bool]:
    node.value.visit(self)
    target = node.target
    if isinstance(target, cst.Name) and self._is_binding(target.value):
      if self._owner is None:
        self._module_ref(target.value, target)
      else:
        profile = self._profile(target.value)
        profile.reads += 1
        self._event(profile, "read")
        self._on_rebind(target.value, None, augmented=True)
    elif isinstance(target, cst.Subscript):
      if isinstance(target.value, cst.Name) and self._is_binding(target.value.value) and self._owner:
        profile = self._profile(target.value.value)
        profile.reads += 1
        self._event(profile, "read")
      self._record_item_store(target, delete=False)
    else:
      self._record_store(target, None)
    return False

  def visit_Del(self, node: cst.Del) -> Optional[bool]:
    self._record_delete(node.target)
    return False

  def _record_delete(self, target: cst.BaseExpression) -> None:
    if isinstance(target, (cst.Tuple, cst.List)):
      for element in target.elements:
        self._record_delete(element.value)
    elif isinstance(target, cst.Subscript):
      self._record_item_store(target, delete=True)
    else:
      self._record_store(target, None)

  def visit_NamedExpr(self, node: cst.NamedExpr) -> Optional[bool]:
    node.value.visit(self)
    self._record_store(node.target, node.value)
    return False

  def visit_WithItem(self, node: cst.WithItem) -> Optional[bool]:
    node.item.visit(self)
    if node.asname is not None:
      self._record_store(node.asname.name, node.item)
    return False

  def visit_ExceptHandler(self, node: cst.ExceptHandler) -> Optional[bool]:
    if node.type is not None:
      node.type.visit(self)
    if node.name is not None:
      self._record_store(node.name.name, None)
    node.body.visit(self)
    return False


class ScopeAnalyzer:
  """
  Scope & Alias Analyzer for one source unit.

  Usage:
      analysis = ScopeAnalyzer(config).analyze(source)
  """

  def __init__(self, config: Optional[EngineConfig] = None):
    """
    Args:
        config: Engine configuration. Defaults to `EngineConfig()`.
    """
    self.config = config or EngineConfig()

  def parse(self, source: str) -> cst.Module:
    """
    Parses the source unit.

    Raises:
        AnalysisError: If the source is not valid Python.
    """
    try:
      return cst.parse_module(source)
    except cst.ParserSyntaxError as e:
      raise AnalysisError(f"Parse Error: {e}", line=e.raw_line)

  def analyze(self, source: str) -> UnitAnalysis:
    """
    Runs the analysis.

    Args:
        source: Python source code of the unit.

    Returns:
        UnitAnalysis: Bindings, accessors and per-binding analysis errors.

    Raises:
        AnalysisError: If the unit cannot be parsed or exceeds the time budget.
    """
    deadline = Deadline(self.config.analysis_timeout)
    wrapper = MetadataWrapper(self.parse(source))
    module = wrapper.module
    positions = wrapper.resolve(PositionProvider)

    exports = _module_exports(module)
    functions = _module_functions(module)
    candidates = self._collect_candidates(module, positions, set(functions))

    collector = _UnitCollector(module, positions, candidates, functions, self.config, deadline)
    for index, stmt in enumerate(module.body):
      deadline.check()
      collector.statement = index
      stmt.visit(collector)

    return self._assemble(collector, candidates, exports)

  def _collect_candidates(
    self,
    module: cst.Module,
    positions: Dict[cst.CSTNode, object],
    function_names: Set[str],
  ) -> Dict[str, _Candidate]:
    candidates: Dict[str, _Candidate] = {}
    for index, stmt in enumerate(module.body):
      if not isinstance(stmt, cst.SimpleStatementLine) or len(stmt.body) != 1:
        continue
      small = stmt.body[0]
      target: Optional[cst.BaseExpression] = None
      value: Optional[cst.BaseExpression] = None
      if isinstance(small, cst.Assign) and len(small.targets) == 1:
        target, value = small.targets[0].target, small.value
      elif isinstance(small, cst.AnnAssign) and small.value is not None:
        target, value = small.target, small.value
      if not isinstance(target, cst.Name) or value is None:
        continue
      name = target.value
      if name in candidates or name in function_names or (name.startswith("__") and name.endswith("__")):
        continue

      if isinstance(value, cst.Name) and value.value in candidates:
        original = candidates[value.value]
        root = original.alias_of or original.name
        candidates[name] = _Candidate(
          name=name,
          kind=original.kind,
          initial=value.value,
          line=positions[stmt].start.line,
          statement=index,
          constructor=original.constructor,
          alias_of=root,
        )
        continue

      kind, constructor = infer_kind(value, self.config)
      candidates[name] = _Candidate(
        name=name,
        kind=kind,
        initial=module.code_for_node(value).strip(),
        line=positions[stmt].start.line,
        statement=index,
        constructor=constructor,
      )
    return candidates

  def _is_mutable_storage(self, candidate: _Candidate, written: Set[str]) -> bool:
    if candidate.name in written:
      return True
    if candidate.kind == BindingKind.CONTAINER:
      return True
    return candidate.kind == BindingKind.HANDLE and candidate.constructor is not None

  def _assemble(
    self,
    collector: _UnitCollector,
    candidates: Dict[str, _Candidate],
    exports: Optional[List[str]],
  ) -> UnitAnalysis:
    written = {name for (_, name), profile in collector.profiles.items() if profile.writes}

    included: Set[str] = set()
    for candidate in candidates.values():
      if candidate.alias_of is None and self._is_mutable_storage(candidate, written):
        included.add(candidate.name)
    for candidate in candidates.values():
      if candidate.alias_of is not None and (candidate.alias_of in included or candidate.name in written):
        included.add(candidate.name)
        included.add(candidate.alias_of)

    errors: List[AnalysisError] = []
    excluded: Set[str] = set()
    for name, reason, line in collector.ambiguous:
      targets = [name] if name is not None else sorted(included)
      for target in targets:
        if target in included and target not in excluded:
          excluded.add(target)
          errors.append(AnalysisError(reason, binding=target, line=line))
    # Aliases share storage with their original, so ambiguity spreads to the whole alias family.
    for candidate in candidates.values():
      if candidate.name in included and candidate.name not in excluded:
        root = candidate.alias_of or candidate.name
        family_excluded = root in excluded or any(
          c.alias_of == root and c.name in excluded for c in candidates.values()
        )
        if family_excluded:
          excluded.add(candidate.name)
          errors.append(AnalysisError(f"'{candidate.name}' aliases ambiguous storage", candidate.name, candidate.line))
    included -= excluded

    bindings: Dict[str, Binding] = {}
    for candidate in sorted(candidates.values(), key=lambda c: c.line):
      if candidate.name not in included:
        continue
      bindings[candidate.name] = Binding(
        name=candidate.name,
        kind=candidate.kind,
        initial=candidate.initial,
        line=candidate.line,
        statement=candidate.statement,
        constructor=candidate.constructor,
        alias_of=candidate.alias_of,
        exported=_is_exported(candidate.name, exports),
        module_refs=sorted(collector.module_refs.get(candidate.name, [])),
      )

    accessors: Dict[str, Accessor] = {}
    for owner in sorted(collector.owners.values(), key=lambda o: o.line):
      profiles = {
        name: profile
        for (owner_name, name), profile in collector.profiles.items()
        if owner_name == owner.name and name in bindings
      }
      if not profiles:
        continue
      scope = function_scope(owner.node)
      allowed = set(bindings) | (scope.locals - set(scope.params))
      accessors[owner.name] = Accessor(
        name=owner.name,
        line=owner.line,
        statement=owner.statement,
        is_method=owner.is_method,
        is_async=owner.node.asynchronous is not None,
        exported=not owner.is_method and owner.top_level and _is_exported(owner.name, exports),
        top_level=owner.top_level,
        params=scope.params,
        required_params=_required_param_count(owner.node.params),
        local_names=sorted(scope.locals),
        profiles=dict(sorted(profiles.items())),
        call_sites=list(collector.call_sites.get(owner.name, [])),
        impurities=scan_side_effects(owner.node, allowed),
        sleeps_in_loop=owner.sleeps_in_loop,
        reads_clock=owner.reads_clock,
      )

    return UnitAnalysis(
      bindings=bindings,
      accessors=accessors,
      exports=exports,
      identifiers=sorted(_identifiers(collector.module)),
      errors=errors,
    )


def _is_exported(name: str, exports: Optional[List[str]]) -> bool:
  if name.startswith("_"):
    return False
  return exports is None or name in exports


def _module_functions(module: cst.Module) -> Dict[str, int]:
  """Maps module-level function names to their top-level statement index."""
  return {stmt.name.value: i for i, stmt in enumerate(module.body) if isinstance(stmt, cst.FunctionDef)}


def _module_exports(module: cst.Module) -> Optional[List[str]]:
  """
  Reads a literal `__all__` declaration.

  Returns:
      Optional[List[str]]: Exported names, or None when the module declares no `__all__`.
  """
  for stmt in module.body:
    if not isinstance(stmt, cst.SimpleStatementLine):
      continue
    for small in stmt.body:
      if not isinstance(small, cst.Assign) or len(small.targets) != 1:
        continue
      target = small.targets[0].target
      if isinstance(target, cst.Name) and target.value == "__all__" and isinstance(small.value, (cst.List, cst.Tuple)):
        names = []
        for element in small.value.elements:
          if isinstance(element.value, cst.SimpleString):
            value = element.value.evaluated_value
            if isinstance(value, str):
              names.append(value)
        return names
  return None


def analyze_unit(source: str, config: Optional[EngineConfig] = None) -> UnitAnalysis:
  """
  Convenience wrapper around `ScopeAnalyzer`.

  Args:
      source: Python source code.
      config: Optional engine configuration.

  Returns:
      UnitAnalysis: The analysis result.
  """
  return ScopeAnalyzer(config).analyze(source)


def _top_level_defs(module: cst.Module) -> Set[int]:
  """Ids of functions defined in the module body or directly in a module-level class."""
  ids: Set[int] = set()
  for stmt in module.body:
    if isinstance(stmt, cst.FunctionDef):
      ids.add(id(stmt))
    elif isinstance(stmt, cst.ClassDef) and isinstance(stmt.body, cst.IndentedBlock):
      ids.update(id(s) for s in stmt.body.body if isinstance(s, cst.FunctionDef))
  return ids


class _IdentifierCollector(cst.CSTVisitor):
  def __init__(self) -> None:
    self.names: Set[str] = set()

  def visit_Name(self, node: cst.Name) -> Optional[bool]:
    self.names.add(node.value)
    return False


def _identifiers(module: cst.Module) -> Set[str]:
  """Every identifier spelled anywhere in the module, attribute names included."""
  collector = _IdentifierCollector()
  module.visit(collector)
  return collector.names

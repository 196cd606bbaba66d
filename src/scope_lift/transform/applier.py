"""
Rewrite Applier.

Applies one `TransformationPlan` to a source unit:

1.  The group's binding declarations move into a new factory function, in their
    original order, initialized with their original (or hoisted) expressions.
2.  The accessors move into the factory after them. `global` declarations of
    group bindings become `nonlocal`; rebinds the plan drops are removed.
3.  Release callables (resource-lifecycle) follow, then `return <capabilities>`.
4.  The factory and, for module-scoped plans, its invocation replace the last
    group member's statement. The other member statements are removed.
5.  Per-scope plans insert the invocation at the top of every invoking function,
    wrapping the rest of that function in `try/finally` when a release is due.

Elements are located by name in the current text, so plans can be applied one
after another. A plan that no longer fits raises `RewriteConflict`.
"""

from typing import List, Optional, Sequence, Set, Union

import libcst as cst

from scope_lift.enums import ReleasePoint, ScopePolicy
from scope_lift.errors import RewriteConflict
from scope_lift.models import MODULE_SCOPE, CallSitePatch, TransformationPlan


def is_docstring(node: cst.CSTNode, idx: int) -> bool:
  """True if `node` is the docstring statement at body position `idx`."""
  if idx != 0 or not isinstance(node, cst.SimpleStatementLine) or len(node.body) != 1:
    return False
  expr = node.body[0]
  return isinstance(expr, cst.Expr) and isinstance(expr.value, (cst.SimpleString, cst.ConcatenatedString))


def is_future_import(node: cst.CSTNode) -> bool:
  if not isinstance(node, cst.SimpleStatementLine):
    return False
  return any(
    isinstance(s, cst.ImportFrom) and isinstance(s.module, cst.Name) and s.module.value == "__future__"
    for s in node.body
  )


def _preamble_length(body: Sequence[cst.BaseStatement]) -> int:
  index = 0
  for i, stmt in enumerate(body):
    if is_docstring(stmt, i) or is_future_import(stmt):
      index = i + 1
      continue
    break
  return index


class _AccessorRewriter(cst.CSTTransformer):
  """
  Re-targets an accessor from module storage to factory-local storage.
  """

  def __init__(self, group_names: Set[str], dropped: Set[str]):
    self.group_names = group_names
    self.dropped = dropped

  def _split_global(self, node: cst.Global) -> List[cst.BaseSmallStatement]:
    keep = [n for n in node.names if n.name.value not in self.group_names]
    moved = [n.name.value for n in node.names if n.name.value in self.group_names]
    out: List[cst.BaseSmallStatement] = []
    if keep:
      out.append(cst.Global(names=[cst.NameItem(name=cst.Name(n.name.value)) for n in keep]))
    if moved:
      out.append(cst.Nonlocal(names=[cst.NameItem(name=cst.Name(n)) for n in moved]))
    return out

  def _is_dropped(self, small: cst.BaseSmallStatement) -> bool:
    if not isinstance(small, cst.Assign) or len(small.targets) != 1:
      return False
    target = small.targets[0].target
    return isinstance(target, cst.Name) and target.value in self.dropped and isinstance(small.value, cst.Lambda)

  def leave_SimpleStatementLine(
    self, original_node: cst.SimpleStatementLine, updated_node: cst.SimpleStatementLine
  ) -> Union[cst.SimpleStatementLine, cst.RemovalSentinel]:
    body: List[cst.BaseSmallStatement] = []
    for small in updated_node.body:
      if isinstance(small, cst.Global):
        body.extend(self._split_global(small))
      elif self._is_dropped(small):
        continue
      else:
        body.append(small)
    if not body:
      return cst.RemovalSentinel.REMOVE
    body = [s.with_changes(semicolon=cst.MaybeSentinel.DEFAULT) for s in body]
    return updated_node.with_changes(body=body)

  def leave_IndentedBlock(self, original_node: cst.IndentedBlock, updated_node: cst.IndentedBlock) -> cst.IndentedBlock:
    if not updated_node.body:
      return updated_node.with_changes(body=[cst.SimpleStatementLine(body=[cst.Pass()])])
    return updated_node


def _stmt(code: str) -> cst.BaseStatement:
  return cst.parse_statement(code)


def _release_def(name: str, binding: str, method: str) -> cst.BaseStatement:
  return _stmt(
    f"def {name}():\n"
    f"    nonlocal {binding}\n"
    f"    if {binding} is not None:\n"
    f"        {binding}.{method}()\n"
    f"        {binding} = None\n"
  )


def _as_block(body: cst.BaseSuite) -> cst.IndentedBlock:
  if isinstance(body, cst.IndentedBlock):
    return body
  return cst.IndentedBlock(body=[cst.SimpleStatementLine(body=list(body.body))])


class RewriteApplier:
  """
  Applies plans to source text.
  """

  def apply(self, source: str, plan: TransformationPlan) -> str:
    """
    Applies one plan.

    Args:
        source: Current source text of the unit.
        plan: The plan to apply.

    Returns:
        str: The rewritten source.

    Raises:
        RewriteConflict: If the plan does not fit the source.
    """
    try:
      module = cst.parse_module(source)
    except cst.ParserSyntaxError as e:
      raise RewriteConflict(f"source does not parse: {e}")
    return self.apply_module(module, plan).code

  def apply_module(self, module: cst.Module, plan: TransformationPlan) -> cst.Module:
    body = list(module.body)
    self._check_names(module, plan)

    binding_idx = {name: self._find_binding(body, name) for name in plan.binding_names}
    accessor_idx = {name: self._find_accessor(body, name) for name in plan.accessors}

    if plan.scope_policy == ScopePolicy.PER_SCOPE:
      for scope in plan.invocation_scopes:
        if scope != MODULE_SCOPE:
          self._invoke_in_scope(body, scope, plan)

    factory = self._build_factory(body, binding_idx, accessor_idx, plan)
    last = max([*binding_idx.values(), *accessor_idx.values()])
    replacement: List[cst.BaseStatement] = [factory.with_changes(leading_lines=body[last].leading_lines)]

    needs_atexit = False
    if MODULE_SCOPE in plan.invocation_scopes:
      replacement.append(_stmt(plan.invocation).with_changes(leading_lines=[cst.EmptyLine(), cst.EmptyLine()]))
      if plan.release_point == ReleasePoint.ATEXIT:
        for cap in plan.capabilities:
          if cap.role == "release":
            replacement.append(_stmt(f"atexit.register({cap.name})"))
            needs_atexit = True

    members = set(binding_idx.values()) | set(accessor_idx.values())
    new_body: List[cst.BaseStatement] = []
    for i, stmt in enumerate(body):
      if i == last:
        new_body.extend(replacement)
      elif i not in members:
        new_body.append(stmt)

    if needs_atexit and not self._imports_atexit(new_body):
      index = _preamble_length(new_body)
      new_body.insert(index, _stmt("import atexit"))
    return module.with_changes(body=new_body)

  def patches(self, plan: TransformationPlan) -> List[CallSitePatch]:
    return list(plan.patches)

  # --- Lookup ---

  def _check_names(self, module: cst.Module, plan: TransformationPlan) -> None:
    defined = set()
    for stmt in module.body:
      if isinstance(stmt, (cst.FunctionDef, cst.ClassDef)):
        defined.add(stmt.name.value)
      elif isinstance(stmt, cst.SimpleStatementLine):
        for small in stmt.body:
          if isinstance(small, cst.Assign):
            for target in small.targets:
              if isinstance(target.target, cst.Name):
                defined.add(target.target.value)
    generated = [plan.factory_name] + [c.name for c in plan.capabilities if c.role == "release"]
    clashes = [name for name in generated if name in defined]
    if clashes:
      raise RewriteConflict(f"generated name(s) already defined: {', '.join(clashes)}")

  def _find_binding(self, body: List[cst.BaseStatement], name: str) -> int:
    for i, stmt in enumerate(body):
      if not isinstance(stmt, cst.SimpleStatementLine) or len(stmt.body) != 1:
        continue
      small = stmt.body[0]
      if isinstance(small, cst.Assign) and len(small.targets) == 1:
        target = small.targets[0].target
      elif isinstance(small, cst.AnnAssign):
        target = small.target
      else:
        continue
      if isinstance(target, cst.Name) and target.value == name:
        return i
    raise RewriteConflict(f"declaration of '{name}' not found at module scope")

  def _find_accessor(self, body: List[cst.BaseStatement], name: str) -> int:
    for i, stmt in enumerate(body):
      if isinstance(stmt, cst.FunctionDef) and stmt.name.value == name:
        return i
    raise RewriteConflict(f"definition of '{name}' not found at module scope")

  def _imports_atexit(self, body: List[cst.BaseStatement]) -> bool:
    for stmt in body:
      if isinstance(stmt, cst.SimpleStatementLine):
        for small in stmt.body:
          if isinstance(small, cst.Import):
            for alias in small.names:
              if isinstance(alias.name, cst.Name) and alias.name.value == "atexit" and alias.asname is None:
                return True
    return False

  # --- Factory ---

  def _build_factory(
    self,
    body: List[cst.BaseStatement],
    binding_idx,
    accessor_idx,
    plan: TransformationPlan,
  ) -> cst.FunctionDef:
    statements: List[cst.BaseStatement] = []
    for binding in plan.bindings:
      stmt = body[binding_idx[binding.name]]
      comments = [line for line in stmt.leading_lines if line.comment is not None]
      if binding.hoisted:
        stmt = _stmt(f"{binding.name} = {binding.initial}")
      statements.append(stmt.with_changes(leading_lines=comments))

    group_names = set(plan.binding_names)
    for name in plan.accessors:
      node = body[accessor_idx[name]]
      rewriter = _AccessorRewriter(group_names, set(plan.dropped_rebinds.get(name, [])))
      node = node.visit(rewriter)
      statements.append(node.with_changes(leading_lines=[cst.EmptyLine()]))

    releases = [c.name for c in plan.capabilities if c.role == "release"]
    for release_name, (binding, method) in zip(releases, plan.release_methods.items()):
      statements.append(_release_def(release_name, binding, method).with_changes(leading_lines=[cst.EmptyLine()]))

    returned = ", ".join(plan.capability_names)
    statements.append(_stmt(f"return {returned}").with_changes(leading_lines=[cst.EmptyLine()]))

    return cst.FunctionDef(
      name=cst.Name(plan.factory_name),
      params=cst.Parameters(),
      body=cst.IndentedBlock(body=statements),
    )

  # --- Per-scope invocation ---

  def _locate_scope(self, body: List[cst.BaseStatement], scope: str):
    parts = scope.split(".")
    for i, stmt in enumerate(body):
      if len(parts) == 1 and isinstance(stmt, cst.FunctionDef) and stmt.name.value == parts[0]:
        return i, None
      if len(parts) == 2 and isinstance(stmt, cst.ClassDef) and stmt.name.value == parts[0]:
        block = _as_block(stmt.body)
        for j, inner in enumerate(block.body):
          if isinstance(inner, cst.FunctionDef) and inner.name.value == parts[1]:
            return i, j
    raise RewriteConflict(f"invoking scope '{scope}' not found")

  def _invoke_in_scope(self, body: List[cst.BaseStatement], scope: str, plan: TransformationPlan) -> None:
    outer, inner = self._locate_scope(body, scope)
    if inner is None:
      body[outer] = self._with_invocation(body[outer], plan)
      return
    cls = body[outer]
    block = _as_block(cls.body)
    members = list(block.body)
    members[inner] = self._with_invocation(members[inner], plan)
    body[outer] = cls.with_changes(body=block.with_changes(body=members))

  def _with_invocation(self, func: cst.FunctionDef, plan: TransformationPlan) -> cst.FunctionDef:
    block = _as_block(func.body)
    statements = list(block.body)
    head = 1 if statements and is_docstring(statements[0], 0) else 0
    rest = statements[head:]

    invocation = _stmt(plan.invocation)
    releases = [c.name for c in plan.capabilities if c.role == "release"]
    if plan.release_point == ReleasePoint.FINALLY and releases:
      calls = [cst.SimpleStatementLine(body=[cst.Expr(cst.Call(func=cst.Name(r)))]) for r in releases]
      guarded = cst.Try(
        body=cst.IndentedBlock(body=rest),
        finalbody=cst.Finally(body=cst.IndentedBlock(body=calls)),
      )
      rest = [guarded]
    return func.with_changes(body=block.with_changes(body=[*statements[:head], invocation, *rest]))

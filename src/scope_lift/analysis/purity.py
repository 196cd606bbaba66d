"""
Static Side-Effect Analysis for Accessors.

This module provides the `SideEffectScanner`, a LibCST visitor that lists the
operations of a function body that reach beyond the function itself. The
trivial-logic exemption relies on it: an accessor that only touches its flagged
bindings and its own locals gains nothing from being wrapped in a factory.

Operations flagged:
1.  **I/O**: `print`, `input`, `open`, `write`.
2.  **Global State**: `global` of a name that is not an allowed binding.
3.  **Closure State**: `nonlocal` of a name that is not an allowed binding.
4.  **Foreign Mutation**: mutating methods, subscript or attribute stores on
    receivers that are neither allowed bindings nor function locals.
5.  **Global RNG**: Seeding operations like `random.seed`.
6.  **Blocking**: sleeping.
"""

from typing import List, Optional, Set

import libcst as cst

MUTATION_METHODS: Set[str] = {
  "append",
  "extend",
  "insert",
  "remove",
  "pop",
  "clear",
  "sort",
  "reverse",
  "update",
  "setdefault",
  "popitem",
  "add",
  "discard",
  "appendleft",
  "popleft",
  "extendleft",
  "rotate",
  "put",
  "put_nowait",
  "get_nowait",
}


def receiver_root(node: cst.BaseExpression) -> Optional[str]:
  """
  Finds the root name of an attribute/subscript chain (`a.b[c].d` -> `a`).

  Args:
      node: The expression to inspect.

  Returns:
      Optional[str]: The root identifier, or None for non-name roots (calls, literals).
  """
  current = node
  while isinstance(current, (cst.Attribute, cst.Subscript)):
    current = current.value
  if isinstance(current, cst.Name):
    return current.value
  return None


class SideEffectScanner(cst.CSTVisitor):
  """
  Collects impurities of one function definition.

  Attributes:
      allowed (Set[str]): Names the function may freely mutate (bindings and locals).
      violations (List[str]): Human-readable impurity descriptions in source order.
  """

  _IO_FUNCTIONS: Set[str] = {"print", "input", "open", "write"}

  _GLOBAL_RNG_METHODS: Set[str] = {"seed", "manual_seed", "set_seed"}

  _BLOCKING_FUNCTIONS: Set[str] = {"sleep"}

  def __init__(self, allowed: Set[str]):
    """
    Initializes the scanner.

    Args:
        allowed: Names whose mutation does not count as a side effect.
    """
    self.allowed = set(allowed)
    self.violations: List[str] = []

  def _flag(self, message: str) -> None:
    if message not in self.violations:
      self.violations.append(message)

  def visit_Global(self, node: cst.Global) -> Optional[bool]:
    names = [n.name.value for n in node.names if n.name.value not in self.allowed]
    if names:
      self._flag(f"Global mutation ({', '.join(names)})")
    return False

  def visit_Nonlocal(self, node: cst.Nonlocal) -> Optional[bool]:
    names = [n.name.value for n in node.names if n.name.value not in self.allowed]
    if names:
      self._flag(f"Nonlocal mutation ({', '.join(names)})")
    return False

  def visit_Call(self, node: cst.Call) -> Optional[bool]:
    """
    Inspects calls for I/O, foreign mutation, RNG seeding and blocking.

    Args:
        node: The Call node.

    Returns:
        True to traverse arguments.
    """
    if isinstance(node.func, cst.Name):
      func_name = node.func.value
      if func_name in self._IO_FUNCTIONS:
        self._flag(f"I/O Call ({func_name})")
      elif func_name in self._BLOCKING_FUNCTIONS:
        self._flag(f"Blocking Call ({func_name})")

    elif isinstance(node.func, cst.Attribute):
      attr_name = node.func.attr.value
      root = receiver_root(node.func.value)

      if attr_name in MUTATION_METHODS and root not in self.allowed:
        self._flag(f"In-place Mutation ({root or '?'}.{attr_name})")
      elif attr_name in self._GLOBAL_RNG_METHODS:
        self._flag(f"Global RNG State (.{attr_name})")
      elif attr_name == "write":
        self._flag("I/O Call (.write)")
      elif attr_name in self._BLOCKING_FUNCTIONS:
        self._flag(f"Blocking Call (.{attr_name})")

    return True

  def _check_store(self, target: cst.BaseExpression) -> None:
    if isinstance(target, (cst.Attribute, cst.Subscript)):
      root = receiver_root(target)
      if root not in self.allowed:
        self._flag(f"Foreign Store ({root or '?'})")
    elif isinstance(target, (cst.Tuple, cst.List)):
      for element in target.elements:
        self._check_store(element.value)

  def visit_Assign(self, node: cst.Assign) -> Optional[bool]:
    for target in node.targets:
      self._check_store(target.target)
    return True

  def visit_AugAssign(self, node: cst.AugAssign) -> Optional[bool]:
    self._check_store(node.target)
    return True

  def visit_AnnAssign(self, node: cst.AnnAssign) -> Optional[bool]:
    if node.value is not None:
      self._check_store(node.target)
    return True

  def visit_Del(self, node: cst.Del) -> Optional[bool]:
    self._check_store(node.target)
    return True


def scan_side_effects(func: cst.CSTNode, allowed: Set[str]) -> List[str]:
  """
  Convenience wrapper running a `SideEffectScanner` over one node.

  Args:
      func: Function definition (or any node) to scan.
      allowed: Names the function may mutate.

  Returns:
      List[str]: Impurity descriptions; empty when side-effect free.
  """
  scanner = SideEffectScanner(allowed)
  func.visit(scanner)
  return scanner.violations

"""
Sharing-Group Builder.

Partitions the bindings of one unit into maximal sharing groups: two bindings
belong together when some accessor touches both, transitively, and an alias is
always grouped with the storage it re-exports. Accessors travel with the
bindings they touch.

Group ids are stable for a given source text: `g1`, `g2`, ... ordered by the
declaration line of each group's first binding.
"""

from typing import Dict, List

from scope_lift.models import SharingGroup, UnitAnalysis


class DisjointSet:
  """
  Union-find over string keys with path halving and union by size.
  """

  def __init__(self) -> None:
    self._parent: Dict[str, str] = {}
    self._size: Dict[str, int] = {}

  def add(self, key: str) -> None:
    if key not in self._parent:
      self._parent[key] = key
      self._size[key] = 1

  def find(self, key: str) -> str:
    """
    Returns the representative of `key`, registering it on first sight.
    """
    self.add(key)
    while self._parent[key] != key:
      self._parent[key] = self._parent[self._parent[key]]
      key = self._parent[key]
    return key

  def union(self, a: str, b: str) -> None:
    root_a, root_b = self.find(a), self.find(b)
    if root_a == root_b:
      return
    if self._size[root_a] < self._size[root_b]:
      root_a, root_b = root_b, root_a
    self._parent[root_b] = root_a
    self._size[root_a] += self._size[root_b]

  def classes(self) -> Dict[str, List[str]]:
    """Groups every registered key under its representative."""
    out: Dict[str, List[str]] = {}
    for key in self._parent:
      out.setdefault(self.find(key), []).append(key)
    return out


def _binding_key(name: str) -> str:
  return f"b:{name}"


def _accessor_key(name: str) -> str:
  return f"a:{name}"


def build_groups(unit: UnitAnalysis) -> List[SharingGroup]:
  """
  Computes the sharing groups of an analyzed unit.

  Every binding lands in exactly one group. Bindings no accessor touches form
  singleton groups with no accessors.

  Args:
      unit: Output of the Scope & Alias Analyzer.

  Returns:
      List[SharingGroup]: Groups ordered by their first binding's declaration line.
  """
  dsu = DisjointSet()
  for binding in unit.bindings.values():
    dsu.add(_binding_key(binding.name))
    if binding.alias_of and binding.alias_of in unit.bindings:
      dsu.union(_binding_key(binding.name), _binding_key(binding.alias_of))

  for accessor in unit.accessors.values():
    for name in accessor.profiles:
      if name in unit.bindings:
        dsu.union(_accessor_key(accessor.name), _binding_key(name))

  drafts = []
  for members in dsu.classes().values():
    binding_names = [k[2:] for k in members if k.startswith("b:")]
    if not binding_names:
      continue
    binding_names.sort(key=lambda n: unit.bindings[n].line)
    accessor_names = sorted(
      (k[2:] for k in members if k.startswith("a:")),
      key=lambda n: unit.accessors[n].line,
    )
    drafts.append((unit.bindings[binding_names[0]].line, binding_names, accessor_names))

  drafts.sort(key=lambda d: d[0])
  return [
    SharingGroup(id=f"g{i}", bindings=bindings, accessors=accessors)
    for i, (_, bindings, accessors) in enumerate(drafts, start=1)
  ]

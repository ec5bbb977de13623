import logging
import re

from glycoring.bonds import base_atom, bond_graph, default_altloc

logger = logging.getLogger(__name__)

RING_SIZES = (5, 6)


def carbon_rank(name):
  """Numeric suffix of an atom name ('C3' -> 3, 'C10' -> 10); 0 when there is none."""
  digits = re.findall(r'\d+', name)
  return int(digits[-1]) if digits else 0


def is_part_of_ring(atom, ring):
  """Checks whether an atom (or a copy of it in another conformation or symmetry image) belongs to the ring.
  Args:
      atom (Atom or NeighborAtom): Atom to check.
      ring (list): Ring atoms.
  Returns:
      bool: True when the atom is a ring member or shares name and residue with one.
  """
  if atom is None:
    return False
  atom = base_atom(atom)
  for member in ring:
    if member is atom:
      return True
    if (member.name == atom.name and member.residue_number == atom.residue_number
        and member.chain_id == atom.chain_id and member.residue_name == atom.residue_name):
      return True
  return False


def canonicalize_ring(atoms):
  """Orders ring atoms with the heteroatom first and the carbons by ascending name number.
  Args:
      atoms (list): Ring atoms in traversal order.
  Returns:
      list: Canonically ordered ring; applying it again returns the same order.
  """
  hetero = [a for a in atoms if a.element != 'C']
  carbons = sorted((a for a in atoms if a.element == 'C'), key=lambda a: carbon_rank(a.name))
  return hetero + carbons


def _close_cycle(graph, start):
  """Depth-first walk from `start` that stops at the first ring closure.
  Args:
      graph (networkx.Graph): Bond graph.
      start (int): Node to start from.
  Returns:
      list: Nodes of the closed cycle, or an empty list when none closes.
  """
  visited = set()
  sources = set()
  path = [start]
  stack = [(start, iter(sorted(graph.neighbors(start))))]
  while stack:
    node, neighbours = stack[-1]
    for nxt in neighbours:
      arc = frozenset((node, nxt))
      if arc in visited:
        continue
      if nxt in sources:
        # walking back into the current path: [closing, node, ..., closing]
        cycle = path[path.index(nxt):]
        return [nxt] + cycle[:0:-1]
      visited.add(arc)
      sources.add(node)
      path.append(nxt)
      stack.append((nxt, iter(sorted(graph.neighbors(nxt)))))
      break
    else:
      stack.pop()
      path.pop()
  return []


def find_ring(residue, altloc=None):
  """Discovers the sugar ring of a residue from its bond connectivity alone.
  Args:
      residue (Residue): Residue to search.
      altloc (str, optional): Conformation tag; defaults to the first one present.
  Returns:
      list: Canonically ordered ring atoms, or an empty list when no 5- or 6-membered ring closes.
  """
  graph = bond_graph(residue, altloc)
  if not graph.number_of_nodes():
    return []
  cycle = _close_cycle(graph, min(graph.nodes))
  if len(cycle) not in RING_SIZES:
    if cycle:
      logger.debug(f"{residue.label}: {len(cycle)}-membered ring is not a sugar ring")
    return []
  ring = canonicalize_ring([graph.nodes[i]['atom'] for i in cycle])
  logger.debug(f"{residue.label}: ring {' '.join(a.name for a in ring)}")
  return ring


def _pick_conformer(candidates, preferred):
  blank = [a for a in candidates if not a.altloc]
  if blank:
    return blank[0]
  for altloc in preferred:
    for atom in candidates:
      if atom.altloc == altloc:
        return atom
  return None


def ring_from_template(residue, ring_names, altloc=None):
  """Looks up the ring atoms named by a reference template.
  Disordered atoms resolve to the requested conformation, else to 'A', else to 'B'.
  Args:
      residue (Residue): Residue to search.
      ring_names (list): Template ring atom names, heteroatom first.
      altloc (str, optional): Requested conformation tag.
  Returns:
      tuple: (canonically ordered ring atoms, altloc used) or (None, '') when a name cannot be resolved.
  """
  preferred = [altloc] if altloc else []
  preferred += [tag for tag in ('A', 'B') if tag not in preferred]
  ring, used = [], ''
  for name in ring_names:
    atom = _pick_conformer(residue.lookup(name), [used] + preferred if used else preferred)
    if atom is None:
      logger.debug(f"{residue.label}: template atom {name} not found")
      return None, ''
    used = used or atom.altloc
    ring.append(atom)
  return canonicalize_ring(ring), used or (altloc if altloc is not None else default_altloc(residue))

import logging
from itertools import combinations

import networkx as nx
import numpy as np

from glycoring.structure import NeighborAtom

logger = logging.getLogger(__name__)

# Open distance windows in Angstrom, keyed by the sorted element pair
BOND_WINDOWS = {
    ('C', 'C'): (1.18, 1.60),
    ('C', 'N'): (1.24, 1.52),
    ('C', 'O'): (1.16, 1.50),
    ('C', 'H'): (0.96, 1.14),
    ('H', 'N'): (0.90, 1.10),
    ('H', 'O'): (0.88, 1.04),
    }
LINK_WINDOW = (1.2, 1.8)


def bond_window(element_a, element_b):
  """Returns the (low, high) bonding window for two elements."""
  key = tuple(sorted((element_a.strip().upper(), element_b.strip().upper())))
  return BOND_WINDOWS.get(key, LINK_WINDOW)


def base_atom(atom):
  """Unwraps a NeighborAtom hit to the Atom it was generated from."""
  return atom.atom if isinstance(atom, NeighborAtom) else atom


def bonded_distance(atom, other, structure=None):
  """Distance between an atom and a possibly symmetry-generated partner.
  Args:
      atom (Atom or NeighborAtom): Reference atom.
      other (Atom or NeighborAtom): Partner; a NeighborAtom with a non-identity operator or a lattice
        shift is placed at the image closest to `atom` before measuring.
      structure (Structure, optional): Source of the cell and operators.
  Returns:
      float: Distance in Angstrom.
  """
  coord = other.coord
  if isinstance(other, NeighborAtom) and other.is_image and structure is not None:
    coord = structure.image_near(other.atom.coord, other.symmetry, atom.coord)
  return float(np.linalg.norm(np.asarray(coord) - np.asarray(atom.coord)))


def is_bonded(atom, other, structure=None):
  """Checks whether two atoms are chemically bonded from their elements and distance.
  Args:
      atom (Atom or NeighborAtom): First atom.
      other (Atom or NeighborAtom): Second atom.
      structure (Structure, optional): Needed to place symmetry images.
  Returns:
      bool: True when the distance falls strictly inside the element-pair window.
  """
  low, high = bond_window(atom.element, other.element)
  return low < bonded_distance(atom, other, structure) < high


def same_conformation(atom, other):
  """Atoms share a conformation when their altloc tags match or either is blank."""
  return not atom.altloc or not other.altloc or atom.altloc == other.altloc


def in_conformation(atom, altloc):
  return not altloc or not atom.altloc or atom.altloc == altloc


def default_altloc(residue):
  """The conformation analysed when none is requested: the first altloc tag in sorted order, or blank."""
  altlocs = residue.altlocs
  return altlocs[0] if altlocs else ''


def conformation_atoms(residue, altloc=None):
  """Returns the atoms of one conformation of a residue: blank-tagged atoms plus those tagged `altloc`."""
  if altloc is None:
    altloc = default_altloc(residue)
  return [a for a in residue.atoms if in_conformation(a, altloc)]


def bond_graph(residue, altloc=None):
  """Builds the intra-residue bond graph for one conformation.
  Args:
      residue (Residue): Residue to connect.
      altloc (str, optional): Conformation tag; defaults to the first one present.
  Returns:
      networkx.Graph: Nodes are positions in the conformation's atom list (attribute 'atom'),
        edges carry the bond 'length'.
  """
  atoms = conformation_atoms(residue, altloc)
  graph = nx.Graph()
  for i, atom in enumerate(atoms):
    graph.add_node(i, atom=atom)
  for (i, a), (j, b) in combinations(enumerate(atoms), 2):
    if same_conformation(a, b) and is_bonded(a, b):
      graph.add_edge(i, j, length=bonded_distance(a, b))
  logger.debug(f"{residue.label}: {graph.number_of_nodes()} atoms, {graph.number_of_edges()} bonds")
  return graph

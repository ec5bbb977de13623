import logging

from glycoring.bonds import LINK_WINDOW, base_atom, bonded_distance, in_conformation, is_bonded
from glycoring.ring import is_part_of_ring

logger = logging.getLogger(__name__)

SEARCH_RADIUS = LINK_WINDOW[1]


def _same(a, b):
  return a is not None and b is not None and base_atom(a) is base_atom(b)


def _link_neighbours(atom, neighbors, structure, altloc):
  """Non-hydrogen, conformation-matched atoms linked to `atom`, nearest first, with their distances."""
  hits = []
  for hit in neighbors.atoms_near(atom.coord, SEARCH_RADIUS):
    if hit.element == 'H' or not in_conformation(hit, altloc):
      continue
    if _same(hit, atom) and not hit.is_image:
      continue
    distance = bonded_distance(atom, hit, structure)
    if distance < LINK_WINDOW[1]:
      hits.append((distance, hit))
  return hits


def _prefer_non_carbon(candidates):
  """First non-carbon candidate wins; a carbon is taken only while nothing has been chosen."""
  chosen = None
  for candidate in candidates:
    if candidate.element != 'C':
      if chosen is None or chosen.element == 'C':
        chosen = candidate
    elif chosen is None:
      chosen = candidate
  return chosen


def is_stereocenter(atom, ring, neighbors, structure=None, altloc=''):
  """Checks whether a carbon carries more than two distinct non-hydrogen substituents.
  Args:
      atom (Atom or NeighborAtom): Candidate carbon.
      ring (list): Canonical ring atoms; the heteroatom at position 0 is always counted.
      neighbors (NeighborIndex): Neighbour search over the structure.
      structure (Structure, optional): Used to place symmetry images.
      altloc (str): Conformation being analysed.
  Returns:
      bool: True for a stereocentre.
  """
  if atom is None or atom.element != 'C':
    return False
  substituents = []
  for distance, hit in _link_neighbours(atom, neighbors, structure, altloc):
    if distance <= LINK_WINDOW[0]:
      continue
    duplicate = any(s.element != 'C' and s.element == hit.element for s in substituents)
    if not duplicate or (ring and _same(hit, ring[0])):
      substituents.append(hit)
  return len(substituents) > 2


def anomeric_pair(ring, neighbors, structure=None, altloc=''):
  """Finds the anomeric carbon (ring position 1) and its exocyclic substituent.
  Returns:
      tuple: (carbon, substituent); either may be None.
  """
  if len(ring) < 2 or ring[1].element != 'C':
    return None, None
  carbon = ring[1]
  candidates = [hit for _, hit in _link_neighbours(carbon, neighbors, structure, altloc)
                if not is_part_of_ring(hit, ring) and is_bonded(carbon, hit, structure)]
  return carbon, _prefer_non_carbon(candidates)


def _nearest_substituent(carbon, ring, neighbors, structure, altloc):
  for _, hit in _link_neighbours(carbon, neighbors, structure, altloc):
    if not is_part_of_ring(hit, ring):
      return hit
  return None


def configurational_pair(ring, neighbors, structure=None, altloc=''):
  """Finds the highest-ranked stereocentre and its substituent.
  The last in-ring stereocentre is taken first, then the chain is followed outward while the
  substituent is itself a stereocentre.
  Args:
      ring (list): Canonical ring atoms.
      neighbors (NeighborIndex): Neighbour search over the structure.
      structure (Structure, optional): Used to place symmetry images.
      altloc (str): Conformation being analysed.
  Returns:
      tuple: (carbon, substituent); either may be None.
  """
  carbon = None
  for atom in reversed(ring[2:]):
    if atom.element == 'C' and is_stereocenter(atom, ring, neighbors, structure, altloc):
      carbon = atom
      break
  if carbon is None:
    return None, None
  substituent = _nearest_substituent(carbon, ring, neighbors, structure, altloc)
  last = ring[-1]
  candidate = substituent
  while (candidate is not None and not _same(candidate, carbon)
         and is_stereocenter(candidate, ring, neighbors, structure, altloc)):
    carbon = candidate
    reach = bonded_distance(last, carbon, structure)
    for _, hit in _link_neighbours(carbon, neighbors, structure, altloc):
      if is_part_of_ring(hit, ring):
        continue
      if hit.element == 'C':
        if bonded_distance(last, hit, structure) > reach:
          candidate = hit
      else:
        substituent = hit
  return carbon, substituent


def locate_stereochemistry(ring, neighbors, structure=None, altloc=''):
  """Returns the anomeric and configurational (carbon, substituent) pairs of a ring."""
  anomeric = anomeric_pair(ring, neighbors, structure, altloc)
  configurational = configurational_pair(ring, neighbors, structure, altloc)
  logger.debug(f"anomeric {_names(anomeric)}, configurational {_names(configurational)}")
  return anomeric, configurational


def last_carbon_substituent(ring, neighbors, structure=None, altloc='', match_occupancy=False):
  """Finds the exocyclic substituent of the last ring carbon, used for D/L assignment.
  Args:
      ring (list): Canonical ring atoms.
      neighbors (NeighborIndex): Neighbour search over the structure.
      structure (Structure, optional): Used to place symmetry images.
      altloc (str): Conformation being analysed.
      match_occupancy (bool): Only accept neighbours with the same occupancy as the ring carbon.
  Returns:
      Atom or NeighborAtom: The substituent, or None.
  """
  last = ring[-1]
  candidates = []
  for _, hit in _link_neighbours(last, neighbors, structure, altloc):
    if is_part_of_ring(hit, ring):
      continue
    if match_occupancy and hit.occupancy != last.occupancy:
      continue
    candidates.append(hit)
  return _prefer_non_carbon(candidates)


def _names(pair):
  return tuple(atom.name if atom is not None else None for atom in pair)

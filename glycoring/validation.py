import logging
from dataclasses import asdict, dataclass
from typing import List

import numpy as np

from glycoring.bonds import is_bonded

logger = logging.getLogger(__name__)

IDEAL_BOND_HETERO = 1.430
IDEAL_BOND_CARBON = 1.530
IDEAL_ANGLE_HETERO = 112.0
IDEAL_ANGLE_CARBON = 109.0
BOND_RMSD_LIMIT = {5: 0.040, 6: 0.035}
ANGLE_RMSD_RANGE = {5: (4.0, 7.5), 6: (None, 4.0)}


@dataclass
class SanityFlags:
  ring_bonded: bool = False
  chirality: bool = False
  anomer: bool = False
  bonds_rmsd: bool = False
  angles_rmsd: bool = False

  @property
  def sane(self):
    return all(asdict(self).values())


def calculate_torsion_angle(coords: List[List[float]]) -> float:
  """Calculate torsion angle from 4 xyz coordinates.
  Args:
    coords (list): List of 4 [x,y,z] coordinates
  Returns:
    float: Torsion angle in degrees, in (-180, 180]
  """
  p = [np.array(p, dtype=float) for p in coords]
  v = [p[1] - p[0], p[2] - p[1], p[3] - p[2]]
  n1, n2 = np.cross(v[0], v[1]), np.cross(v[1], v[2])
  n1 /= np.linalg.norm(n1)
  n2 /= np.linalg.norm(n2)
  return float(np.degrees(np.arctan2(
    np.dot(np.cross(n1, v[1] / np.linalg.norm(v[1])), n2),
    np.dot(n1, n2)
    )))


def calculate_bond_angle(a, b, c) -> float:
  """Angle a-b-c in degrees, measured at b."""
  u = np.asarray(a, dtype=float) - np.asarray(b, dtype=float)
  w = np.asarray(c, dtype=float) - np.asarray(b, dtype=float)
  cosine = np.dot(u, w) / (np.linalg.norm(u) * np.linalg.norm(w))
  return float(np.degrees(np.arccos(np.clip(cosine, -1.0, 1.0))))


def ring_geometry(ring):
  """Measures every bond, angle and torsion around the ring, wrapping at the end.
  Bond k joins atoms k and k+1, angle k is centred on atom k and torsion k spans atoms k-1 to k+2.
  Args:
    ring (list): Canonical ring atoms.
  Returns:
    tuple: (bonds, angles, torsions) as lists of floats.
  """
  coords = [np.asarray(atom.coord, dtype=float) for atom in ring]
  n = len(coords)
  bonds = [float(np.linalg.norm(coords[(k + 1) % n] - coords[k])) for k in range(n)]
  angles = [calculate_bond_angle(coords[k - 1], coords[k], coords[(k + 1) % n]) for k in range(n)]
  torsions = [calculate_torsion_angle([coords[k - 1], coords[k], coords[(k + 1) % n], coords[(k + 2) % n]])
              for k in range(n)]
  return bonds, angles, torsions


def ring_rmsd(bonds, angles):
  """RMSD of ring bonds and angles from ideal pyranose/furanose geometry.
  The first and last entries are the ones that involve the ring heteroatom.
  Returns:
    tuple: (bond RMSD in Angstrom, angle RMSD in degrees)
  """
  n = len(bonds)
  ideal_bonds = np.full(n, IDEAL_BOND_CARBON)
  ideal_bonds[[0, -1]] = IDEAL_BOND_HETERO
  ideal_angles = np.full(len(angles), IDEAL_ANGLE_CARBON)
  ideal_angles[[0, -1]] = IDEAL_ANGLE_HETERO
  bond_rmsd = np.sqrt(np.mean((np.asarray(bonds) - ideal_bonds)**2))
  angle_rmsd = np.sqrt(np.mean((np.asarray(angles) - ideal_angles)**2))
  return float(bond_rmsd), float(angle_rmsd)


def ring_is_bonded(ring, structure=None):
  """Checks that every consecutive pair of ring atoms, including the closing pair, is bonded."""
  n = len(ring)
  return n > 0 and all(is_bonded(ring[k], ring[(k + 1) % n], structure) for k in range(n))


def sanity_flags(ring_size, bond_rmsd, angle_rmsd, ring_bonded, handedness, anomer, entry=None):
  """Compares observed geometry and stereochemistry with a reference table entry.
  Handedness and anomer checks are loose: they only fail when both sides give opposite defined labels.
  Args:
    ring_size (int): 5 or 6.
    bond_rmsd (float): Ring bond RMSD in Angstrom.
    angle_rmsd (float): Ring angle RMSD in degrees.
    ring_bonded (bool): Result of ring_is_bonded.
    handedness (str): Observed 'D', 'L' or 'N'.
    anomer (str): Observed 'alpha', 'beta' or 'X'.
    entry (dict, optional): Reference entry with 'handedness' ('D'/'L') and 'anomer' ('A'/'B').
  Returns:
    SanityFlags: Individual flags; all but ring_bonded stay False without an entry.
  """
  flags = SanityFlags(ring_bonded=bool(ring_bonded))
  if entry is None:
    return flags
  expected_handedness, expected_anomer = entry['handedness'], entry['anomer']
  flags.chirality = ((handedness != 'D' and expected_handedness != 'D')
                     or (handedness != 'L' and expected_handedness != 'L'))
  flags.anomer = ((anomer == 'alpha' and expected_anomer != 'B')
                  or (anomer == 'beta' and expected_anomer != 'A'))
  flags.bonds_rmsd = bool(bond_rmsd < BOND_RMSD_LIMIT[ring_size])
  low, high = ANGLE_RMSD_RANGE[ring_size]
  flags.angles_rmsd = bool((low is None or angle_rmsd > low) and angle_rmsd < high)
  return flags


def validate(sugar, structure=None):
  """Fills the ring geometry, RMSDs and sanity flags of a classified sugar.
  Args:
    sugar (Sugar): Classification record with a ring and stereochemistry.
    structure (Structure, optional): Used for the ring bond check.
  Returns:
    SanityFlags: The flags also stored on `sugar`.
  """
  sugar.bonds, sugar.angles, sugar.torsions = ring_geometry(sugar.ring)
  sugar.bond_rmsd, sugar.angle_rmsd = ring_rmsd(sugar.bonds, sugar.angles)
  flags = sanity_flags(len(sugar.ring), sugar.bond_rmsd, sugar.angle_rmsd, ring_is_bonded(sugar.ring, structure),
                       sugar.handedness, sugar.anomer, sugar.database_entry)
  sugar.flags = flags
  sugar.sane = flags.sane and sugar.database_entry is not None
  if sugar.database_entry is not None and not sugar.sane:
    logger.debug(f"{sugar.name}: failed sanity checks {flags}")
  return flags

import logging
from bisect import bisect_left
from typing import Dict

import numpy as np

from glycoring.ring import is_part_of_ring
from glycoring.stereo import last_carbon_substituent, locate_stereochemistry

logger = logging.getLogger(__name__)

EPSILON = 1e-9
PHI_TOLERANCE = 1e-3

# Pyranose theta bands are closed on the right: theta <= 22.5 is 4C1, theta > 157.5 is 1C4
PYRANOSE_THETA_BOUNDS = [22.5, 67.5, 112.5, 157.5]
# Twelve phi bands of 30 degrees centred on multiples of 30; (345, 360) wraps onto the first one
PYRANOSE_PHI_BOUNDS = [15.0 + 30.0 * k for k in range(12)]
PYRANOSE_BANDS = [
    # theta ~ 45: envelopes and half-chairs
    ['OE', 'OH1', 'E1', '2H1', '2E', '2H3', 'E3', '4H3', '4E', '4H5', 'E5', 'OH5'],
    # theta ~ 90: boats and skew-boats
    ['3,OB', '3S1', 'B1,4', '5S1', '2,5B', '2SO', 'B3,O', '1S3', '1,4B', '1S5', 'B2,5', 'OS2'],
    # theta ~ 135: envelopes and half-chairs
    ['3E', '3H4', 'E4', '5H4', '5E', '5HO', 'EO', '1HO', '1E', '1H2', 'E2', '3H2'],
    ]
# Twenty pseudorotation bands of 18 degrees centred on multiples of 18
FURANOSE_PHI_BOUNDS = [9.0 + 18.0 * k for k in range(20)]
FURANOSE_BANDS = ['3T2', '3E', '3T4', 'E4', 'OT4', 'OE', 'OT1', 'E1', '2T1', '2E',
                  '2T3', 'E3', '4T3', '4E', '4TO', 'EO', '1TO', '1E', '1T2', 'E2']

CONFORMATIONS = ['4C1', '1C4'] + [name for band in PYRANOSE_BANDS for name in band] + FURANOSE_BANDS
FURANOSE_OFFSET = 2 + 12 * len(PYRANOSE_BANDS)


def ring_centre(coords):
  """Geometric centre of the ring atoms."""
  return np.mean(np.asarray(coords, dtype=float), axis=0)


def recentre(coords, centre):
  """Local copy of the coordinates with `centre` moved to the origin."""
  return np.asarray(coords, dtype=float) - np.asarray(centre, dtype=float)


def mean_plane_normal(coords):
  """Unit normal of the Cremer-Pople mean plane, n = unit(R' x R'').
  Args:
      coords (np.ndarray): Recentred ring coordinates in canonical order.
  Returns:
      np.ndarray: Unit normal vector.
  """
  coords = np.asarray(coords, dtype=float)
  n = len(coords)
  r_prime, r_second = np.zeros(3), np.zeros(3)
  for j in range(n):
    angle = 2 * np.pi * j / n
    r_prime += coords[j] * np.sin(angle)
    r_second += coords[j] * np.cos(angle)
  normal = np.cross(r_prime, r_second)
  length = np.linalg.norm(normal)
  if length < EPSILON:
    raise ValueError("Degenerate ring: mean plane normal is undefined")
  return normal / length


def _displacements(coords, size):
  coords = np.asarray(coords, dtype=float)
  if coords.shape != (size, 3):
    raise ValueError(f"Expected {size} ring atoms, got {len(coords)}")
  local = recentre(coords, ring_centre(coords))
  return local @ mean_plane_normal(local)


def cremer_pople_pyranose(coords) -> Dict:
  """Calculate Cremer-Pople puckering parameters for a six-membered ring.
  Args:
    coords (np.ndarray): Ring coordinates in canonical order (heteroatom first).
  Returns:
    dict: Q, q2, q3, theta and phi (degrees) plus the out-of-plane displacements z.
  """
  z = _displacements(coords, 6)
  j = np.arange(6)
  Q = np.sqrt(np.sum(z**2))
  q3 = np.sqrt(1 / 6) * np.sum(z * (-1.0)**j)
  theta = np.arccos(np.clip(q3 / Q, -1.0, 1.0)) if Q > EPSILON else np.pi / 2
  q2 = Q * np.sin(theta)
  phi = 0.0
  if q2 > EPSILON:
    cos_part = np.sqrt(1 / 3) * np.sum(z * np.cos(4 * np.pi * j / 6))
    sin_part = -np.sqrt(1 / 3) * np.sum(z * np.sin(4 * np.pi * j / 6))
    phi = np.arccos(np.clip(cos_part / q2, -1.0, 1.0))
    # arccos only covers [0, pi]; the sine component tells which half we are in
    if not np.isclose(q2 * np.sin(phi), sin_part, atol=PHI_TOLERANCE):
      phi = 2 * np.pi - phi
  return {
    'Q': float(Q),
    'q2': float(q2),
    'q3': float(q3),
    'theta': float(np.degrees(theta)),
    'phi': float(np.degrees(phi) % 360),
    'z': z.tolist()
    }


def cremer_pople_furanose(coords) -> Dict:
  """Calculate Cremer-Pople puckering parameters for a five-membered ring.
  Only the m=2 component exists, so theta and q3 are reported as -1.
  Args:
    coords (np.ndarray): Ring coordinates in canonical order (heteroatom first).
  Returns:
    dict: Q, q2, pseudorotation phase phi (degrees), theta and q3 (both -1) plus the displacements z.
  """
  z = _displacements(coords, 5)
  j = np.arange(5)
  Q = np.sqrt(np.sum(z**2))
  cos_part = np.sqrt(2 / 5) * np.sum(z * np.cos(4 * np.pi * j / 5))
  sin_part = -np.sqrt(2 / 5) * np.sum(z * np.sin(4 * np.pi * j / 5))
  q2 = np.hypot(cos_part, sin_part)
  # quarter-turn offset puts phi on the pseudorotation wheel: 0 is 3T2, 90 is OE
  phi = (np.degrees(np.arctan2(sin_part, cos_part)) + 90.0) % 360 if q2 > EPSILON else 0.0
  return {
    'Q': float(Q),
    'q2': float(q2),
    'q3': -1.0,
    'theta': -1.0,
    'phi': float(phi),
    'z': z.tolist()
    }


def conformation_pyranose(phi, theta):
  """Maps (phi, theta) in degrees to a pyranose conformation code."""
  band = bisect_left(PYRANOSE_THETA_BOUNDS, theta)
  if band == 0:
    return 0
  if band == len(PYRANOSE_THETA_BOUNDS):
    return 1
  sector = bisect_left(PYRANOSE_PHI_BOUNDS, phi % 360) % len(PYRANOSE_PHI_BOUNDS)
  return 2 + 12 * (band - 1) + sector


def conformation_furanose(phi):
  """Maps the pseudorotation phase phi in degrees to a furanose conformation code."""
  sector = bisect_left(FURANOSE_PHI_BOUNDS, phi % 360) % len(FURANOSE_PHI_BOUNDS)
  return FURANOSE_OFFSET + sector


def conformation_name(code):
  """Name of a conformation code, e.g. 0 -> '4C1'; None stays None."""
  if code is None:
    return None
  return CONFORMATIONS[code]


def _height(atom, centre, normal):
  if atom is None:
    return None
  return float(np.dot(np.asarray(atom.coord, dtype=float) - centre, normal))


def _anomer(ring, anomeric, configurational, heights):
  if any(h is None for h in heights):
    return 'X'
  z_an_carbon, z_an_subst, z_cf_carbon, z_cf_subst = heights
  carbon = configurational[0]
  # ring closure turns the mnemonic around when the reference carbon is the last one or exocyclic
  reverse = carbon is ring[-1] or not is_part_of_ring(carbon, ring)
  same_side = ((z_an_subst > z_an_carbon and z_cf_subst > z_cf_carbon)
               or (z_an_subst < z_an_carbon and z_cf_subst < z_cf_carbon))
  if same_side:
    return 'beta' if reverse else 'alpha'
  return 'alpha' if reverse else 'beta'


def analyze_pucker(sugar, neighbors, structure=None):
  """Runs the Cremer-Pople analysis on a sugar ring and derives anomer and handedness.
  Sets anomer, handedness, conformation, pucker, stereo atoms and ring centre on `sugar`
  and appends [Q, phi, theta] to its cremer_pople_params.
  Args:
    sugar (Sugar): Classification record with a 5- or 6-membered ring.
    neighbors (NeighborIndex): Neighbour search over the structure.
    structure (Structure, optional): Used to place symmetry images.
  Returns:
    dict: Puckering parameters with the conformation code and name.
  """
  ring = sugar.ring
  size = len(ring)
  if size not in (5, 6):
    raise ValueError(f"Cannot analyse a {size}-membered ring")
  anomeric, configurational = locate_stereochemistry(ring, neighbors, structure, sugar.altloc)
  last_substituent = last_carbon_substituent(ring, neighbors, structure, sugar.altloc, match_occupancy=size == 6)
  coords = np.array([atom.coord for atom in ring], dtype=float)
  if size == 6:
    params = cremer_pople_pyranose(coords)
    params['conformation'] = conformation_pyranose(params['phi'], params['theta'])
  else:
    params = cremer_pople_furanose(coords)
    params['conformation'] = conformation_furanose(params['phi'])
  params['conformation_name'] = conformation_name(params['conformation'])
  centre = ring_centre(coords)
  normal = mean_plane_normal(recentre(coords, centre))
  heights = [_height(atom, centre, normal) for atom in (*anomeric, *configurational)]
  anomer = _anomer(ring, anomeric, configurational, heights)
  if last_substituent is None or is_part_of_ring(last_substituent, ring):
    handedness = 'N'
  else:
    difference = _height(ring[-1], centre, normal) - _height(last_substituent, centre, normal)
    handedness = 'D' if difference < 0 else 'L'
  logger.debug(f"{sugar.name}: Q={params['Q']:.3f} phi={params['phi']:.1f} theta={params['theta']:.1f} "
               f"{params['conformation_name']} z={heights} -> {anomer}/{handedness}")
  sugar.cremer_pople_params.append([params['Q'], params['phi'], params['theta']])
  sugar.pucker = params
  sugar.conformation = params['conformation']
  sugar.anomer = anomer
  sugar.handedness = handedness
  sugar.anomeric_carbon, sugar.anomeric_substituent = anomeric
  sugar.configurational_carbon, sugar.configurational_substituent = configurational
  sugar.last_substituent = last_substituent
  sugar.ring_centre = centre
  return params

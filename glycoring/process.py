import logging
from dataclasses import dataclass, field
from multiprocessing import Pool
from typing import Any, Dict, List, Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from tqdm import tqdm

from glycoring.bonds import default_altloc
from glycoring.database import SUGAR_DATABASE
from glycoring.pucker import analyze_pucker, conformation_name
from glycoring.ring import find_ring, ring_from_template
from glycoring.structure import NeighborIndex, Residue, Structure
from glycoring.validation import SanityFlags, validate

logger = logging.getLogger(__name__)

UNSUPPORTED = 'unsupported'
UNDETERMINED = 'X'
ROW_COLUMNS = ['chain', 'residue', 'monosaccharide', 'altloc', 'supported', 'denomination', 'anomer', 'handedness',
               'ring', 'Q', 'phi', 'theta', 'q2', 'q3', 'conformation', 'conformation_code', 'bond_rmsd', 'angle_rmsd',
               'ring_bonded', 'chirality_ok', 'anomer_ok', 'bonds_rmsd_ok', 'angles_rmsd_ok', 'sane']


@dataclass
class Sugar:
  """Classification record for one sugar residue."""
  residue: Residue
  name: str
  database_entry: Optional[Any] = None
  ring: List = field(default_factory=list)
  altloc: str = ''
  supported: bool = False
  denomination: str = UNSUPPORTED
  anomer: str = UNDETERMINED
  handedness: str = UNDETERMINED
  anomeric_carbon: Optional[Any] = None
  anomeric_substituent: Optional[Any] = None
  configurational_carbon: Optional[Any] = None
  configurational_substituent: Optional[Any] = None
  last_substituent: Optional[Any] = None
  ring_centre: Optional[np.ndarray] = None
  pucker: Optional[Dict] = None
  conformation: Optional[int] = None
  cremer_pople_params: List = field(default_factory=list)
  bonds: List[float] = field(default_factory=list)
  angles: List[float] = field(default_factory=list)
  torsions: List[float] = field(default_factory=list)
  bond_rmsd: Optional[float] = None
  angle_rmsd: Optional[float] = None
  flags: SanityFlags = field(default_factory=SanityFlags)
  sane: bool = False

  @property
  def conformation_name(self):
    return conformation_name(self.conformation)

  def to_dict(self) -> Dict:
    """Flattens the record into one table row."""
    pucker = self.pucker or {}

    def rounded(value, digits):
      return None if value is None else round(value, digits)

    return {
      'chain': self.residue.chain_id,
      'residue': self.residue.number,
      'monosaccharide': self.name,
      'altloc': self.altloc,
      'supported': self.supported,
      'denomination': self.denomination,
      'anomer': self.anomer,
      'handedness': self.handedness,
      'ring': ' '.join(atom.name for atom in self.ring),
      'Q': rounded(pucker.get('Q'), 3),
      'phi': rounded(pucker.get('phi'), 2),
      'theta': rounded(pucker.get('theta'), 2),
      'q2': rounded(pucker.get('q2'), 3),
      'q3': rounded(pucker.get('q3'), 3),
      'conformation': self.conformation_name,
      'conformation_code': self.conformation,
      'bond_rmsd': rounded(self.bond_rmsd, 3),
      'angle_rmsd': rounded(self.angle_rmsd, 2),
      'ring_bonded': self.flags.ring_bonded,
      'chirality_ok': self.flags.chirality,
      'anomer_ok': self.flags.anomer,
      'bonds_rmsd_ok': self.flags.bonds_rmsd,
      'angles_rmsd_ok': self.flags.angles_rmsd,
      'sane': self.sane
      }


def denomination(sugar):
  """Builds the descriptive name, e.g. 'beta-D-aldopyranose'."""
  carbonyl = 'aldo' if sugar.ring[1].name == 'C1' else 'keto'
  ring_type = 'furanose' if len(sugar.ring) == 5 else 'pyranose'
  return f"{sugar.anomer}-{sugar.handedness}-{carbonyl}{ring_type}"


def classify_sugar(structure: Structure, residue: Residue, neighbors=None, database=None, altloc=None) -> Sugar:
  """Classify one sugar residue: ring, pucker, anomer, handedness and sanity checks.
  Args:
    structure (Structure): Model the residue belongs to.
    residue (Residue): Residue to analyse.
    neighbors (NeighborIndex, optional): Shared neighbour search; built from `structure` when missing.
    database (Mapping, optional): Reference table; defaults to the bundled one.
    altloc (str, optional): Conformation to analyse; defaults to the first one present.
  Returns:
    Sugar: Classification record; unsupported rings come back flagged rather than raising.
  """
  database = SUGAR_DATABASE if database is None else database
  neighbors = NeighborIndex(structure) if neighbors is None else neighbors
  name = residue.name.strip()
  entry = database.get(name)
  sugar = Sugar(residue=residue, name=name, database_entry=entry)
  if entry is not None:
    logger.debug(f"{residue.label}: reference entry {entry['name_long']}")
    ring, used = ring_from_template(residue, entry['ring_atoms'], altloc)
  else:
    used = default_altloc(residue) if altloc is None else altloc
    ring = find_ring(residue, used)
  if not ring:
    logger.debug(f"{residue.label}: no supported ring")
    return sugar
  sugar.ring, sugar.altloc, sugar.supported = ring, used, True
  try:
    analyze_pucker(sugar, neighbors, structure)
    sugar.denomination = denomination(sugar)
    validate(sugar, structure)
  except ValueError as e:
    logger.warning(f"Skipping {residue.label}: {str(e)}")
    return Sugar(residue=residue, name=name, database_entry=entry)
  return sugar


def _classify_row(structure, residue, neighbors, database):
  return classify_sugar(structure, residue, neighbors, database).to_dict()


_worker_state = {}


def _init_worker(structure, database):
  _worker_state['structure'] = structure
  _worker_state['database'] = database
  _worker_state['neighbors'] = NeighborIndex(structure)


def _process_single_residue(index):
  structure = _worker_state['structure']
  return _classify_row(structure, structure.residues[index], _worker_state['neighbors'], _worker_state['database'])


def get_ring_conformations(structure: Structure, residue_names=None, processes=None, database=None) -> pd.DataFrame:
  """Analyze ring conformations for all sugar residues in a structure.
  Args:
    structure (Structure): Model to scan.
    residue_names (list, optional): Residue codes to analyse; defaults to every code in the reference table.
    processes (int, optional): Worker processes; runs in-process when None or 1.
    database (Mapping, optional): Reference table; defaults to the bundled one.
  Returns:
    pd.DataFrame: One row per residue, unsupported residues included.
  """
  database = SUGAR_DATABASE if database is None else database
  names = set(database) if residue_names is None else {n.strip() for n in residue_names}
  indices = [i for i, residue in enumerate(structure.residues) if residue.name.strip() in names]
  if not indices:
    return pd.DataFrame(columns=ROW_COLUMNS)
  if processes is None or processes <= 1:
    neighbors = NeighborIndex(structure)
    rows = [_classify_row(structure, structure.residues[i], neighbors, database)
            for i in tqdm(indices, desc="Classifying sugar rings")]
  else:
    # entries are read-only proxies, which do not pickle
    plain = {key: dict(entry) for key, entry in database.items()}
    with Pool(processes, initializer=_init_worker, initargs=(structure, plain)) as pool:
      rows = list(tqdm(pool.imap(_process_single_residue, indices), total=len(indices),
                       desc="Classifying sugar rings"))
  return pd.DataFrame(rows, columns=ROW_COLUMNS)


def plot_ring_conformations(df: pd.DataFrame, filepath=None):
  """Plots pyranose (phi, theta) and furanose (phi, Q) values from get_ring_conformations.
  Args:
    df (pd.DataFrame): Output of get_ring_conformations.
    filepath (str, optional): Where to save the figure.
  Returns:
    matplotlib.figure.Figure: The figure.
  """
  supported = df[df['supported'].astype(bool)]
  pyranoses = supported[supported['theta'] >= 0]
  furanoses = supported[supported['theta'] < 0]
  fig, (ax_pyr, ax_fur) = plt.subplots(1, 2, figsize=(12, 5))
  ax_pyr.scatter(pyranoses['phi'], pyranoses['theta'], c=pyranoses['sane'].map({True: 'tab:blue', False: 'tab:red'}))
  for _, row in pyranoses.iterrows():
    ax_pyr.annotate(f"{row['monosaccharide']}{row['residue']}", (row['phi'], row['theta']), fontsize=7)
  ax_pyr.set_xlim(0, 360)
  ax_pyr.set_ylim(180, 0)
  ax_pyr.set_xlabel('phi (degrees)')
  ax_pyr.set_ylabel('theta (degrees)')
  ax_pyr.set_title('Pyranoses')
  ax_fur.scatter(furanoses['phi'], furanoses['Q'], c=furanoses['sane'].map({True: 'tab:blue', False: 'tab:red'}))
  ax_fur.set_xlim(0, 360)
  ax_fur.set_xlabel('phi (degrees)')
  ax_fur.set_ylabel('Q (Angstrom)')
  ax_fur.set_title('Furanoses')
  plt.tight_layout()
  if filepath:
    plt.savefig(filepath, dpi=300, bbox_inches='tight')
  plt.show()
  return fig

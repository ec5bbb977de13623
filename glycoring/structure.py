import logging
from dataclasses import dataclass, field
from io import StringIO
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.spatial import cKDTree

logger = logging.getLogger(__name__)

PDB_COLUMNS = ['record_name', 'atom_number', 'atom_name', 'altloc', 'residue_name', 'chain_id', 'residue_number',
               'insertion_code', 'x', 'y', 'z', 'occupancy', 'temperature_factor', 'element']
PDB_COLSPECS = [(0, 6), (6, 11), (12, 16), (16, 17), (17, 20), (21, 22), (22, 26),
                (26, 27), (30, 38), (38, 46), (46, 54), (54, 60), (60, 66), (76, 78)]
TEXT_COLUMNS = ['record_name', 'atom_name', 'altloc', 'residue_name', 'chain_id', 'insertion_code', 'element']


@dataclass(frozen=True, eq=False)
class Atom:
  """A single atom as read from the model. Compared by identity."""
  name: str
  element: str
  coord: np.ndarray
  altloc: str = ''
  occupancy: float = 1.0
  b_factor: float = 0.0
  serial: int = 0
  residue_name: str = ''
  chain_id: str = ''
  residue_number: int = 0

  def __post_init__(self):
    object.__setattr__(self, 'coord', np.asarray(self.coord, dtype=float))

  @property
  def label(self):
    altloc = f":{self.altloc}" if self.altloc else ''
    return f"{self.residue_number}_{self.residue_name}_{self.name}{altloc}"


@dataclass(frozen=True, eq=False)
class Residue:
  name: str
  atoms: Tuple[Atom, ...]
  chain_id: str = ''
  number: int = 0

  def lookup(self, name: str, altloc: Optional[str] = None) -> List[Atom]:
    """Returns the atoms called `name`, optionally restricted to one altloc tag."""
    return [a for a in self.atoms if a.name == name and (altloc is None or a.altloc == altloc)]

  @property
  def altlocs(self) -> List[str]:
    return sorted({a.altloc for a in self.atoms if a.altloc})

  @property
  def label(self):
    return f"{self.chain_id}/{self.number}_{self.name}"


def lattice_copy_near(frac, near):
  """Moves fractional coordinate(s) by whole lattice vectors so they sit closest to `near`."""
  frac = np.asarray(frac, dtype=float)
  return frac + np.round(np.asarray(near, dtype=float) - frac)


@dataclass
class UnitCell:
  """Crystal cell with PDB orthogonalisation convention (a along x, b in the xy plane)."""
  a: float
  b: float
  c: float
  alpha: float = 90.0
  beta: float = 90.0
  gamma: float = 90.0
  orthogonalization: np.ndarray = field(init=False, repr=False)
  fractionalization: np.ndarray = field(init=False, repr=False)

  def __post_init__(self):
    ca, cb, cg = np.cos(np.radians([self.alpha, self.beta, self.gamma]))
    sg = np.sin(np.radians(self.gamma))
    volume = self.a * self.b * self.c * np.sqrt(1 - ca**2 - cb**2 - cg**2 + 2 * ca * cb * cg)
    self.orthogonalization = np.array([
        [self.a, self.b * cg, self.c * cb],
        [0.0, self.b * sg, self.c * (ca - cb * cg) / sg],
        [0.0, 0.0, volume / (self.a * self.b * sg)]
        ])
    self.fractionalization = np.linalg.inv(self.orthogonalization)

  def fractionalize(self, coords):
    return np.asarray(coords, dtype=float) @ self.fractionalization.T

  def orthogonalize(self, frac):
    return np.asarray(frac, dtype=float) @ self.orthogonalization.T


@dataclass(frozen=True, eq=False)
class SymOp:
  """Space-group operator acting on fractional coordinates."""
  rotation: np.ndarray
  translation: np.ndarray

  def __post_init__(self):
    object.__setattr__(self, 'rotation', np.asarray(self.rotation, dtype=float).reshape(3, 3))
    object.__setattr__(self, 'translation', np.asarray(self.translation, dtype=float).reshape(3))

  @classmethod
  def identity(cls):
    return cls(np.eye(3), np.zeros(3))

  @classmethod
  def from_orthogonal(cls, rotation, translation, cell):
    """Converts an operator given in orthogonal space (PDB REMARK 290 SMTRY) to fractional space."""
    rotation = cell.fractionalization @ np.asarray(rotation, dtype=float) @ cell.orthogonalization
    translation = cell.fractionalization @ np.asarray(translation, dtype=float)
    return cls(rotation, translation)

  def apply(self, frac):
    return np.asarray(frac, dtype=float) @ self.rotation.T + self.translation


@dataclass
class Structure:
  """Residues of a model plus its crystal frame, if any."""
  residues: List[Residue]
  cell: Optional[UnitCell] = None
  symops: Tuple[SymOp, ...] = field(default_factory=lambda: (SymOp.identity(),))
  spacegroup: str = 'P 1'

  @property
  def atoms(self) -> List[Atom]:
    return [atom for residue in self.residues for atom in residue.atoms]

  def image_near(self, coord, symmetry, near):
    """Places a copy of `coord` generated by operator `symmetry` at the lattice translate closest to `near`.
    Args:
        coord (np.ndarray): Orthogonal coordinate of the original atom.
        symmetry (int): Index into `symops`.
        near (np.ndarray): Orthogonal reference coordinate.
    Returns:
        np.ndarray: Orthogonal coordinate of the image.
    """
    if self.cell is None:
      return np.asarray(coord, dtype=float)
    frac = self.symops[symmetry].apply(self.cell.fractionalize(coord))
    frac = lattice_copy_near(frac, self.cell.fractionalize(near))
    return self.cell.orthogonalize(frac)


@dataclass(frozen=True, eq=False)
class NeighborAtom:
  """A hit from a neighbour search: the atom, the operator that generated it and the image coordinate."""
  atom: Atom
  symmetry: int
  coord: np.ndarray
  shifted: bool = False

  @property
  def is_image(self):
    return self.symmetry != 0 or self.shifted

  @property
  def name(self):
    return self.atom.name

  @property
  def element(self):
    return self.atom.element

  @property
  def altloc(self):
    return self.atom.altloc

  @property
  def occupancy(self):
    return self.atom.occupancy


class NeighborIndex:
  """Radius search over every atom of a structure and, when a cell is known, its symmetry mates.
  Built once per structure and only read afterwards.
  """

  def __init__(self, structure: Structure):
    self.structure = structure
    self.atoms = structure.atoms
    self._coords = np.array([a.coord for a in self.atoms], dtype=float).reshape(-1, 3)
    self._tree = cKDTree(self._coords) if len(self.atoms) else None
    self._images = []
    if structure.cell is not None and len(self.atoms):
      frac = structure.cell.fractionalize(self._coords)
      self._images = [op.apply(frac) for op in structure.symops]

  def atoms_near(self, coord, radius) -> List[NeighborAtom]:
    """Finds all atoms (and symmetry images) closer than `radius` to `coord`.
    Args:
        coord (np.ndarray): Query point in orthogonal coordinates.
        radius (float): Search radius in Angstrom.
    Returns:
        list: NeighborAtom hits sorted by distance.
    """
    coord = np.asarray(coord, dtype=float)
    hits = []
    if self._tree is not None:
      for i in self._tree.query_ball_point(coord, radius):
        hits.append((np.linalg.norm(self._coords[i] - coord), i, NeighborAtom(self.atoms[i], 0, self._coords[i])))
    if self._images:
      near = self.structure.cell.fractionalize(coord)
      for k, frac in enumerate(self._images):
        shift = np.round(near - frac)
        orth = self.structure.cell.orthogonalize(frac + shift)
        distances = np.linalg.norm(orth - coord, axis=1)
        moved = np.any(shift != 0, axis=1)
        for i in np.flatnonzero(distances < radius):
          if k == 0 and not moved[i]:
            continue  # already found by the tree
          hits.append((distances[i], i, NeighborAtom(self.atoms[i], k, orth[i], shifted=bool(moved[i]))))
    hits.sort(key=lambda hit: (hit[0], hit[1]))
    return [hit[2] for hit in hits]


def _guess_element(atom_name):
  letters = ''.join(ch for ch in atom_name if ch.isalpha())
  return letters[:1].upper()


def extract_3D_coordinates(pdb_file):
  """Extracts ATOM/HETATM records from a PDB file and returns them as a DataFrame.
  Args:
      pdb_file (str): Path to the PDB file.
  Returns:
      pd.DataFrame: One row per atom, including the alternate conformation tag.
  """
  with open(pdb_file, 'r') as pdb_f:
    lines = pdb_f.readlines()
  relevant_lines = [line for line in lines if line.startswith(('ATOM', 'HETATM'))]
  if not relevant_lines:
    return pd.DataFrame(columns=PDB_COLUMNS)
  out = pd.read_fwf(StringIO(''.join(relevant_lines)), names=PDB_COLUMNS, colspecs=PDB_COLSPECS,
                    dtype={col: str for col in TEXT_COLUMNS}, keep_default_na=False, na_values=[''])
  out[TEXT_COLUMNS] = out[TEXT_COLUMNS].fillna('')
  out['occupancy'] = out['occupancy'].fillna(1.0)
  out['temperature_factor'] = out['temperature_factor'].fillna(0.0)
  missing = out['element'] == ''
  out.loc[missing, 'element'] = out.loc[missing, 'atom_name'].map(_guess_element)
  out['element'] = out['element'].str.upper()
  return out


def read_crystal_frame(pdb_file):
  """Reads CRYST1 and REMARK 290 SMTRY records.
  Args:
      pdb_file (str): Path to the PDB file.
  Returns:
      tuple: (UnitCell or None, tuple of SymOp, space group label).
  """
  cell, spacegroup = None, 'P 1'
  smtry = {}
  with open(pdb_file, 'r') as pdb_f:
    for line in pdb_f:
      if line.startswith('CRYST1'):
        params = [float(line[i:j]) for i, j in [(6, 15), (15, 24), (24, 33), (33, 40), (40, 47), (47, 54)]]
        spacegroup = line[55:66].strip() or spacegroup
        # 1 1 1 cells are placeholders written for NMR and EM models
        if params[:3] != [1.0, 1.0, 1.0]:
          cell = UnitCell(*params)
      elif line.startswith('REMARK 290') and 'SMTRY' in line:
        fields = line.split()
        row, number = int(fields[2][-1]) - 1, int(fields[3])
        smtry.setdefault(number, [None] * 3)[row] = [float(x) for x in fields[4:8]]
  if cell is None:
    return None, (SymOp.identity(),), spacegroup
  symops = []
  for number in sorted(smtry):
    rows = smtry[number]
    if any(r is None for r in rows):
      logger.warning(f"Incomplete SMTRY operator {number} in {pdb_file}: ignored")
      continue
    matrix = np.array(rows)
    symops.append(SymOp.from_orthogonal(matrix[:, :3], matrix[:, 3], cell))
  if not symops or not np.allclose(symops[0].rotation, np.eye(3)) or not np.allclose(symops[0].translation, 0):
    symops.insert(0, SymOp.identity())
  return cell, tuple(symops), spacegroup


def structure_from_dataframe(df, cell=None, symops=None, spacegroup='P 1'):
  """Groups a coordinate table (as returned by extract_3D_coordinates) into residues.
  Args:
      df (pd.DataFrame): Coordinate table.
      cell (UnitCell, optional): Crystal cell.
      symops (tuple, optional): Space-group operators, identity first.
      spacegroup (str): Space group label.
  Returns:
      Structure: The grouped model.
  """
  residues = []
  keys = ['chain_id', 'residue_number', 'insertion_code', 'residue_name']
  keys = [k for k in keys if k in df.columns]
  for key, group in df.groupby(keys, sort=False):
    info = dict(zip(keys, key))
    atoms = tuple(Atom(name=row.atom_name, element=row.element, coord=[row.x, row.y, row.z],
                       altloc=getattr(row, 'altloc', ''), occupancy=float(getattr(row, 'occupancy', 1.0)),
                       b_factor=float(getattr(row, 'temperature_factor', 0.0)), serial=int(getattr(row, 'atom_number', 0)),
                       residue_name=info['residue_name'], chain_id=info.get('chain_id', ''),
                       residue_number=int(info['residue_number']))
                  for row in group.itertuples(index=False))
    residues.append(Residue(info['residue_name'], atoms, chain_id=info.get('chain_id', ''),
                            number=int(info['residue_number'])))
  return Structure(residues, cell=cell, symops=symops if symops else (SymOp.identity(),), spacegroup=spacegroup)


def read_pdb(pdb_file):
  """Reads a PDB file into a Structure with its crystal frame.
  Args:
      pdb_file (str): Path to the PDB file.
  Returns:
      Structure: Model with residues, cell and symmetry operators.
  """
  cell, symops, spacegroup = read_crystal_frame(pdb_file)
  structure = structure_from_dataframe(extract_3D_coordinates(pdb_file), cell=cell, symops=symops, spacegroup=spacegroup)
  logger.debug(f"Read {len(structure.residues)} residues from {pdb_file} ({spacegroup}, {len(symops)} operators)")
  return structure

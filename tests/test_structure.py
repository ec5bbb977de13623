import numpy as np
import pytest

from glycoring.bonds import is_bonded
from glycoring.structure import (
    NeighborIndex,
    Residue,
    Structure,
    SymOp,
    UnitCell,
    extract_3D_coordinates,
    lattice_copy_near,
    read_crystal_frame,
    read_pdb,
)

from conftest import make_atom

P212121_HEADER = [
    "CRYST1   52.000   58.000   62.000  90.00  90.00  90.00 P 21 21 21    8",
    "REMARK 290   SMTRY1   1  1.000000  0.000000  0.000000        0.00000",
    "REMARK 290   SMTRY2   1  0.000000  1.000000  0.000000        0.00000",
    "REMARK 290   SMTRY3   1  0.000000  0.000000  1.000000        0.00000",
    "REMARK 290   SMTRY1   2 -1.000000  0.000000  0.000000       26.00000",
    "REMARK 290   SMTRY2   2  0.000000 -1.000000  0.000000        0.00000",
    "REMARK 290   SMTRY3   2  0.000000  0.000000  1.000000       31.00000",
    "REMARK 290   SMTRY1   3 -1.000000  0.000000  0.000000        0.00000",
    "REMARK 290   SMTRY2   3  0.000000  1.000000  0.000000       29.00000",
    "REMARK 290   SMTRY3   3  0.000000  0.000000 -1.000000       31.00000",
    "REMARK 290   SMTRY1   4  1.000000  0.000000  0.000000       26.00000",
    "REMARK 290   SMTRY2   4  0.000000 -1.000000  0.000000       29.00000",
    "REMARK 290   SMTRY3   4  0.000000  0.000000 -1.000000        0.00000",
]


def test_unit_cell_round_trip():
    cell = UnitCell(40.0, 50.0, 60.0, 80.0, 95.0, 105.0)
    coords = np.array([[1.0, 2.0, 3.0], [-7.5, 12.25, 30.0]])
    assert np.allclose(cell.orthogonalize(cell.fractionalize(coords)), coords)
    assert np.allclose(cell.orthogonalize([1.0, 0.0, 0.0]), [40.0, 0.0, 0.0])


def test_lattice_copy_near():
    assert np.allclose(lattice_copy_near([0.9, 0.1, 0.5], [0.05, 0.95, 0.5]), [-0.1, 1.1, 0.5])


def test_read_crystal_frame(write_pdb, make_glucose):
    path = write_pdb([make_glucose()], header=P212121_HEADER)
    cell, symops, spacegroup = read_crystal_frame(path)
    assert cell.a == pytest.approx(52.0)
    assert spacegroup == "P 21 21 21"
    assert len(symops) == 4
    assert np.allclose(symops[0].rotation, np.eye(3))
    assert np.allclose(symops[1].rotation, np.diag([-1.0, -1.0, 1.0]))
    assert np.allclose(symops[1].translation, [0.5, 0.0, 0.5])


def test_placeholder_cell_is_ignored(write_pdb, make_glucose):
    header = ["CRYST1    1.000    1.000    1.000  90.00  90.00  90.00 P 1           1"]
    cell, symops, _ = read_crystal_frame(write_pdb([make_glucose()], header=header))
    assert cell is None
    assert len(symops) == 1


def test_extract_3D_coordinates(write_pdb, split_glucose):
    _, residue = split_glucose
    df = extract_3D_coordinates(write_pdb([residue]))
    assert len(df) == len(residue.atoms)
    assert set(df["altloc"]) == {"", "A", "B"}
    assert df.loc[df["atom_name"] == "O5", "element"].iloc[0] == "O"
    assert df["residue_name"].unique().tolist() == ["BGC"]
    o5 = [a for a in residue.atoms if a.name == "O5"][0]
    row = df[df["atom_name"] == "O5"].iloc[0]
    assert np.allclose([row["x"], row["y"], row["z"]], o5.coord, atol=1e-3)


def test_read_pdb_groups_residues(write_pdb, make_glucose):
    first = make_glucose(number=1)
    second = make_glucose(name="GLC", anomer="alpha", number=2)
    structure = read_pdb(write_pdb([first, second], header=P212121_HEADER))
    assert [r.name for r in structure.residues] == ["BGC", "GLC"]
    assert [r.number for r in structure.residues] == [1, 2]
    assert len(structure.residues[0].atoms) == 12
    assert structure.cell is not None
    assert len(structure.symops) == 4


def test_neighbor_search_sorted_by_distance(glucose):
    structure, residue = glucose
    c1 = residue.lookup("C1")[0]
    hits = NeighborIndex(structure).atoms_near(c1.coord, 1.8)
    distances = [np.linalg.norm(hit.coord - c1.coord) for hit in hits]
    assert distances == sorted(distances)
    assert {hit.name for hit in hits} == {"C1", "O1", "O5", "C2"}
    assert all(hit.symmetry == 0 and not hit.is_image for hit in hits)


def test_neighbor_search_finds_lattice_image():
    carbon = make_atom("C1", [0.2, 5.0, 5.0], residue_name="LIG")
    oxygen = make_atom("O1", [8.8, 5.0, 5.0], residue_name="LIG")
    structure = Structure([Residue("LIG", (carbon, oxygen))], cell=UnitCell(10.0, 10.0, 10.0))
    hits = [hit for hit in NeighborIndex(structure).atoms_near(carbon.coord, 1.8) if hit.atom is oxygen]
    assert len(hits) == 1
    assert hits[0].is_image
    assert np.allclose(hits[0].coord, [-1.2, 5.0, 5.0])
    assert is_bonded(carbon, hits[0], structure)
    assert not is_bonded(carbon, oxygen)


def test_neighbor_search_finds_symmetry_mate():
    # twofold axis along z through the origin in P 2
    cell = UnitCell(20.0, 20.0, 20.0)
    twofold = SymOp(np.diag([-1.0, -1.0, 1.0]), np.zeros(3))
    carbon = make_atom("C1", [0.6, 0.0, 5.0], residue_name="LIG")
    oxygen = make_atom("O1", [0.6, 0.0, 5.8], residue_name="LIG")
    structure = Structure([Residue("LIG", (carbon, oxygen))], cell=cell, symops=(SymOp.identity(), twofold))
    hits = [hit for hit in NeighborIndex(structure).atoms_near(carbon.coord, 1.8) if hit.symmetry == 1]
    mate = [hit for hit in hits if hit.atom is oxygen][0]
    assert np.allclose(mate.coord, [-0.6, 0.0, 5.8])
    assert is_bonded(carbon, mate, structure)
    assert np.allclose(structure.image_near(oxygen.coord, 1, carbon.coord), [-0.6, 0.0, 5.8])


def test_residue_altlocs(split_glucose):
    _, residue = split_glucose
    assert residue.altlocs == ["A", "B"]
    assert [a.altloc for a in residue.lookup("C1")] == ["A", "B"]
    assert residue.lookup("C1", "B")[0].occupancy == 0.5

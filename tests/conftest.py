"""Shared test fixtures: synthetic sugar residues with ideal geometry."""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from glycoring.structure import Atom, Residue, Structure

PYRANOSE_RING = ["O5", "C1", "C2", "C3", "C4", "C5"]
GLUCOSE_ORDER = ["C1", "C2", "C3", "C4", "C5", "C6", "O1", "O2", "O3", "O4", "O5", "O6"]
GLUCOSE_SUBSTITUENTS = {"C1": "O1", "C2": "O2", "C3": "O3", "C4": "O4", "C5": "C6"}


def unit(v):
    return v / np.linalg.norm(v)


def chair_coordinates(length=1.45):
    """Ideal chair: every ring bond is `length` and every ring angle tetrahedral.

    Atoms go counter-clockwise in the xy plane, so the mean plane normal is -z.
    """
    radius = np.sqrt(8 / 9) * length
    height = length / 6
    coords = {}
    for j, name in enumerate(PYRANOSE_RING):
        angle = np.radians(60 * j)
        coords[name] = np.array(
            [radius * np.cos(angle), radius * np.sin(angle), -height if j % 2 == 0 else height]
        )
    return coords


def puckered_ring(size, q2, phi, q3=0.0, radius=1.25):
    """Regular polygon displaced along z to give the requested Cremer-Pople parameters.

    `phi` is the phase of the displacement pattern; five-membered rings report it a quarter turn on.
    """
    j = np.arange(size)
    phi = np.radians(phi)
    z = np.sqrt(2 / size) * q2 * np.cos(phi + 4 * np.pi * j / size)
    if size == 6:
        z += np.sqrt(1 / 6) * q3 * (-1.0) ** j
    angles = 2 * np.pi * j / size
    # the mean plane normal of a counter-clockwise ring is -z
    return np.stack([radius * np.cos(angles), radius * np.sin(angles), -z], axis=1)


def tetrahedral_directions(coords, centre, first, second):
    """Returns (axial, equatorial) unit vectors for the two free valences of `centre`."""
    u1 = unit(coords[first] - coords[centre])
    u2 = unit(coords[second] - coords[centre])
    bisector = -unit(u1 + u2)
    perpendicular = unit(np.cross(u1, u2))
    half = np.radians(54.75)
    d1 = bisector * np.cos(half) + perpendicular * np.sin(half)
    d2 = bisector * np.cos(half) - perpendicular * np.sin(half)
    return (d1, d2) if abs(d1[2]) > abs(d2[2]) else (d2, d1)


def glucose_coordinates(length=1.45, anomer="beta"):
    """All-equatorial 4C1 glucopyranose; 'alpha' mirrors the C1-O1 bond through the ring plane."""
    coords = chair_coordinates(length)
    for k, carbon in enumerate(PYRANOSE_RING[1:], start=1):
        _, equatorial = tetrahedral_directions(
            coords, carbon, PYRANOSE_RING[k - 1], PYRANOSE_RING[(k + 1) % 6]
        )
        if carbon == "C1" and anomer == "alpha":
            equatorial = equatorial * np.array([1.0, 1.0, -1.0])
        bond = 1.52 if carbon == "C5" else 1.43
        coords[GLUCOSE_SUBSTITUENTS[carbon]] = coords[carbon] + bond * equatorial
    coords["O6"] = coords["C6"] + 1.43 * unit(coords["C6"] - coords["C5"])
    return coords


def make_atom(name, coord, residue_name="BGC", number=1, chain="A", altloc="", occupancy=1.0, serial=0):
    return Atom(
        name=name,
        element=name[0],
        coord=coord,
        altloc=altloc,
        occupancy=occupancy,
        serial=serial,
        residue_name=residue_name,
        chain_id=chain,
        residue_number=number,
    )


def make_residue(coords, name="BGC", number=1, chain="A", order=None, extra=()):
    order = order or [n for n in GLUCOSE_ORDER if n in coords] + [n for n in coords if n not in GLUCOSE_ORDER]
    atoms = [
        make_atom(atom_name, coords[atom_name], name, number, chain, serial=i + 1)
        for i, atom_name in enumerate(order)
    ]
    atoms += list(extra)
    return Residue(name, tuple(atoms), chain_id=chain, number=number)


def chain_extended_coordinates():
    """Glucose-like ring whose C6 is itself a stereocentre (C6 carries O6 and C7, C7 carries O7)."""
    coords = glucose_coordinates()
    del coords["O6"]
    w = unit(coords["C6"] - coords["C5"])
    p = unit(np.cross(w, [0.0, 0.0, 1.0]))
    coords["O6"] = coords["C6"] + 1.43 * (w / 3 + p * np.sqrt(8) / 3)
    coords["C7"] = coords["C6"] + 1.52 * (w / 3 - p * np.sqrt(8) / 3)
    coords["O7"] = coords["C7"] + 1.43 * unit(coords["C7"] - coords["C6"])
    return coords


def furanose_coordinates(q2=0.35, phi=90.0):
    """Ribofuranose-like ring O4 C1 C2 C3 C4 with O1, O2, O3 and C5-O5 substituents."""
    names = ["O4", "C1", "C2", "C3", "C4"]
    ring = puckered_ring(5, q2, phi, radius=1.22)
    coords = dict(zip(names, ring))
    substituents = {"C1": ("O1", 1.43), "C2": ("O2", 1.43), "C3": ("O3", 1.43), "C4": ("C5", 1.52)}
    for k, carbon in enumerate(names[1:], start=1):
        _, equatorial = tetrahedral_directions(coords, carbon, names[k - 1], names[(k + 1) % 5])
        name, bond = substituents[carbon]
        coords[name] = coords[carbon] + bond * equatorial
    coords["O5"] = coords["C5"] + 1.43 * unit(coords["C5"] - coords["C4"])
    return coords


def pdb_line(serial, atom, x_shift=0.0):
    name = atom.name if len(atom.name) == 4 else f" {atom.name:<3}"
    x, y, z = atom.coord + np.array([x_shift, 0.0, 0.0])
    return (
        f"{'HETATM':<6}{serial:>5} {name:<4}{atom.altloc or ' ':1}{atom.residue_name:>3} {atom.chain_id or ' ':1}"
        f"{atom.residue_number:>4}    {x:8.3f}{y:8.3f}{z:8.3f}{atom.occupancy:6.2f}{20.0:6.2f}"
        f"          {atom.element:>2}\n"
    )


@pytest.fixture
def glucose():
    residue = make_residue(glucose_coordinates())
    return Structure([residue]), residue


@pytest.fixture
def alpha_glucose():
    residue = make_residue(glucose_coordinates(anomer="alpha"))
    return Structure([residue]), residue


@pytest.fixture
def make_glucose():
    """Builder for glucose residues with a chosen ring bond length, anomer, name and numbering."""

    def _build(length=1.45, anomer="beta", name="BGC", number=1, chain="A", drop=()):
        coords = glucose_coordinates(length, anomer)
        for atom_name in drop:
            del coords[atom_name]
        return make_residue(coords, name=name, number=number, chain=chain)

    return _build


@pytest.fixture
def split_glucose():
    """Glucose with C1 and O1 in two conformations: A equatorial (beta), B mirrored (alpha)."""
    beta = glucose_coordinates()
    alpha = glucose_coordinates(anomer="alpha")
    c1_b = beta["C1"] + np.array([0.0, 0.0, 0.02])
    o1_b = c1_b + (alpha["O1"] - alpha["C1"])
    atoms = []
    for i, atom_name in enumerate(GLUCOSE_ORDER):
        if atom_name in ("C1", "O1"):
            atoms.append(make_atom(atom_name, beta[atom_name], altloc="A", occupancy=0.5, serial=i + 1))
            atoms.append(
                make_atom(atom_name, c1_b if atom_name == "C1" else o1_b, altloc="B", occupancy=0.5, serial=i + 101)
            )
        else:
            atoms.append(make_atom(atom_name, beta[atom_name], serial=i + 1))
    residue = Residue("BGC", tuple(atoms), chain_id="A", number=1)
    return Structure([residue]), residue


@pytest.fixture
def write_pdb(tmp_path):
    """Writes residues to a PDB file, optionally with CRYST1 and REMARK 290 records."""

    def _write(residues, header=(), filename="model.pdb"):
        path = tmp_path / filename
        lines = list(header)
        serial = 1
        for residue in residues:
            for atom in residue.atoms:
                lines.append(pdb_line(serial, atom))
                serial += 1
        lines.append("END\n")
        path.write_text("".join(line if line.endswith("\n") else line + "\n" for line in lines))
        return path

    return _write

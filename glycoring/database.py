import json
import logging
from pathlib import Path
from types import MappingProxyType

logger = logging.getLogger(__name__)

this_dir = Path(__file__).parent
json_path = this_dir / "sugar_database.json"

HANDEDNESS_CODES = {'D', 'L'}
ANOMER_CODES = {'A', 'B'}


def _freeze_entry(entry):
  missing = {'name_short', 'name_long', 'handedness', 'anomer', 'ring_atoms'} - set(entry)
  if missing:
    raise ValueError(f"Reference entry {entry.get('name_short', '?')} lacks {sorted(missing)}")
  ring_atoms = entry['ring_atoms']
  ring_atoms = tuple(ring_atoms.split() if isinstance(ring_atoms, str) else ring_atoms)
  if len(ring_atoms) not in (5, 6):
    raise ValueError(f"Reference entry {entry['name_short']} has a {len(ring_atoms)}-membered ring")
  if entry['handedness'] not in HANDEDNESS_CODES or entry['anomer'] not in ANOMER_CODES:
    raise ValueError(f"Reference entry {entry['name_short']} has invalid handedness/anomer codes")
  return MappingProxyType({**entry, 'name_short': entry['name_short'].strip(), 'ring_atoms': ring_atoms})


def load_sugar_database(path=None):
  """Loads the reference sugar table.
  Args:
    path (str or Path, optional): JSON file with a list of entries; defaults to the bundled table.
  Returns:
    MappingProxyType: Read-only mapping from three-letter code to entry.
  """
  with open(json_path if path is None else path) as f:
    entries = json.load(f)
  table = {}
  for entry in entries:
    frozen = _freeze_entry(entry)
    table[frozen['name_short']] = frozen
  logger.debug(f"Loaded {len(table)} reference sugars")
  return MappingProxyType(table)


def lookup(name, database=None):
  """Exact match on the trimmed residue code; None when the sugar is not in the table."""
  database = SUGAR_DATABASE if database is None else database
  return database.get(name.strip())


SUGAR_DATABASE = load_sugar_database()

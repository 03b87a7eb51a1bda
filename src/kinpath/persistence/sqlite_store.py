"""SQLite persistence of kinetic path runs.

A project file (``.kpproj``) holds the chemical system of a project, its
kinetically controlled reactions and any number of runs. Each run records the
partition and options it was integrated with, the chemical states it started
and ended in, and the output profile sampled along the path.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping, Sequence

from kinpath.models import Species
from kinpath.system import ChemicalState

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS project (
  id INTEGER PRIMARY KEY,
  name TEXT NOT NULL,
  created_utc TEXT,
  notes TEXT
);
CREATE TABLE IF NOT EXISTS species (
  id INTEGER PRIMARY KEY,
  project_id INTEGER REFERENCES project(id),
  name TEXT,
  elements JSON,
  phase TEXT,
  regime TEXT CHECK (regime IN ('equilibrium', 'kinetic')),
  UNIQUE(project_id, name)
);
CREATE TABLE IF NOT EXISTS reaction (
  id INTEGER PRIMARY KEY,
  project_id INTEGER REFERENCES project(id),
  name TEXT,
  stoich JSON,
  kinetics JSON,
  UNIQUE(project_id, name)
);
CREATE TABLE IF NOT EXISTS run (
  id INTEGER PRIMARY KEY,
  project_id INTEGER REFERENCES project(id),
  partition TEXT,
  options JSON,
  t_start REAL,
  t_final REAL,
  started TEXT,
  duration_ms INTEGER
);
CREATE TABLE IF NOT EXISTS state (
  run_id INTEGER REFERENCES run(id),
  label TEXT,
  temperature REAL,
  pressure REAL,
  amounts JSON,
  PRIMARY KEY (run_id, label)
);
CREATE TABLE IF NOT EXISTS profile (
  run_id INTEGER REFERENCES run(id),
  sample INTEGER,
  quantity TEXT,
  value REAL,
  PRIMARY KEY (run_id, sample, quantity)
);
"""


def connect(project_file: str | Path) -> sqlite3.Connection:
    """Open (and create) a .kpproj SQLite project."""
    path = Path(project_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(path)
    connection.execute("PRAGMA foreign_keys = ON;")
    return connection


def ensure_schema(connection: sqlite3.Connection) -> None:
    connection.executescript(SCHEMA_SQL)
    connection.commit()


def create_project(
    connection: sqlite3.Connection,
    name: str,
    notes: str | None = None,
) -> int:
    """Create a project entry and return its ID."""
    cursor = connection.execute(
        "INSERT INTO project (name, created_utc, notes) VALUES (?, ?, ?)",
        (name, _utc_now(), notes),
    )
    connection.commit()
    return int(cursor.lastrowid)


def save_species(
    connection: sqlite3.Connection,
    project_id: int,
    species: Sequence[Species],
    kinetic: Sequence[str] = (),
) -> None:
    """Persist the species of a chemical system, tagged equilibrium or kinetic."""
    kinetic = set(kinetic)
    connection.executemany(
        "INSERT INTO species (project_id, name, elements, phase, regime) VALUES (?, ?, ?, ?, ?)",
        [
            (
                project_id,
                s.name,
                _json_dumps(dict(s.elements)),
                s.phase,
                "kinetic" if s.name in kinetic else "equilibrium",
            )
            for s in species
        ],
    )
    connection.commit()


def save_reaction(
    connection: sqlite3.Connection,
    project_id: int,
    name: str,
    stoichiometry: Mapping[str, float],
    kinetics: Mapping[str, object],
) -> int:
    """Persist a reaction with its rate law description and return its ID."""
    cursor = connection.execute(
        "INSERT INTO reaction (project_id, name, stoich, kinetics) VALUES (?, ?, ?, ?)",
        (project_id, name, _json_dumps(dict(stoichiometry)), _json_dumps(kinetics)),
    )
    connection.commit()
    return int(cursor.lastrowid)


def save_run(
    connection: sqlite3.Connection,
    project_id: int,
    partition: str,
    options: Mapping[str, object],
    t_start: float,
    t_final: float,
    duration_ms: int | None = None,
) -> int:
    """Persist a run record and return its ID."""
    cursor = connection.execute(
        "INSERT INTO run (project_id, partition, options, t_start, t_final, started, duration_ms)"
        " VALUES (?, ?, ?, ?, ?, ?, ?)",
        (
            project_id,
            partition,
            _json_dumps(options),
            float(t_start),
            float(t_final),
            _utc_now(),
            duration_ms,
        ),
    )
    connection.commit()
    return int(cursor.lastrowid)


def save_state(
    connection: sqlite3.Connection, run_id: int, label: str, state: ChemicalState
) -> None:
    """Save the species amounts of ``state`` under ``label`` (e.g. initial, final)."""
    amounts = dict(zip(state.system.species_names, state.amounts.tolist()))
    connection.execute(
        "INSERT INTO state (run_id, label, temperature, pressure, amounts) VALUES (?, ?, ?, ?, ?)",
        (run_id, label, state.temperature, state.pressure, _json_dumps(amounts)),
    )
    connection.commit()


def save_profile(
    connection: sqlite3.Connection,
    run_id: int,
    columns: Sequence[str],
    rows: Sequence[Sequence[float]],
) -> None:
    """Save the rows of a chemical output, one value per row and column."""
    connection.executemany(
        "INSERT INTO profile (run_id, sample, quantity, value) VALUES (?, ?, ?, ?)",
        [
            (run_id, sample, quantity, float(value))
            for sample, row in enumerate(rows)
            for quantity, value in zip(columns, row)
        ],
    )
    connection.commit()


def load_profile(connection: sqlite3.Connection, run_id: int) -> dict[str, list[float]]:
    """Read back a saved profile as one list of values per quantity."""
    profile: dict[str, list[float]] = {}
    for quantity, value in connection.execute(
        "SELECT quantity, value FROM profile WHERE run_id = ? ORDER BY sample, rowid",
        (run_id,),
    ):
        profile.setdefault(quantity, []).append(value)
    return profile


def _json_dumps(payload: Mapping[str, object]) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()

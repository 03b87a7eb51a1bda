"""Partition of the species of a chemical system into equilibrium and kinetic subsets.

Both subsets are stored as sorted index arrays into the species list of the
owning :class:`~kinpath.system.ChemicalSystem`; no species data is copied.
Element subsets are derived from the species formulas: an element belongs to
the equilibrium (kinetic) subset when some equilibrium (kinetic) species
contains it, so the two element subsets may overlap.

A partition can be written as a short string::

    kinetic = Calcite Dolomite; equilibrium = H2O(l) H+ OH- CO2(aq)

Entries are separated by ``;``. When only one of the two keys is present, the
other subset is the complement.
"""

from __future__ import annotations

from typing import Iterable

import numpy as np

from kinpath.errors import PartitionError
from kinpath.system import ChemicalSystem

KEYS = ("equilibrium", "kinetic")


def _indices(system: ChemicalSystem, names: Iterable[str], label: str) -> np.ndarray:
    names = list(names)
    unknown = [name for name in names if name not in system.species_names]
    if unknown:
        raise PartitionError(f"Unknown {label} species: {', '.join(unknown)}")
    duplicated = sorted({name for name in names if names.count(name) > 1})
    if duplicated:
        raise PartitionError(f"Duplicated {label} species: {', '.join(duplicated)}")
    return np.array(sorted(system.index_species(name) for name in names), dtype=int)


def parse_partition(text: str) -> dict[str, list[str]]:
    """Parse a partition string into species name lists."""
    entries: dict[str, list[str]] = {}
    for entry in text.split(";"):
        entry = entry.strip()
        if not entry:
            continue
        key, sep, value = entry.partition("=")
        key = key.strip().lower()
        if not sep or key not in KEYS:
            raise PartitionError(
                f"Invalid partition entry {entry!r}; expected 'kinetic = ...' or 'equilibrium = ...'"
            )
        if key in entries:
            raise PartitionError(f"Partition key {key!r} given more than once")
        entries[key] = value.split()
    return entries


class Partition:
    def __init__(
        self,
        system: ChemicalSystem,
        kinetic_species: Iterable[str] = (),
        equilibrium_species: Iterable[str] | None = None,
    ):
        self.system = system
        all_species = np.arange(system.num_species)

        kinetic = _indices(system, kinetic_species, "kinetic")
        if equilibrium_species is None:
            equilibrium = np.setdiff1d(all_species, kinetic)
        else:
            equilibrium = _indices(system, equilibrium_species, "equilibrium")

        overlap = np.intersect1d(equilibrium, kinetic)
        if overlap.size:
            names = ", ".join(system.species_names[i] for i in overlap)
            raise PartitionError(f"Species both equilibrium and kinetic: {names}")
        missing = np.setdiff1d(all_species, np.union1d(equilibrium, kinetic))
        if missing.size:
            names = ", ".join(system.species_names[i] for i in missing)
            raise PartitionError(f"Species in neither equilibrium nor kinetic subset: {names}")

        self.equilibrium_species = equilibrium
        self.kinetic_species = kinetic

        W = system.formula_matrix
        self.equilibrium_elements = np.flatnonzero(np.any(W[:, equilibrium] != 0.0, axis=1))
        self.kinetic_elements = np.flatnonzero(np.any(W[:, kinetic] != 0.0, axis=1))

    @classmethod
    def from_string(cls, system: ChemicalSystem, text: str) -> Partition:
        entries = parse_partition(text)
        kinetic = entries.get("kinetic")
        equilibrium = entries.get("equilibrium")
        if kinetic is None and equilibrium is not None:
            kinetic = [name for name in system.species_names if name not in equilibrium]
        return cls(system, kinetic or (), equilibrium)

    @property
    def num_equilibrium_species(self) -> int:
        return int(self.equilibrium_species.size)

    @property
    def num_kinetic_species(self) -> int:
        return int(self.kinetic_species.size)

    @property
    def num_equilibrium_elements(self) -> int:
        return int(self.equilibrium_elements.size)

    @property
    def num_kinetic_elements(self) -> int:
        return int(self.kinetic_elements.size)

    @property
    def formula_matrix_equilibrium(self) -> np.ndarray:
        """Formula matrix We: equilibrium elements x equilibrium species."""
        W = self.system.formula_matrix
        return W[np.ix_(self.equilibrium_elements, self.equilibrium_species)]

    def equilibrium_species_names(self) -> list[str]:
        return [self.system.species_names[i] for i in self.equilibrium_species]

    def kinetic_species_names(self) -> list[str]:
        return [self.system.species_names[i] for i in self.kinetic_species]

    def equilibrium_element_names(self) -> list[str]:
        return [self.system.elements[i] for i in self.equilibrium_elements]

    def __repr__(self) -> str:
        return (
            f"Partition(equilibrium={self.equilibrium_species_names()}, "
            f"kinetic={self.kinetic_species_names()})"
        )

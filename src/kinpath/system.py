"""Chemical system and chemical state."""

from __future__ import annotations

from typing import Mapping, Sequence

import numpy as np

from kinpath.constants import REFERENCE_PRESSURE, REFERENCE_TEMPERATURE
from kinpath.models import ChemicalVector, Species
from kinpath.thermo import ActivityModel, IdealSolutionThermo, SpeciesProperties


class ChemicalSystem:
    """An ordered collection of species and the elements they are made of.

    Elements are ordered as first seen while scanning the species formulas.
    """

    def __init__(self, species: Sequence[Species], thermo: ActivityModel | None = None):
        if not species:
            raise ValueError("A chemical system needs at least one species.")
        names = [s.name for s in species]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicated species names: {', '.join(duplicates)}")

        self.species = list(species)
        self.species_names = names
        self.elements: list[str] = []
        for s in self.species:
            for element in s.elements:
                if element not in self.elements:
                    self.elements.append(element)

        self._species_index = {name: i for i, name in enumerate(self.species_names)}
        self._element_index = {name: i for i, name in enumerate(self.elements)}

        self.formula_matrix = np.zeros((len(self.elements), len(self.species)))
        for j, s in enumerate(self.species):
            for element, coeff in s.elements.items():
                self.formula_matrix[self._element_index[element], j] = coeff

        if thermo is None:
            thermo = IdealSolutionThermo([SpeciesProperties()] * len(self.species))
        self.thermo = thermo

    @property
    def num_species(self) -> int:
        return len(self.species)

    @property
    def num_elements(self) -> int:
        return len(self.elements)

    def index_species(self, name: str) -> int:
        try:
            return self._species_index[name]
        except KeyError:
            raise ValueError(f"Unknown species: {name}") from None

    def index_element(self, name: str) -> int:
        try:
            return self._element_index[name]
        except KeyError:
            raise ValueError(f"Unknown element: {name}") from None

    def standard_chemical_potentials(self, temperature: float, pressure: float) -> np.ndarray:
        return self.thermo.standard_chemical_potentials(temperature, pressure)

    def activities(self, temperature: float, pressure: float, amounts: np.ndarray) -> ChemicalVector:
        return self.thermo.activities(temperature, pressure, amounts)


class ChemicalState:
    """Temperature, pressure and species amounts of a chemical system.

    The state is owned by the caller; kinetic paths mutate it in place.
    """

    def __init__(
        self,
        system: ChemicalSystem,
        temperature: float = REFERENCE_TEMPERATURE,
        pressure: float = REFERENCE_PRESSURE,
        amounts: Mapping[str, float] | Sequence[float] | None = None,
    ):
        self.system = system
        self.temperature = float(temperature)
        self.pressure = float(pressure)
        self.amounts = np.zeros(system.num_species)
        if isinstance(amounts, Mapping):
            for name, value in amounts.items():
                self.set_species_amount(name, value)
        elif amounts is not None:
            self.set_species_amounts(amounts)

    def set_species_amounts(self, values, indices=None) -> None:
        values = np.asarray(values, dtype=float)
        if indices is None:
            if values.shape != self.amounts.shape:
                raise ValueError(
                    f"Expected {self.amounts.size} species amounts, got {values.size}."
                )
            self.amounts[:] = values
        else:
            self.amounts[np.asarray(indices, dtype=int)] = values

    def set_species_amount(self, name: str, value: float) -> None:
        self.amounts[self.system.index_species(name)] = float(value)

    def species_amount(self, name: str) -> float:
        return float(self.amounts[self.system.index_species(name)])

    def element_amounts(self) -> np.ndarray:
        return self.system.formula_matrix @ self.amounts

    def element_amount(self, name: str) -> float:
        row = self.system.formula_matrix[self.system.index_element(name)]
        return float(row @ self.amounts)

    def copy(self) -> ChemicalState:
        return ChemicalState(self.system, self.temperature, self.pressure, self.amounts.copy())

    def __repr__(self) -> str:
        body = ", ".join(
            f"{name}={value:.6g}" for name, value in zip(self.system.species_names, self.amounts)
        )
        return f"ChemicalState(T={self.temperature:g} K, P={self.pressure:g} Pa, {body})"

"""Ideal solution thermodynamics."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from kinpath.constants import R_GAS, REFERENCE_TEMPERATURE
from kinpath.models import ChemicalVector
from kinpath.thermo.base import ActivityModel


@dataclass(frozen=True)
class SpeciesProperties:
    gibbs_energy: float = 0.0  # J/mol, standard Gibbs energy of formation at 298.15 K
    enthalpy: float = 0.0  # J/mol, assumed independent of T


class IdealSolutionThermo(ActivityModel):
    """Single ideal solution: activities are mole fractions over all species."""

    def __init__(self, properties: Sequence[SpeciesProperties]):
        self.properties = list(properties)
        self._gibbs = np.array([p.gibbs_energy for p in self.properties], dtype=float)
        self._enthalpy = np.array([p.enthalpy for p in self.properties], dtype=float)

    def standard_chemical_potentials(self, temperature: float, pressure: float) -> np.ndarray:
        # Gibbs-Helmholtz with constant enthalpy: G(T)/T = G0/T0 + H (1/T - 1/T0)
        t0 = REFERENCE_TEMPERATURE
        g_over_t = self._gibbs / t0 + self._enthalpy * (1.0 / temperature - 1.0 / t0)
        return g_over_t / R_GAS

    def activities(
        self, temperature: float, pressure: float, amounts: np.ndarray
    ) -> ChemicalVector:
        n = np.asarray(amounts, dtype=float)
        total = n.sum()
        if total <= 0.0:
            return ChemicalVector.zeros(n.size, n.size)
        x = n / total
        # d(x_i)/d(n_j) = (delta_ij - x_i) / N
        ddn = (np.eye(n.size) - x[:, None]) / total
        return ChemicalVector(x, ddn)

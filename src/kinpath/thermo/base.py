"""Base interface for activity models."""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from kinpath.models import ChemicalVector


class ActivityModel(ABC):
    """Abstract base class for the thermodynamic model of a chemical system.

    Species are addressed by their position in the owning system.
    """

    @abstractmethod
    def standard_chemical_potentials(self, temperature: float, pressure: float) -> np.ndarray:
        """Calculate the dimensionless standard chemical potentials (mu°/RT)."""
        pass

    @abstractmethod
    def activities(
        self, temperature: float, pressure: float, amounts: np.ndarray
    ) -> ChemicalVector:
        """Calculate species activities and their Jacobian w.r.t. amounts."""
        pass

"""Data structures for species, reactions and differentiable quantities."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping

import numpy as np

if TYPE_CHECKING:
    from kinpath.kinetics import KineticsModel


@dataclass(frozen=True)
class Species:
    name: str
    elements: Mapping[str, float] = field(default_factory=dict)
    phase: str = "aqueous"


@dataclass(frozen=True)
class Reaction:
    """A kinetically controlled reaction.

    Stoichiometric coefficients are negative for reactants and positive for
    products. The rate returned by ``kinetics`` is in mol/s of reaction
    progress.
    """

    name: str
    stoichiometry: Mapping[str, float]
    kinetics: KineticsModel


@dataclass
class ChemicalScalar:
    """A scalar value together with its gradient w.r.t. species amounts."""

    val: float
    ddn: np.ndarray

    @classmethod
    def zero(cls, num_species: int) -> ChemicalScalar:
        return cls(0.0, np.zeros(num_species))


@dataclass
class ChemicalVector:
    """A vector value together with its Jacobian w.r.t. species amounts.

    ``ddn[i, j]`` is the derivative of ``val[i]`` w.r.t. the amount of
    species ``j``.
    """

    val: np.ndarray
    ddn: np.ndarray

    @classmethod
    def zeros(cls, rows: int, num_species: int) -> ChemicalVector:
        return cls(np.zeros(rows), np.zeros((rows, num_species)))

    @classmethod
    def amounts(cls, n: Any) -> ChemicalVector:
        """The species amounts themselves, with an identity Jacobian."""
        n = np.asarray(n, dtype=float)
        return cls(n.copy(), np.eye(n.size))

    def __getitem__(self, index: int) -> ChemicalScalar:
        return ChemicalScalar(float(self.val[index]), self.ddn[index])

"""Reaction system: stoichiometry and rates of the kinetically controlled reactions."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from kinpath.models import ChemicalVector, Reaction
from kinpath.system import ChemicalSystem


class ReactionSystem:
    def __init__(self, system: ChemicalSystem, reactions: Sequence[Reaction]):
        self.system = system
        self.reactions = list(reactions)
        self.reaction_names = [r.name for r in self.reactions]
        self._reaction_index = {name: i for i, name in enumerate(self.reaction_names)}
        self._species_index = {name: i for i, name in enumerate(system.species_names)}

        # One row per reaction, one column per species
        self.stoichiometric_matrix = np.zeros((len(self.reactions), system.num_species))
        for i, reaction in enumerate(self.reactions):
            for name, coeff in reaction.stoichiometry.items():
                self.stoichiometric_matrix[i, self._lookup(reaction, name)] = coeff
            for name in reaction.kinetics.species:
                self._lookup(reaction, name)

    def _lookup(self, reaction: Reaction, name: str) -> int:
        try:
            return self._species_index[name]
        except KeyError:
            raise ValueError(
                f"Reaction {reaction.name!r} refers to unknown species {name!r}"
            ) from None

    @property
    def num_reactions(self) -> int:
        return len(self.reactions)

    def index_reaction(self, name: str) -> int:
        try:
            return self._reaction_index[name]
        except KeyError:
            raise ValueError(f"Unknown reaction: {name}") from None

    def rates(
        self,
        temperature: float,
        pressure: float,
        amounts: np.ndarray,
        activities: ChemicalVector,
    ) -> ChemicalVector:
        """Calculate the rates of all reactions and their Jacobian w.r.t. amounts."""
        n = ChemicalVector.amounts(amounts)
        result = ChemicalVector.zeros(self.num_reactions, self.system.num_species)
        for i, reaction in enumerate(self.reactions):
            rate = reaction.kinetics.rate(
                temperature, pressure, n, activities, self._species_index
            )
            result.val[i] = rate.val
            result.ddn[i] = rate.ddn
        return result

"""Equilibrium calculations for the equilibrium partition of a chemical state.

The reference solver minimizes the Gibbs energy of the equilibrium species in
a single ideal solution, at fixed temperature, pressure, kinetic species
amounts and elemental abundances ``be`` of the equilibrium elements.

With ``s = ln(ne)`` and element potentials ``lam`` the optimality (KKT)
conditions are::

    g + s - ln(N) - We^T lam = 0          (one per equilibrium species)
    (We exp(s) - be) / be = 0              (one per equilibrium element)

where ``g = mu°/RT`` and ``N`` is the total amount including the kinetic
species. They are solved with a damped Newton iteration; the converged Newton
matrix also gives the sensitivity ``d(ne)/d(be)`` by implicit
differentiation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from kinpath.errors import EquilibriumError
from kinpath.options import EquilibriumOptions
from kinpath.partition import Partition
from kinpath.system import ChemicalState, ChemicalSystem

logger = logging.getLogger(__name__)


class EquilibriumProvider(Protocol):
    def set_partition(self, partition: Partition) -> None:
        ...

    def solve(self, state: ChemicalState, be: np.ndarray) -> "EquilibriumResult":
        """Equilibrate the equilibrium species of ``state`` at abundances ``be``."""
        ...

    def sensitivity(self, state: ChemicalState) -> np.ndarray:
        """Derivatives of the equilibrium species amounts w.r.t. ``be``."""
        ...


@dataclass
class EquilibriumResult:
    amounts: np.ndarray  # equilibrium species, in partition order
    sensitivity: np.ndarray  # Ne x Ee
    iterations: int
    residual: float


def _newton_matrix(n, total, W, b):
    num_species = n.size
    num_elements = b.size
    J = np.zeros((num_species + num_elements, num_species + num_elements))
    J[:num_species, :num_species] = np.eye(num_species) - n[None, :] / total
    J[:num_species, num_species:] = -W.T
    J[num_species:, :num_species] = W * n[None, :] / b[:, None]
    return J


def _solve_linear(J, rhs):
    try:
        return np.linalg.solve(J, rhs)
    except np.linalg.LinAlgError:
        return np.linalg.lstsq(J, rhs, rcond=None)[0]


class EquilibriumSolver:
    def __init__(
        self,
        system: ChemicalSystem,
        partition: Partition | None = None,
        options: EquilibriumOptions | None = None,
    ):
        self.system = system
        self.options = options or EquilibriumOptions()
        self._last: tuple[np.ndarray, EquilibriumResult] | None = None
        self.set_partition(partition or Partition(system))

    def set_options(self, options: EquilibriumOptions) -> None:
        self.options = options

    def set_partition(self, partition: Partition) -> None:
        if partition.system is not self.system:
            raise ValueError("The partition belongs to a different chemical system.")
        self.partition = partition
        self._We = partition.formula_matrix_equilibrium
        self._last = None

    def solve(self, state: ChemicalState, be: np.ndarray | None = None) -> EquilibriumResult:
        ie = self.partition.equilibrium_species
        ik = self.partition.kinetic_species
        We = self._We
        num_species, num_elements = ie.size, We.shape[0]

        if be is None:
            be = We @ state.amounts[ie]
        be = np.asarray(be, dtype=float)
        if be.shape != (num_elements,):
            raise ValueError(f"Expected {num_elements} elemental abundances, got {be.shape}.")
        if not np.all(np.isfinite(be)):
            raise EquilibriumError(f"Non-finite elemental abundances: {be}")

        ne = np.zeros(num_species)
        sensitivity = np.zeros((num_species, num_elements))
        iterations, residual = 0, 0.0

        # Elements with no positive abundance cannot be held by any species
        present = be > 0.0
        allowed = np.all((We == 0.0) | present[:, None], axis=0)
        W = We[np.ix_(present, allowed)]
        if present.any() and not np.all(np.any(W != 0.0, axis=1)):
            names = [
                self.partition.equilibrium_element_names()[i]
                for i in np.flatnonzero(present)[~np.any(W != 0.0, axis=1)]
            ]
            raise EquilibriumError(f"No equilibrium species can hold elements: {', '.join(names)}")

        if allowed.any():
            g = self.system.standard_chemical_potentials(state.temperature, state.pressure)[ie]
            nk_total = float(np.sum(state.amounts[ik]))
            n, dndb, iterations, residual = self._minimize(
                g[allowed], W, be[present], nk_total, state.amounts[ie][allowed]
            )
            ne[allowed] = n
            sensitivity[np.ix_(allowed, present)] = dndb

        state.set_species_amounts(ne, ie)
        result = EquilibriumResult(ne, sensitivity, iterations, residual)
        self._last = (state.amounts.copy(), result)
        return result

    def sensitivity(self, state: ChemicalState) -> np.ndarray:
        if self._last is None or not np.array_equal(self._last[0], state.amounts):
            self.solve(state)
        return self._last[1].sensitivity

    def _minimize(self, g, W, b, nk_total, guess):
        opts = self.options
        num_species = g.size
        scale = float(b.max()) if b.size else 1.0
        floor = 1e-10 * scale
        s = np.log(np.maximum(np.nan_to_num(guess, nan=0.0), floor))
        total = np.exp(s).sum() + nk_total
        lam = np.linalg.lstsq(W.T, g + s - np.log(total), rcond=None)[0] if b.size else np.zeros(0)

        for iteration in range(opts.max_iterations + 1):
            n = np.exp(s)
            total = n.sum() + nk_total
            F = np.concatenate([g + s - np.log(total) - W.T @ lam, (W @ n - b) / b])
            residual = float(np.max(np.abs(F))) if F.size else 0.0
            if not np.isfinite(residual):
                raise EquilibriumError("Equilibrium iteration produced non-finite values.")
            J = _newton_matrix(n, total, W, b)
            if residual < opts.tolerance:
                break
            if iteration == opts.max_iterations:
                raise EquilibriumError(
                    f"Equilibrium did not converge in {opts.max_iterations} iterations "
                    f"(residual {residual:.3e})."
                )
            delta = _solve_linear(J, -F)
            ds, dlam = delta[:num_species], delta[num_species:]
            largest = float(np.max(np.abs(ds))) if ds.size else 0.0
            alpha = min(1.0, opts.max_log_step / largest) if largest > 0.0 else 1.0
            s = s + alpha * ds
            lam = lam + alpha * dlam

        logger.debug("Equilibrium converged in %d iterations (residual %.3e)", iteration, residual)

        # Implicit differentiation of F(s, lam; b) = 0
        rhs = np.zeros((num_species + b.size, b.size))
        rhs[num_species:] = np.diag((W @ n) / b**2)
        dsdb = _solve_linear(J, rhs)[:num_species]
        return n, n[:, None] * dsdb, iteration, residual

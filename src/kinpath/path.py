"""Kinetic path: time integration of a partially equilibrated chemical system.

The integration variable is ``u = [be; nk]``: the elemental abundances of the
equilibrium elements followed by the amounts of the kinetic species. Its
time derivative is linear in the reaction rates::

    du/dt = A r,    A = [We Se^T; Sk^T]

where ``We`` is the formula matrix of the equilibrium species and ``Se``,
``Sk`` are the columns of the stoichiometric matrix for the equilibrium and
kinetic species. Every evaluation of ``du/dt`` first writes ``nk`` into the
chemical state and re-equilibrates the equilibrium species at ``be``; the
Jacobian chains the rate Jacobian through the equilibrium sensitivity::

    d(du/dt)/du = A [Re Be | Rk],    Be = d(ne)/d(be)

Typical use::

    path = KineticPath(reactions)
    path.set_partition("kinetic = Calcite")
    t = path.solve(state, 0.0, 3600.0)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np

from kinpath.constants import DEPLETION_THRESHOLD
from kinpath.equilibrium import EquilibriumProvider, EquilibriumSolver
from kinpath.errors import EquilibriumError, KineticPathError, PartitionError
from kinpath.ode import OdeProblem, OdeSolver, OdeStatus
from kinpath.options import KineticOptions
from kinpath.output import ChemicalOutput
from kinpath.partition import Partition
from kinpath.reactions import ReactionSystem
from kinpath.system import ChemicalState

logger = logging.getLogger(__name__)


class PathStatus(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    INTEGRATING = "integrating"
    FINALIZED = "finalized"


@dataclass
class KineticContext:
    """The chemical state evaluated by the ODE functions, at fixed T and P."""

    state: ChemicalState
    temperature: float
    pressure: float

    @classmethod
    def from_state(cls, state: ChemicalState) -> KineticContext:
        return cls(state, state.temperature, state.pressure)


def coefficient_matrix(
    partition: Partition, stoichiometric_matrix: np.ndarray
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Assemble ``A = [We Se^T; Sk^T]`` and return it with ``Se`` and ``Sk``."""
    S = np.asarray(stoichiometric_matrix, dtype=float)
    if S.ndim != 2 or S.shape[1] != partition.system.num_species:
        raise ValueError(
            f"Stoichiometric matrix of shape {S.shape} does not match "
            f"{partition.system.num_species} species."
        )
    Se = S[:, partition.equilibrium_species]
    Sk = S[:, partition.kinetic_species]
    We = partition.formula_matrix_equilibrium
    Ee = partition.num_equilibrium_elements
    Nk = partition.num_kinetic_species

    A = np.empty((Ee + Nk, S.shape[0]))
    A[:Ee] = We @ Se.T
    A[Ee:] = Sk.T
    return A, Se, Sk


class KineticPath:
    def __init__(
        self,
        reactions: ReactionSystem,
        equilibrium: EquilibriumProvider | None = None,
        options: KineticOptions | None = None,
    ):
        self.reactions = reactions
        self.system = reactions.system
        self.options = options or KineticOptions()
        if equilibrium is None:
            equilibrium = EquilibriumSolver(self.system, options=self.options.equilibrium)
        self.equilibrium = equilibrium
        self.ode = OdeSolver(self.options.ode)
        self.status = PathStatus.UNINITIALIZED
        self.context: KineticContext | None = None
        self._projected: np.ndarray | None = None
        self.set_partition(Partition(self.system))

    def set_options(self, options: KineticOptions) -> None:
        self.options = options
        self.ode.set_options(options.ode)
        if isinstance(self.equilibrium, EquilibriumSolver):
            self.equilibrium.set_options(options.equilibrium)

    def set_partition(self, partition: Partition | str) -> None:
        if isinstance(partition, str):
            partition = Partition.from_string(self.system, partition)
        elif partition.system is not self.system:
            raise PartitionError("The partition belongs to a different chemical system.")

        self.partition = partition
        self.equilibrium.set_partition(partition)

        self.ispecies_e = partition.equilibrium_species
        self.ispecies_k = partition.kinetic_species
        self.We = partition.formula_matrix_equilibrium
        self.Ee = partition.num_equilibrium_elements
        self.Nk = partition.num_kinetic_species
        self.A, self.Se, self.Sk = coefficient_matrix(partition, self.reactions.stoichiometric_matrix)

        # Buffers reused across evaluations
        self.u = np.zeros(self.num_equations)
        self._res = np.zeros(self.num_equations)
        self._R = np.zeros((self.reactions.num_reactions, self.num_equations))

        self.status = PathStatus.UNINITIALIZED
        self.context = None
        self._projected = None

    @property
    def num_equations(self) -> int:
        return self.Ee + self.Nk

    def initialize(self, state: ChemicalState, t0: float = 0.0) -> None:
        context = KineticContext.from_state(state)
        self._assemble(state, self.u)
        if not np.all(np.isfinite(self.u)):
            raise KineticPathError("The initial chemical state has non-finite species amounts.")

        problem = OdeProblem(
            num_equations=self.num_equations,
            function=lambda t, u: self.function(context, t, u),
            jacobian=lambda t, u: self.jacobian(context, t, u),
        )
        # Starting the integrator evaluates the ODE functions, which mutate
        # the state; hand the state back unchanged.
        snapshot = state.amounts.copy()
        try:
            self.ode.set_problem(problem)
            self.ode.initialize(t0, self.u)
        finally:
            state.set_species_amounts(snapshot)

        self.context = context
        self._projected = snapshot
        self.status = PathStatus.INITIALIZED

    def step(self, state: ChemicalState, t: float, tfinal: float | None = None) -> float:
        """Perform one internal integrator step and return the new time."""
        if self.status not in (PathStatus.INITIALIZED, PathStatus.INTEGRATING):
            raise KineticPathError(f"Cannot step a kinetic path that is {self.status.value}.")
        if state is not self.context.state:
            raise KineticPathError("The kinetic path was initialized with a different state.")

        snapshot = state.amounts.copy()
        try:
            # Reuse the integrator's own u unless the caller changed the state
            if self._projected is None or not np.array_equal(self._projected, state.amounts):
                self._assemble(state, self.u)
            t = self.ode.integrate(t, self.u, tfinal)
            self._project(state, self.u)
        except Exception:
            state.set_species_amounts(snapshot)
            self._projected = None
            raise
        self.status = PathStatus.INTEGRATING
        return t

    def solve(
        self,
        state: ChemicalState,
        t: float,
        dt: float,
        output: ChemicalOutput | None = None,
    ) -> float:
        """Integrate ``state`` from ``t`` to ``t + dt`` and return the final time."""
        tfinal = t + dt
        if output is None and self.options.output.active:
            output = ChemicalOutput.from_options(self.reactions, self.options.output)

        snapshot = state.amounts.copy()
        num_steps = 0
        logger.info("Solving kinetic path from t = %g to t = %g", t, tfinal)
        try:
            self.initialize(state, t)
            if output:
                output.open()
                output.update(state, t)
            while t < tfinal:
                t = self.step(state, t, tfinal)
                num_steps += 1
                if output:
                    output.update(state, t)
            if num_steps == 0 or not np.array_equal(self._projected, state.amounts):
                self._project(state, self.u)
        except Exception:
            state.set_species_amounts(snapshot)
            self._projected = None
            raise
        finally:
            if output:
                output.close()

        self.status = PathStatus.FINALIZED
        logger.info("Kinetic path reached t = %g in %d steps", t, num_steps)
        return t

    def function(
        self, context: KineticContext, t: float, u: np.ndarray
    ) -> tuple[np.ndarray, OdeStatus]:
        """Right-hand side ``du/dt``; the returned array is a reused buffer."""
        if not self._resolve(context, u):
            self._res[:] = np.nan
            return self._res, OdeStatus.RECOVERABLE_FAILURE

        rates = self._rates(context)
        self._res[:] = self.A @ rates.val

        # Do not drive already depleted quantities further negative
        depleted = (np.abs(u) < DEPLETION_THRESHOLD) & (self._res < 0.0)
        self._res[depleted] = 0.0
        return self._res, OdeStatus.SUCCESS

    def jacobian(
        self, context: KineticContext, t: float, u: np.ndarray
    ) -> tuple[np.ndarray, OdeStatus]:
        if not self._resolve(context, u):
            return np.full((self.num_equations, self.num_equations), np.nan), OdeStatus.RECOVERABLE_FAILURE

        Be = self.equilibrium.sensitivity(context.state)
        rates = self._rates(context)
        Re = rates.ddn[:, self.ispecies_e]
        Rk = rates.ddn[:, self.ispecies_k]
        self._R[:, : self.Ee] = Re @ Be
        self._R[:, self.Ee :] = Rk
        return self.A @ self._R, OdeStatus.SUCCESS

    def _resolve(self, context: KineticContext, u: np.ndarray) -> bool:
        """Bring the state in line with ``u``; False on a recoverable failure."""
        if not np.all(np.isfinite(u)):
            logger.debug("Non-finite integration variable, asking for a smaller step")
            return False

        state = context.state
        state.set_species_amounts(u[self.Ee :], self.ispecies_k)
        try:
            self.equilibrium.solve(state, u[: self.Ee])
        except EquilibriumError as exc:
            if not self.options.retry_equilibrium_failures:
                raise
            logger.warning("Equilibrium failed inside the kinetic path, retrying: %s", exc)
            return False
        return True

    def _rates(self, context: KineticContext):
        n = context.state.amounts
        activities = self.system.activities(context.temperature, context.pressure, n)
        return self.reactions.rates(context.temperature, context.pressure, n, activities)

    def _assemble(self, state: ChemicalState, out: np.ndarray) -> None:
        n = state.amounts
        out[: self.Ee] = self.We @ n[self.ispecies_e]
        out[self.Ee :] = n[self.ispecies_k]

    def _project(self, state: ChemicalState, u: np.ndarray) -> None:
        state.set_species_amounts(u[self.Ee :], self.ispecies_k)
        self.equilibrium.solve(state, u[: self.Ee])
        self._projected = state.amounts.copy()

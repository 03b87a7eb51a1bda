"""Stiff ODE integration on top of :class:`scipy.integrate.BDF`.

The problem functions return a status code together with their value. A
recoverable failure is handed to the BDF scheme as a non-finite value, which
makes its Newton iteration fail and the step size shrink before retrying.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable

import numpy as np
from scipy.integrate import BDF

from kinpath.errors import IntegrationError
from kinpath.options import OdeOptions

logger = logging.getLogger(__name__)


class OdeStatus(IntEnum):
    SUCCESS = 0
    RECOVERABLE_FAILURE = 1


OdeFunction = Callable[[float, np.ndarray], "tuple[np.ndarray, OdeStatus]"]


@dataclass
class OdeProblem:
    num_equations: int
    function: OdeFunction
    jacobian: OdeFunction | None = None


class OdeSolver:
    """Variable-order, variable-step BDF integrator driven one step at a time."""

    def __init__(self, options: OdeOptions | None = None):
        self.options = options or OdeOptions()
        self.problem: OdeProblem | None = None
        self._solver: BDF | None = None
        self._last_step: float | None = None
        self._last_jacobian: np.ndarray | None = None

    def set_options(self, options: OdeOptions) -> None:
        self.options = options
        self._solver = None

    def set_problem(self, problem: OdeProblem) -> None:
        self.problem = problem
        self._solver = None
        self._last_step = None
        self._last_jacobian = None

    def initialize(self, t0: float, u0: np.ndarray) -> None:
        self._require_problem()
        self._last_step = None
        self._restart(t0, u0, np.inf)

    def integrate(self, t: float, u: np.ndarray, tfinal: float | None = None) -> float:
        """Advance one internal step from ``(t, u)``, never past ``tfinal``.

        ``u`` is overwritten with the new solution and the new time returned.
        """
        self._require_problem()
        tbound = np.inf if tfinal is None else float(tfinal)
        if tbound <= t:
            return t
        if self._needs_restart(t, u, tbound):
            self._restart(t, u, tbound)

        message = self._solver.step()
        if self._solver.status == "failed":
            raise IntegrationError(f"Integration failed at t = {self._solver.t:g}: {message}")

        self._last_step = self._solver.step_size
        u[:] = self._solver.y
        return float(self._solver.t)

    def solve(self, t: float, dt: float, u: np.ndarray) -> float:
        """Advance ``u`` from ``t`` to ``t + dt`` and return the final time."""
        tfinal = t + dt
        while t < tfinal:
            t = self.integrate(t, u, tfinal)
        return t

    def _require_problem(self) -> None:
        if self.problem is None:
            raise IntegrationError("No ODE problem has been set.")

    def _needs_restart(self, t: float, u: np.ndarray, tbound: float) -> bool:
        solver = self._solver
        if solver is None or solver.status != "running" or solver.t_bound != tbound:
            return True
        if solver.t != t:
            return True
        # Differences below the error tolerance are integration noise
        tolerance = self.options.atol + self.options.rtol * np.abs(solver.y)
        return not np.all(np.abs(np.asarray(u) - solver.y) <= tolerance)

    def _restart(self, t: float, u: np.ndarray, tbound: float) -> None:
        first_step = self.options.first_step or self._last_step
        if first_step is not None:
            first_step = min(first_step, tbound - t)
        logger.debug("Restarting BDF at t = %g (bound %g, first step %s)", t, tbound, first_step)
        self._solver = BDF(
            self._function,
            t,
            np.array(u, dtype=float),
            tbound,
            max_step=self.options.max_step,
            rtol=self.options.rtol,
            atol=self.options.atol,
            jac=self._jacobian,
            first_step=first_step,
        )

    def _function(self, t: float, u: np.ndarray) -> np.ndarray:
        res, status = self.problem.function(t, u)
        if status != OdeStatus.SUCCESS:
            return np.full(self.problem.num_equations, np.nan)
        return np.array(res, dtype=float)

    def _jacobian(self, t: float, u: np.ndarray) -> np.ndarray:
        if self.problem.jacobian is None:
            res, status = self._difference_jacobian(t, u)
        else:
            res, status = self.problem.jacobian(t, u)
        if status != OdeStatus.SUCCESS:
            # The LU factorization rejects non-finite matrices; keep the last
            # good one and let the failing function evaluation shrink the step.
            if self._last_jacobian is None:
                n = self.problem.num_equations
                return np.zeros((n, n))
            return self._last_jacobian.copy()
        self._last_jacobian = np.array(res, dtype=float)
        return self._last_jacobian.copy()

    def _difference_jacobian(self, t: float, u: np.ndarray) -> tuple[np.ndarray, OdeStatus]:
        """Forward-difference Jacobian for problems without an analytic one."""
        f0, status = self.problem.function(t, u)
        if status != OdeStatus.SUCCESS:
            return f0, status
        f0 = np.array(f0, dtype=float)
        u = np.array(u, dtype=float)
        jac = np.empty((f0.size, u.size))
        for j in range(u.size):
            h = np.sqrt(np.finfo(float).eps) * max(1.0, abs(u[j]))
            shifted = u.copy()
            shifted[j] += h
            f, status = self.problem.function(t, shifted)
            if status != OdeStatus.SUCCESS:
                return f, status
            jac[:, j] = (np.asarray(f, dtype=float) - f0) / h
        return jac, OdeStatus.SUCCESS

"""Exception types raised by KinPath."""

from __future__ import annotations


class KinPathError(Exception):
    """Base class for all KinPath errors."""


class PartitionError(KinPathError, ValueError):
    """The species partition is inconsistent with the chemical system."""


class EquilibriumError(KinPathError, RuntimeError):
    """The equilibrium calculation did not converge."""


class IntegrationError(KinPathError, RuntimeError):
    """The stiff integrator could not advance the solution."""


class KineticPathError(KinPathError, RuntimeError):
    """An operation was called in the wrong state of the kinetic path."""

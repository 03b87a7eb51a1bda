"""KinPath core package."""

from kinpath.equilibrium import EquilibriumSolver
from kinpath.errors import (
    EquilibriumError,
    IntegrationError,
    KineticPathError,
    KinPathError,
    PartitionError,
)
from kinpath.kinetics import ArrheniusKinetics, LHHWKinetics, PowerLawKinetics
from kinpath.models import Reaction, Species
from kinpath.options import KineticOptions
from kinpath.output import ChemicalOutput
from kinpath.partition import Partition
from kinpath.path import KineticPath, PathStatus
from kinpath.reactions import ReactionSystem
from kinpath.system import ChemicalState, ChemicalSystem

__all__ = [
    "ArrheniusKinetics",
    "ChemicalOutput",
    "ChemicalState",
    "ChemicalSystem",
    "EquilibriumError",
    "EquilibriumSolver",
    "IntegrationError",
    "KinPathError",
    "KineticOptions",
    "KineticPath",
    "KineticPathError",
    "LHHWKinetics",
    "Partition",
    "PartitionError",
    "PathStatus",
    "PowerLawKinetics",
    "Reaction",
    "ReactionSystem",
    "Species",
]

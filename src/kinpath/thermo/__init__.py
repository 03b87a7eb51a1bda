from .base import ActivityModel
from .ideal import IdealSolutionThermo, SpeciesProperties

__all__ = ["ActivityModel", "IdealSolutionThermo", "SpeciesProperties"]

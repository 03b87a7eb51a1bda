"""Options of the kinetic path and its collaborators."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np


@dataclass(frozen=True)
class OdeOptions:
    rtol: float = 1e-6
    atol: float = 1e-12
    max_step: float = np.inf
    first_step: float | None = None


@dataclass(frozen=True)
class EquilibriumOptions:
    tolerance: float = 1e-10  # on the scaled KKT residual
    max_iterations: int = 100
    max_log_step: float = 5.0  # largest Newton update of ln(n) per iteration


@dataclass(frozen=True)
class OutputOptions:
    data: Sequence[str] = ()
    header: Sequence[str] = ()
    file: str | None = None
    terminal: bool = False

    @property
    def active(self) -> bool:
        return bool(self.data) and (self.terminal or self.file is not None)


@dataclass(frozen=True)
class KineticOptions:
    ode: OdeOptions = field(default_factory=OdeOptions)
    equilibrium: EquilibriumOptions = field(default_factory=EquilibriumOptions)
    output: OutputOptions = field(default_factory=OutputOptions)
    # Report equilibrium failures inside the ODE functions as recoverable
    # step failures instead of raising.
    retry_equilibrium_failures: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> KineticOptions:
        output = dict(data.get("output", {}))
        if isinstance(output.get("data"), str):
            output["data"] = [item for item in re.split(r"[;\s]+", output["data"]) if item]
        if isinstance(output.get("header"), str):
            output["header"] = [item.strip() for item in output["header"].split(";") if item.strip()]
        return cls(
            ode=OdeOptions(**data.get("ode", {})),
            equilibrium=EquilibriumOptions(**data.get("equilibrium", {})),
            output=OutputOptions(**output),
            retry_equilibrium_failures=bool(data.get("retry_equilibrium_failures", False)),
        )

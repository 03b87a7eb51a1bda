"""Column output of chemical states along a kinetic path.

Quantities are named with a short syntax:

    t            time, optionally with a unit: ``t:minutes``
    n[Calcite]   species amount (mol), optionally ``n[Calcite]:mmol``
    x[CO2(aq)]   species mole fraction
    a[H+]        species activity
    m[Ca++]      species molality (mol/kg of ``H2O(l)``)
    b[Ca]        element amount (mol), optionally ``b[Ca]:umol``
    b[Ca][mineral]  element amount in the species of one phase
    r[Calcite]   reaction rate (mol/s), optionally ``r[Calcite]:mmol/hour``
    pH           -log10 of the activity of ``H+``
"""

from __future__ import annotations

import re
import sys
from pathlib import Path
from typing import IO, Sequence

import numpy as np

from kinpath.constants import WATER_MOLAR_MASS
from kinpath.options import OutputOptions
from kinpath.reactions import ReactionSystem
from kinpath.system import ChemicalState

COLUMN_WIDTH = 20
WATER = "H2O(l)"

TIME_UNITS = {
    "s": 1.0,
    "second": 1.0,
    "seconds": 1.0,
    "minute": 60.0,
    "minutes": 60.0,
    "hour": 3600.0,
    "hours": 3600.0,
    "day": 86400.0,
    "days": 86400.0,
    "year": 31557600.0,
    "years": 31557600.0,
}

AMOUNT_UNITS = {
    "mol": 1.0,
    "mmol": 1.0e-3,
    "umol": 1.0e-6,
}

_QUANTITY = re.compile(
    r"^(?P<kind>[A-Za-z]+)(\[(?P<arg>[^\]]+)\])?(\[(?P<phase>[^\]]+)\])?(:(?P<unit>\S+))?$"
)


def split_items(text: str) -> list[str]:
    return [item for item in re.split(r"[;\s]+", text) if item]


class ChemicalOutput:
    def __init__(self, reactions: ReactionSystem):
        self.reactions = reactions
        self.system = reactions.system
        self.stream: IO[str] = sys.stdout
        self.records: list[tuple[float, ...]] | None = None
        self._filename: Path | None = None
        self._terminal = False
        self._data: list[str] = []
        self._header: list[str] = []
        self._quantities: list[tuple[str, int | np.ndarray, float]] = []
        self._iwater = -1
        self._datafile: IO[str] | None = None

    @classmethod
    def from_options(cls, reactions: ReactionSystem, options: OutputOptions) -> ChemicalOutput:
        output = cls(reactions)
        output.data(options.data)
        output.header(options.header)
        output.terminal(options.terminal)
        if options.file is not None:
            output.file(options.file)
        return output

    def file(self, filename: str | Path) -> None:
        self._filename = Path(filename)

    def terminal(self, active: bool = True) -> None:
        self._terminal = active

    def record(self, active: bool = True) -> None:
        """Keep every written row in :attr:`records`."""
        self.records = [] if active else None

    def data(self, items: str | Sequence[str]) -> None:
        self._data = split_items(items) if isinstance(items, str) else list(items)

    def header(self, items: str | Sequence[str]) -> None:
        if isinstance(items, str):
            items = [item.strip() for item in re.split(r"[;\n]", items)]
        self._header = [item for item in items if item]

    def open(self) -> None:
        self.close()
        if not (self._filename or self._terminal or self.records is not None):
            raise ValueError(
                "Cannot open the output: it is configured for neither a file nor the terminal."
            )
        self._quantities = [self._parse(item) for item in self._data]
        header = self.columns
        if len(header) != len(self._data):
            raise ValueError(
                f"Output header has {len(header)} columns but {len(self._data)} quantities are requested."
            )
        if self._filename is not None:
            self._filename.parent.mkdir(parents=True, exist_ok=True)
            self._datafile = open(self._filename, "w")
        self._write(header)

    def update(self, state: ChemicalState, t: float) -> None:
        values = self.evaluate(state, t)
        if self.records is not None:
            self.records.append(tuple(values))
        self._write([f"{value:.12g}" for value in values])

    def close(self) -> None:
        if self._datafile is not None:
            self._datafile.close()
            self._datafile = None

    def evaluate(self, state: ChemicalState, t: float) -> list[float]:
        """Compute the configured quantities for ``state`` at time ``t``."""
        if len(self._quantities) != len(self._data):
            self._quantities = [self._parse(item) for item in self._data]
        T, P, n = state.temperature, state.pressure, state.amounts
        activities = None
        rates = None
        values = []
        for kind, index, factor in self._quantities:
            if kind in ("a", "pH", "r") and activities is None:
                activities = self.system.activities(T, P, n)
            if kind == "t":
                values.append(t / factor)
            elif kind == "n":
                values.append(float(n[index]) / factor)
            elif kind == "m":
                solvent = n[self._iwater] * WATER_MOLAR_MASS
                values.append(float(n[index] / solvent) if solvent > 0.0 else 0.0)
            elif kind == "x":
                total = n.sum()
                values.append(float(n[index] / total) if total > 0.0 else 0.0)
            elif kind == "a":
                values.append(float(activities.val[index]))
            elif kind == "pH":
                values.append(float(-np.log10(activities.val[index])))
            elif kind == "b":
                values.append(float(index @ n) / factor)
            elif kind == "r":
                if rates is None:
                    rates = self.reactions.rates(T, P, n, activities)
                values.append(float(rates.val[index]) / factor)
        return values

    @property
    def columns(self) -> list[str]:
        return list(self._header or self._data)

    def __bool__(self) -> bool:
        return self._terminal or self._filename is not None or self.records is not None

    def __enter__(self) -> ChemicalOutput:
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _parse(self, item: str) -> tuple[str, int | np.ndarray, float]:
        match = _QUANTITY.match(item)
        if match is None:
            raise ValueError(f"Invalid output quantity: {item!r}")
        kind, arg, unit = match.group("kind"), match.group("arg"), match.group("unit")
        phase = match.group("phase")
        if phase is not None and kind != "b":
            raise ValueError(f"Only element amounts can be restricted to a phase, got {item!r}")
        if unit is not None and kind not in ("t", "n", "b", "r"):
            raise ValueError(f"Units are not supported for {item!r}")
        factor = _unit_factor(kind, unit, item)

        if kind == "t" and arg is None:
            return kind, -1, factor
        if kind == "pH" and arg is None:
            return kind, self.system.index_species("H+"), 1.0
        if arg is None:
            raise ValueError(f"Invalid output quantity: {item!r}")
        if kind in ("n", "x", "a"):
            return kind, self.system.index_species(arg), factor
        if kind == "m":
            self._iwater = self.system.index_species(WATER)
            return kind, self.system.index_species(arg), 1.0
        if kind == "b":
            # Formula row of the element, restricted to one phase if given
            row = self.system.formula_matrix[self.system.index_element(arg)].copy()
            if phase is not None:
                in_phase = np.array([s.phase == phase for s in self.system.species])
                if not in_phase.any():
                    raise ValueError(f"Unknown phase {phase!r} in {item!r}")
                row[~in_phase] = 0.0
            return kind, row, factor
        if kind == "r":
            return kind, self.reactions.index_reaction(arg), factor
        raise ValueError(f"Unknown output quantity: {item!r}")

    def _write(self, words: Sequence[str]) -> None:
        line = "".join(f"{word:<{COLUMN_WIDTH}}" for word in words)
        if self._datafile is not None:
            print(line, file=self._datafile)
        if self._terminal:
            print(line, file=self.stream)


def _unit_factor(kind: str, unit: str | None, item: str) -> float:
    """Size of one output unit in mol, s or mol/s."""
    if kind == "t":
        if unit is not None and unit not in TIME_UNITS:
            raise ValueError(f"Unknown time unit {unit!r} in {item!r}")
        return TIME_UNITS[unit or "s"]
    if unit is None:
        return 1.0
    if kind == "r":
        amount, _, time = unit.partition("/")
        if amount not in AMOUNT_UNITS or time not in TIME_UNITS:
            raise ValueError(f"Unknown rate unit {unit!r} in {item!r}")
        return AMOUNT_UNITS[amount] / TIME_UNITS[time]
    if unit not in AMOUNT_UNITS:
        raise ValueError(f"Unknown amount unit {unit!r} in {item!r}")
    return AMOUNT_UNITS[unit]

"""Command-line entrypoints for KinPath."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Annotated, Any, Dict

import numpy as np
import typer

from kinpath.kinetics import (
    ArrheniusKinetics,
    LHHWKinetics,
    PowerLawKinetics,
)
from kinpath.models import Reaction, Species
from kinpath.options import KineticOptions
from kinpath.output import ChemicalOutput
from kinpath.path import KineticPath
from kinpath.persistence import sqlite_store
from kinpath.reactions import ReactionSystem
from kinpath.system import ChemicalState, ChemicalSystem
from kinpath.thermo import IdealSolutionThermo, SpeciesProperties

app = typer.Typer(add_completion=False)
logger = logging.getLogger(__name__)


def _parse_arrhenius(data: Dict[str, Any]) -> ArrheniusKinetics:
    return ArrheniusKinetics(
        pre_exponential=float(data["A"]),
        activation_energy=float(data.get("Ea", 0.0)),
    )


def _parse_kinetics(data: Dict[str, Any]) -> Any:
    k_type = data.get("type", "power_law").lower()
    arrhenius = _parse_arrhenius(data["arrhenius"])
    basis = data.get("basis", "amount")

    if k_type == "power_law":
        return PowerLawKinetics(
            arrhenius=arrhenius, exponents=data.get("exponents", {}), basis=basis
        )
    elif k_type == "lhhw":
        ads_consts = {
            sp: _parse_arrhenius(p) for sp, p in data.get("adsorption_constants", {}).items()
        }
        return LHHWKinetics(
            arrhenius=arrhenius,
            numerator_exponents=data.get("numerator_exponents", {}),
            adsorption_constants=ads_consts,
            denominator_exponent=float(data.get("denominator_exponent", 1.0)),
            basis=basis,
        )
    else:
        raise ValueError(f"Unknown kinetics type: {k_type}")


def _parse_system(data: Dict[str, Any]) -> ChemicalSystem:
    species = []
    props = []
    for name, p in data.items():
        species.append(
            Species(
                name=name,
                elements={e: float(c) for e, c in p.get("elements", {}).items()},
                phase=p.get("phase", "aqueous"),
            )
        )
        props.append(
            SpeciesProperties(
                gibbs_energy=float(p.get("gibbs_energy", 0.0)),
                enthalpy=float(p.get("enthalpy", 0.0)),
            )
        )
    return ChemicalSystem(species, IdealSolutionThermo(props))


def build_problem(config: Dict[str, Any]) -> tuple[KineticPath, ChemicalState]:
    """Build the kinetic path and its initial state from a JSON problem."""
    system = _parse_system(config["species"])
    reactions = ReactionSystem(
        system,
        [
            Reaction(
                name=r["name"],
                stoichiometry={s: float(c) for s, c in r["stoichiometry"].items()},
                kinetics=_parse_kinetics(r["kinetics"]),
            )
            for r in config["reactions"]
        ],
    )
    options = KineticOptions.from_dict(config.get("options", {}))
    path = KineticPath(reactions, options=options)
    path.set_partition(config.get("partition", ""))

    state = ChemicalState(
        system,
        temperature=float(config.get("temperature", 298.15)),
        pressure=float(config.get("pressure", 1.0e5)),
        amounts={name: float(p.get("amount", 0.0)) for name, p in config["species"].items()},
    )
    return path, state


def _make_output(path: KineticPath, data: Dict[str, Any]) -> ChemicalOutput:
    output = ChemicalOutput(path.reactions)
    default = ["t"] + [f"n[{name}]" for name in path.system.species_names]
    output.data(data.get("data", default))
    output.header(data.get("header", []))
    output.terminal(bool(data.get("terminal", False)))
    if data.get("file"):
        output.file(data["file"])
    output.record()
    return output


def _profile(output: ChemicalOutput) -> Dict[str, list[float]]:
    columns = output.columns
    rows = np.array(output.records, dtype=float).reshape(-1, len(columns))
    return {name: rows[:, i].tolist() for i, name in enumerate(columns)}


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log progress.")] = False,
) -> None:
    """Reaction-path kinetics with instantaneous equilibrium."""
    if verbose:
        logging.basicConfig(
            level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s"
        )


@app.command()
def run(
    config_file: Annotated[
        Path, typer.Argument(help="Path to JSON problem file.")
    ],
    output: Annotated[
        Path | None, typer.Option(help="Path to save output JSON.")
    ] = None,
    project_file: Annotated[
        Path | None,
        typer.Option(help="Optional .kpproj file to persist results."),
    ] = None,
) -> None:
    """Integrate a kinetic path described by a config file."""
    with open(config_file, "r") as f:
        config = json.load(f)

    path, state = build_problem(config)
    t0 = float(config.get("time", {}).get("start", 0.0))
    duration = float(config["time"]["duration"])
    chemical_output = _make_output(path, config.get("output", {}))
    initial = state.copy()

    started = time.perf_counter()
    tfinal = path.solve(state, t0, duration, output=chemical_output)
    duration_ms = int((time.perf_counter() - started) * 1000.0)
    logger.info("Run finished in %d ms", duration_ms)

    payload = {
        "profile": _profile(chemical_output),
        "final": {
            "t": tfinal,
            "amounts": dict(zip(path.system.species_names, state.amounts.tolist())),
        },
    }
    json_output = json.dumps(payload, indent=2)
    typer.echo(json_output)

    if output:
        with open(output, "w") as f:
            f.write(json_output)

    if project_file is not None:
        connection = sqlite_store.connect(project_file)
        sqlite_store.ensure_schema(connection)
        project_id = sqlite_store.create_project(
            connection, name=config.get("name", config_file.stem), notes=config.get("notes")
        )
        sqlite_store.save_species(
            connection, project_id, path.system.species, path.partition.kinetic_species_names()
        )
        for r in config["reactions"]:
            sqlite_store.save_reaction(
                connection, project_id, r["name"], r["stoichiometry"], r["kinetics"]
            )
        run_id = sqlite_store.save_run(
            connection,
            project_id=project_id,
            partition=config.get("partition", ""),
            options=config.get("options", {}),
            t_start=t0,
            t_final=tfinal,
            duration_ms=duration_ms,
        )
        sqlite_store.save_state(connection, run_id, "initial", initial)
        sqlite_store.save_state(connection, run_id, "final", state)
        sqlite_store.save_profile(
            connection, run_id, chemical_output.columns, chemical_output.records
        )
        connection.close()
        logger.info("Saved run %d to %s", run_id, project_file)


@app.command()
def decay_demo(
    rate_constant: Annotated[float, typer.Option(help="First-order rate constant (1/s).")] = 0.5,
    duration: Annotated[float, typer.Option(help="Simulation duration (s).")] = 10.0,
    initial_amount: Annotated[float, typer.Option(help="Initial amount of A (mol).")] = 1.0,
) -> None:
    """Run a first-order A -> B decay with A kinetic and B in equilibrium."""
    config = {
        "species": {
            "A": {"elements": {"X": 1}, "amount": initial_amount},
            "B": {"elements": {"X": 1}, "amount": 1e-6},
        },
        "reactions": [
            {
                "name": "decay",
                "stoichiometry": {"A": -1, "B": 1},
                "kinetics": {
                    "type": "power_law",
                    "arrhenius": {"A": rate_constant, "Ea": 0.0},
                    "exponents": {"A": 1.0},
                },
            }
        ],
        "partition": "kinetic = A",
        "options": {"ode": {"rtol": 1e-10, "atol": 1e-14}},
    }
    path, state = build_problem(config)
    chemical_output = _make_output(path, {"data": "t n[A] n[B]"})
    path.solve(state, 0.0, duration, output=chemical_output)

    profile = _profile(chemical_output)
    times = np.array(profile["t"])
    analytic = initial_amount * np.exp(-rate_constant * times)
    error = np.abs(np.array(profile["n[A]"]) - analytic) / analytic

    payload = {
        "time": profile["t"],
        "A": profile["n[A]"],
        "B": profile["n[B]"],
        "A_analytic": analytic.tolist(),
        "max_relative_error": float(error.max()),
    }
    typer.echo(json.dumps(payload, indent=2))

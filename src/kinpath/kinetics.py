"""Kinetics helpers and rate expressions.

Every rate law returns a :class:`~kinpath.models.ChemicalScalar`: the rate of
reaction progress (mol/s) and its gradient w.r.t. the species amounts. The
gradient is what lets the kinetic path assemble an analytic Jacobian for the
stiff integrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Collection, Mapping, Protocol

import numpy as np

from kinpath.constants import R_GAS
from kinpath.models import ChemicalScalar, ChemicalVector

BASES = ("amount", "activity")


class KineticsModel(Protocol):
    @property
    def species(self) -> Collection[str]:
        """Names of the species the rate depends on."""
        ...

    def rate(
        self,
        temperature: float,
        pressure: float,
        amounts: ChemicalVector,
        activities: ChemicalVector,
        index: Mapping[str, int],
    ) -> ChemicalScalar:
        """Calculate the reaction rate and its gradient w.r.t. species amounts."""
        ...


@dataclass(frozen=True)
class ArrheniusKinetics:
    pre_exponential: float
    activation_energy: float

    def rate_constant(self, temperature: float) -> float:
        return self.pre_exponential * np.exp(-self.activation_energy / (R_GAS * temperature))


def _basis_quantity(
    basis: str, amounts: ChemicalVector, activities: ChemicalVector
) -> ChemicalVector:
    if basis == "amount":
        return amounts
    if basis == "activity":
        return activities
    raise ValueError(f"Unknown rate basis: {basis!r} (expected one of {BASES})")


def _power_product(
    quantity: ChemicalVector, exponents: Mapping[str, float], index: Mapping[str, int]
) -> ChemicalScalar:
    """Product of q_i^alpha_i and its gradient w.r.t. species amounts."""
    num_species = quantity.ddn.shape[1]
    if not exponents:
        return ChemicalScalar(1.0, np.zeros(num_species))

    rows = [index[name] for name in exponents]
    alpha = np.array(list(exponents.values()), dtype=float)
    # Amounts overshooting depletion count as zero
    raw = quantity.val[rows]
    q = np.maximum(raw, 0.0)
    terms = q**alpha
    value = float(np.prod(terms))

    dvalue_dq = np.zeros(len(rows))
    for m in range(len(rows)):
        if alpha[m] == 0.0 or raw[m] < 0.0 or (q[m] == 0.0 and alpha[m] < 1.0):
            continue
        others = np.prod(np.delete(terms, m))
        dvalue_dq[m] = alpha[m] * q[m] ** (alpha[m] - 1.0) * others

    return ChemicalScalar(value, dvalue_dq @ quantity.ddn[rows, :])


@dataclass(frozen=True)
class PowerLawKinetics:
    """Rate = k(T) * product(q_i^alpha_i), with q amounts or activities."""

    arrhenius: ArrheniusKinetics
    exponents: Mapping[str, float] = field(default_factory=dict)
    basis: str = "amount"

    @property
    def species(self) -> Collection[str]:
        return tuple(self.exponents)

    def rate(
        self,
        temperature: float,
        pressure: float,
        amounts: ChemicalVector,
        activities: ChemicalVector,
        index: Mapping[str, int],
    ) -> ChemicalScalar:
        k = self.arrhenius.rate_constant(temperature)
        q = _basis_quantity(self.basis, amounts, activities)
        product = _power_product(q, self.exponents, index)
        return ChemicalScalar(k * product.val, k * product.ddn)


@dataclass(frozen=True)
class LHHWKinetics:
    """Langmuir-Hinshelwood / Eley-Rideal kinetics.

    Rate = (k * product(q_i^alpha_i)) / (1 + sum(K_j * q_j))^m
    """
    arrhenius: ArrheniusKinetics
    numerator_exponents: Mapping[str, float]
    adsorption_constants: Mapping[str, ArrheniusKinetics]
    denominator_exponent: float = 1.0
    basis: str = "amount"

    @property
    def species(self) -> Collection[str]:
        return tuple(dict.fromkeys([*self.numerator_exponents, *self.adsorption_constants]))

    def rate(
        self,
        temperature: float,
        pressure: float,
        amounts: ChemicalVector,
        activities: ChemicalVector,
        index: Mapping[str, int],
    ) -> ChemicalScalar:
        q = _basis_quantity(self.basis, amounts, activities)

        # Numerator
        k = self.arrhenius.rate_constant(temperature)
        product = _power_product(q, self.numerator_exponents, index)
        numerator = k * product.val
        dnumerator = k * product.ddn

        # Denominator
        denominator_sum = 1.0
        ddenominator_sum = np.zeros_like(dnumerator)
        for name, ads_params in self.adsorption_constants.items():
            k_ads = ads_params.rate_constant(temperature)
            i = index[name]
            if q.val[i] > 0.0:
                denominator_sum += k_ads * q.val[i]
                ddenominator_sum += k_ads * q.ddn[i]

        m = self.denominator_exponent
        denominator = denominator_sum**m
        value = numerator / denominator
        ddn = dnumerator / denominator - m * value / denominator_sum * ddenominator_sum
        return ChemicalScalar(float(value), ddn)

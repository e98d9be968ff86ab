"""
Chain fee components.

The chain charges base_fee + len_fee + adjusted weight fee. Base and length
fees come straight from the node's fee details; the weight fee is recomputed
from the extrinsic's actual dispatch weight with the runtime's weight-to-fee
polynomial, scaled by the fee multiplier in force at the parent block.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from feeaudit.core.chain_types import FeeComponents
from feeaudit.core.constants import FEE_MULTIPLIER_ONE, PERBILL


@dataclass(frozen=True)
class WeightToFeeCoefficient:
    """One term of the weight-to-fee polynomial.

    coeff_frac is in Perbill; negative terms are subtracted.
    """

    coeff_integer: int = 0
    coeff_frac: int = 0
    negative: bool = False
    degree: int = 1

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "WeightToFeeCoefficient":
        return cls(
            coeff_integer=int(raw.get("coeffInteger", 0)),
            coeff_frac=int(raw.get("coeffFrac", 0)),
            negative=bool(raw.get("negative", False)),
            degree=int(raw.get("degree", 1)),
        )

    def evaluate(self, weight: int) -> int:
        power = weight**self.degree
        return self.coeff_integer * power + self.coeff_frac * power // PERBILL


def unadjusted_weight_fee(weight: int, coefficients: Iterable[WeightToFeeCoefficient]) -> int:
    fee = 0
    for coefficient in coefficients:
        term = coefficient.evaluate(weight)
        fee = fee - term if coefficient.negative else fee + term
    return max(fee, 0)


def compute_fee_components(
    base_fee: int,
    len_fee: int,
    weight: int,
    fee_multiplier: int,
    coefficients: Iterable[WeightToFeeCoefficient],
) -> FeeComponents:
    """Fee components of one extrinsic with the weight fee recomputed.

    Args:
        base_fee: Inclusion base fee reported by the node
        len_fee: Inclusion length fee reported by the node
        weight: Actual dispatch weight from ExtrinsicSuccess/ExtrinsicFailed
        fee_multiplier: FixedU128 fee multiplier at the parent block
        coefficients: Runtime weight-to-fee polynomial
    """
    adjusted = unadjusted_weight_fee(weight, coefficients) * fee_multiplier // FEE_MULTIPLIER_ONE
    return FeeComponents(base_fee=base_fee, len_fee=len_fee, weight_fee=adjusted)

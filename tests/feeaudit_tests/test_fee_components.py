from feeaudit.core.chain_types import FeeComponents
from feeaudit.core.constants import FEE_MULTIPLIER_ONE
from feeaudit.core.fee_components import (
    WeightToFeeCoefficient,
    compute_fee_components,
    unadjusted_weight_fee,
)


def test_coefficient_from_node_mapping():
    coefficient = WeightToFeeCoefficient.from_mapping(
        {"coeffInteger": "50000", "coeffFrac": 0, "negative": False, "degree": 1}
    )
    assert coefficient == WeightToFeeCoefficient(coeff_integer=50_000)


def test_fractional_coefficient_is_perbill():
    half = WeightToFeeCoefficient(coeff_integer=1, coeff_frac=500_000_000)
    assert half.evaluate(1000) == 1500


def test_negative_terms_are_subtracted_and_floor_at_zero():
    coefficients = [
        WeightToFeeCoefficient(coeff_integer=3),
        WeightToFeeCoefficient(coeff_integer=1, negative=True),
    ]
    assert unadjusted_weight_fee(10, coefficients) == 20
    assert unadjusted_weight_fee(10, [WeightToFeeCoefficient(coeff_integer=1, negative=True)]) == 0


def test_weight_fee_scaled_by_multiplier():
    fees = compute_fee_components(
        base_fee=125_000_000,
        len_fee=1_000,
        weight=200_000,
        fee_multiplier=FEE_MULTIPLIER_ONE * 3 // 2,
        coefficients=[WeightToFeeCoefficient(coeff_integer=50_000)],
    )

    assert fees == FeeComponents(base_fee=125_000_000, len_fee=1_000, weight_fee=15_000_000_000)
    assert fees.total_fees == 125_000_000 + 1_000 + 15_000_000_000

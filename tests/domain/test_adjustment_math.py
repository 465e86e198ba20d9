"""Pure adjustment arithmetic."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from debit_kernel.domain.adjustments import (
    apply_delta,
    recompute_final_amount,
    require_positive_cents,
    signed_delta,
    validate_adjustment,
)
from debit_kernel.domain.dtos import StagedAdjustment
from debit_kernel.exceptions import NegativeFinalAmountError, ValidationError


def _adj(kind, amount):
    return StagedAdjustment(kind, amount, "reason", "admin")


class TestValidation:
    def test_normalizes_text(self):
        adjustment = validate_adjustment("increase", 10, "  late fee ", " ops ")
        assert adjustment.reason == "late fee"
        assert adjustment.created_by == "ops"

    @pytest.mark.parametrize("value", [0, -5, 1.5, "10", True, None])
    def test_amount_must_be_positive_int(self, value):
        with pytest.raises(ValidationError):
            require_positive_cents("amount_cents", value)

    def test_unknown_type(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_adjustment("refund", 10, "r", "a")
        assert exc_info.value.field == "type"


class TestArithmetic:
    def test_signed_delta(self):
        assert signed_delta(_adj("increase", 300)) == 300
        assert signed_delta(_adj("decrease", 300)) == -300

    def test_apply_delta_to_zero(self):
        assert apply_delta("p", 500, -500) == 0

    def test_apply_delta_below_zero(self):
        with pytest.raises(NegativeFinalAmountError):
            apply_delta("p", 500, -501)

    def test_recompute_in_order(self):
        steps = [_adj("decrease", 900), _adj("increase", 50)]
        assert recompute_final_amount("p", 1000, steps) == 150

    def test_recompute_rejects_negative_intermediate(self):
        steps = [_adj("decrease", 1100), _adj("increase", 500)]
        with pytest.raises(NegativeFinalAmountError):
            recompute_final_amount("p", 1000, steps)

    @given(
        original=st.integers(min_value=1, max_value=10_000),
        increases=st.lists(st.integers(min_value=1, max_value=1_000), max_size=10),
    )
    def test_increases_only_sum(self, original, increases):
        steps = [_adj("increase", amount) for amount in increases]
        assert recompute_final_amount("p", original, steps) == original + sum(increases)

"""
Tests for rentals_engines.late_fees -- rule matching and fee computation.

Validates the four fee strategies, clamp order, tier selection, apply-once
vs incremental charging, rule validation, the embedded lease config and
the invoice adapter.
"""

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from rentals_kernel.domain.payment import (
    EmbeddedFeeType,
    LateFeeConfig,
    PaymentStatus,
    PaymentType,
)
from rentals_kernel.exceptions import MalformedRuleError, UnknownRuleError
from rentals_engines.chargeable import InvoiceChargeable, InvoiceView, PaymentChargeable
from rentals_engines.late_fees import (
    EMBEDDED_RULE_ID,
    DailyFee,
    FeeTier,
    FixedFee,
    LateFeeRule,
    PercentageFee,
    RuleConditions,
    TieredFee,
    build_late_fee_payment,
    calculate_late_fee,
    compute_fee,
    match_rule,
    rule_from_embedded_config,
    rules_for_payment,
    select_rules,
)


def _rule(structure, **kwargs) -> LateFeeRule:
    kwargs.setdefault("rule_id", "r1")
    kwargs.setdefault("name", "Rule")
    return LateFeeRule(fee_structure=structure, **kwargs)


@pytest.fixture
def rent(payment_builder):
    return PaymentChargeable(payment_builder(amount="1500.00"))


# =============================================================================
# Strategies
# =============================================================================


class TestComputeFee:
    def test_fixed_fee_nine_days_overdue(self, rent, fixed_rule):
        calc = calculate_late_fee(rent, fixed_rule, days_overdue=9)

        assert calc is not None
        assert calc.amount == Decimal("50.00")
        assert calc.total_fee == Decimal("50.00")
        assert calc.days_after_grace == 4
        assert calc.breakdown.base_fee == Decimal("50.00")
        assert calc.breakdown.cap_applied is False
        assert calc.reason == (
            "Late fee applied after 9 days overdue (4 days after 5-day grace period)"
        )

    def test_percentage_of_base_amount(self, rent):
        result = compute_fee(rent, _rule(PercentageFee(Decimal("5"))), 10)

        assert result.fee == Decimal("75.00")

    def test_daily_compound_scenario(self, rent):
        rule = _rule(DailyFee(Decimal("5.00"), compound=True), grace_period_days=5)

        result = compute_fee(rent, rule, 10)

        assert result.breakdown.daily_fees == Decimal("25.00")
        assert result.breakdown.compound_fees == Decimal("2.50")
        assert result.fee == Decimal("27.50")

    def test_daily_without_compound(self, rent):
        rule = _rule(DailyFee(Decimal("5.00")), grace_period_days=5)

        result = compute_fee(rent, rule, 10)

        assert result.breakdown.compound_fees == Decimal("0.00")
        assert result.fee == Decimal("25.00")

    def test_max_cap_applied(self, rent):
        rule = _rule(PercentageFee(Decimal("20")), max_amount=Decimal("200.00"))

        result = compute_fee(rent, rule, 10)

        assert result.fee == Decimal("200.00")
        assert result.breakdown.cap_applied is True
        assert result.breakdown.total_before_cap == Decimal("300.00")

    def test_min_floor_applied(self, rent):
        rule = _rule(PercentageFee(Decimal("1")), min_amount=Decimal("25.00"))

        assert compute_fee(rent, rule, 10).fee == Decimal("25.00")

    def test_rounding_half_up(self, payment_builder):
        chargeable = PaymentChargeable(payment_builder(amount="100.10"))
        rule = _rule(PercentageFee(Decimal("2.5")))

        # 100.10 * 2.5% = 2.5025
        assert compute_fee(chargeable, rule, 10).fee == Decimal("2.50")

        chargeable = PaymentChargeable(payment_builder(amount="100.20"))
        # 100.20 * 2.5% = 2.505
        assert compute_fee(chargeable, rule, 10).fee == Decimal("2.51")


class TestTieredFee:
    TIERS = TieredFee((
        FeeTier(5, amount=Decimal("25.00")),
        FeeTier(10, amount=Decimal("50.00")),
        FeeTier(15, amount=Decimal("75.00")),
        FeeTier(30, amount=Decimal("150.00")),
    ))

    def test_twelve_days_selects_ten_day_tier(self, rent):
        result = compute_fee(rent, _rule(self.TIERS, grace_period_days=3), 12)

        assert result.fee == Decimal("50.00")

    @pytest.mark.parametrize(
        "days, expected",
        [(5, "25.00"), (9, "25.00"), (10, "50.00"), (29, "75.00"), (45, "150.00")],
    )
    def test_largest_qualifying_tier(self, rent, days, expected):
        assert compute_fee(rent, _rule(self.TIERS), days).fee == Decimal(expected)

    def test_no_qualifying_tier_is_zero(self, rent):
        assert compute_fee(rent, _rule(self.TIERS, grace_period_days=0), 3).fee == Decimal("0.00")
        assert calculate_late_fee(rent, _rule(self.TIERS, grace_period_days=0), 3) is None

    def test_no_qualifying_tier_still_floored_by_minimum(self, rent):
        rule = _rule(self.TIERS, grace_period_days=0, min_amount=Decimal("10.00"))

        assert compute_fee(rent, rule, 3).fee == Decimal("10.00")
        assert calculate_late_fee(rent, rule, 3).amount == Decimal("10.00")

    def test_percentage_tier(self, rent):
        tiers = TieredFee((
            FeeTier(5, percentage=Decimal("2")),
            FeeTier(20, percentage=Decimal("5")),
        ))

        assert compute_fee(rent, _rule(tiers), 21).fee == Decimal("75.00")


# =============================================================================
# Apply-once and incremental
# =============================================================================


class TestChargingModes:
    def test_apply_once_with_existing_fee_charges_nothing(self, rent, fixed_rule):
        assert calculate_late_fee(rent, fixed_rule, 9, already_applied=Decimal("50.00")) is None

    def test_incremental_charges_delta(self, rent):
        rule = _rule(DailyFee(Decimal("5.00")), grace_period_days=5, apply_once=False)

        calc = calculate_late_fee(rent, rule, 12, already_applied=Decimal("25.00"))

        assert calc.total_fee == Decimal("35.00")
        assert calc.amount == Decimal("10.00")

    def test_incremental_without_growth_charges_nothing(self, rent):
        rule = _rule(DailyFee(Decimal("5.00")), grace_period_days=5, apply_once=False)

        assert calculate_late_fee(rent, rule, 10, already_applied=Decimal("25.00")) is None


# =============================================================================
# Matching
# =============================================================================


class TestMatchRule:
    def test_first_match_wins(self, rent):
        first = _rule(FixedFee(Decimal("10")), rule_id="first")
        second = _rule(FixedFee(Decimal("20")), rule_id="second")

        assert match_rule(rent, [first, second], 9).rule_id == "first"

    def test_skips_disabled_and_wrong_type(self, rent):
        disabled = _rule(FixedFee(Decimal("10")), rule_id="disabled", enabled=False)
        utility_only = _rule(
            FixedFee(Decimal("10")), rule_id="utility",
            applicable_payment_types=frozenset({"utility"}),
        )
        fallback = _rule(FixedFee(Decimal("10")), rule_id="fallback")

        assert match_rule(rent, [disabled, utility_only, fallback], 9).rule_id == "fallback"

    def test_within_grace_does_not_match(self, rent, fixed_rule):
        assert match_rule(rent, [fixed_rule], 5) is None
        assert match_rule(rent, [fixed_rule], 6) is fixed_rule

    def test_amount_conditions(self, rent):
        small_only = _rule(
            FixedFee(Decimal("10")), rule_id="small",
            conditions=RuleConditions(max_payment_amount=Decimal("1000")),
        )
        large_only = _rule(
            FixedFee(Decimal("99")), rule_id="large",
            conditions=RuleConditions(min_payment_amount=Decimal("1000")),
        )

        assert match_rule(rent, [small_only, large_only], 9).rule_id == "large"

    def test_select_rules_by_id(self, fixed_rule):
        other = _rule(FixedFee(Decimal("10")), rule_id="other")

        assert select_rules([fixed_rule, other], ["other"]) == (other,)

    def test_select_unknown_rule_raises(self, fixed_rule):
        with pytest.raises(UnknownRuleError) as exc_info:
            select_rules([fixed_rule], ["missing"])

        assert exc_info.value.rule_id == "missing"
        assert exc_info.value.code == "UNKNOWN_RULE"


class TestRuleValidation:
    @pytest.mark.parametrize(
        "structure, kwargs",
        [
            (FixedFee(Decimal("-1")), {}),
            (PercentageFee(Decimal("-5")), {}),
            (DailyFee(Decimal("-1")), {}),
            (TieredFee(()), {}),
            (TieredFee((FeeTier(5),)), {}),
            (TieredFee((FeeTier(5, amount=Decimal("1"), percentage=Decimal("1")),)), {}),
            (FixedFee(Decimal("10")), {"min_amount": Decimal("50"), "max_amount": Decimal("10")}),
            (FixedFee(Decimal("10")), {"grace_period_days": -1}),
            (FixedFee(Decimal("10")), {"rule_id": ""}),
        ],
    )
    def test_malformed_rules_rejected(self, structure, kwargs):
        with pytest.raises(MalformedRuleError):
            _rule(structure, **kwargs)


# =============================================================================
# Embedded config, child payment and invoices
# =============================================================================


class TestEmbeddedConfig:
    def test_disabled_config_has_no_rule(self):
        assert rule_from_embedded_config(LateFeeConfig(enabled=False)) is None

    def test_embedded_rule_evaluated_first(self, payment_builder, fixed_rule, embedded_fixed_config):
        payment = payment_builder(late_fee_config=embedded_fixed_config)

        rules = rules_for_payment(payment, [fixed_rule])

        assert rules[0].rule_id == EMBEDDED_RULE_ID
        assert match_rule(PaymentChargeable(payment), rules, 9).rule_id == EMBEDDED_RULE_ID

    def test_daily_embedded_rule_is_incremental(self):
        rule = rule_from_embedded_config(LateFeeConfig(
            enabled=True,
            fee_type=EmbeddedFeeType.DAILY,
            fee_amount=Decimal("5"),
            compound_daily=True,
        ))

        assert rule.apply_once is False
        assert rule.fee_structure == DailyFee(Decimal("5"), compound=True)

    def test_percentage_embedded_rule(self, rent):
        rule = rule_from_embedded_config(LateFeeConfig(
            enabled=True,
            fee_type=EmbeddedFeeType.PERCENTAGE,
            fee_amount=Decimal("5"),
            max_fee=Decimal("60"),
        ))

        assert compute_fee(rent, rule, 9).fee == Decimal("60.00")


class TestLateFeePayment:
    def test_child_payment_linked_to_origin(self, payment_builder):
        origin = payment_builder()

        child = build_late_fee_payment(origin, Decimal("50.00"), "reason", date(2024, 1, 10))

        assert child.payment_type == PaymentType.LATE_FEE
        assert child.status == PaymentStatus.PENDING
        assert child.parent_payment_id == origin.payment_id
        assert child.tenant_id == origin.tenant_id
        assert child.amount == Decimal("50.00")
        assert child.due_date == date(2024, 1, 10)
        assert child.payment_id != origin.payment_id


class TestInvoiceChargeable:
    def test_base_excludes_existing_late_fee(self):
        invoice = InvoiceChargeable(InvoiceView(
            invoice_id="INV-1",
            total_amount=Decimal("1050.00"),
            due_date=date(2024, 1, 1),
            late_fee_amount=Decimal("50.00"),
            line_item_types=frozenset({"rent", "utility"}),
        ))
        rule = _rule(PercentageFee(Decimal("10")), applicable_payment_types=frozenset({"rent"}))

        assert invoice.base_amount == Decimal("1000.00")
        assert match_rule(invoice, [rule], 9) is rule
        assert compute_fee(invoice, rule, 9).fee == Decimal("100.00")

    def test_no_matching_line_item_type(self):
        invoice = InvoiceChargeable(InvoiceView(
            invoice_id="INV-2",
            total_amount=Decimal("80.00"),
            due_date=date(2024, 1, 1),
            line_item_types=frozenset({"maintenance"}),
        ))
        rule = _rule(FixedFee(Decimal("10")), applicable_payment_types=frozenset({"rent"}))

        assert match_rule(invoice, [rule], 9) is None


# =============================================================================
# Properties
# =============================================================================

_money = st.decimals(min_value=Decimal("0"), max_value=Decimal("100000"), places=2)


@st.composite
def clamped_rules(draw):
    low = draw(st.decimals(min_value=Decimal("0"), max_value=Decimal("500"), places=2))
    high = draw(st.decimals(min_value=low, max_value=Decimal("1000"), places=2))
    structure = draw(st.one_of(
        _money.map(FixedFee),
        st.decimals(min_value=Decimal("0"), max_value=Decimal("50"), places=2).map(PercentageFee),
        st.builds(
            DailyFee,
            st.decimals(min_value=Decimal("0"), max_value=Decimal("100"), places=2),
            st.booleans(),
        ),
    ))
    return _rule(structure, min_amount=low, max_amount=high)


class TestFeeProperties:
    @given(rule=clamped_rules(), amount=_money, days=st.integers(min_value=0, max_value=365))
    def test_fee_within_min_and_max(self, rule, amount, days):
        chargeable = InvoiceChargeable(InvoiceView("INV-P", amount, date(2024, 1, 1)))

        fee = compute_fee(chargeable, rule, days).fee

        assert rule.min_amount <= fee <= rule.max_amount
        assert fee == fee.quantize(Decimal("0.01"))

"""Unit tests for the validation pipeline"""

import dataclasses
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from spendguard.domain.intents import build_intent
from spendguard.domain.models import (
    CheckName,
    CheckStatus,
    GeoRestriction,
    IntentStatus,
    MerchantCategory,
    PIPELINE_ORDER,
    Policy,
    RiskLevel,
    TransactionContext,
)
from spendguard.domain.rule_engine import assess_risk, category_overlap, fence_bounds, validate_transaction

NOW = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)


def _intent(**policy_fields):
    fields = {"amount_limit": Decimal("500"), "allowed_categories": frozenset({"books"})}
    fields.update(policy_fields)
    return build_intent("user_test", "test intent", Policy(**fields), NOW)


def _status_of(result, name):
    return next(c.status for c in result.checks if c.name == name)


def test_compliant_books_payment_approved(books_intent, merchants, context):
    """Books intent at a tier-1 bookstore within the cap is approved"""
    result = validate_transaction(books_intent, merchants["MRC001"], Decimal("320"), context)

    assert result.approved is True
    assert result.failed_at_check is None
    assert result.forwarded_to_settlement is True
    assert result.settlement_reference.startswith("SETL-")
    assert all(c.status == CheckStatus.PASSED for c in result.checks)
    assert [c.name for c in result.checks] == list(PIPELINE_ORDER)
    # Validation alone never consumes the intent
    assert books_intent.amount_remaining == Decimal("500.00")


def test_food_merchant_rejected_at_category(books_intent, merchants, context):
    """Books-only intent at a restaurant fails the category stage"""
    result = validate_transaction(books_intent, merchants["MRC002"], Decimal("180"), context)

    assert result.approved is False
    assert result.failed_at_check == CheckName.MERCHANT_CATEGORY
    assert "category mismatch" in result.violation_reason
    assert result.settlement_reference is None
    assert result.requires_escalation is False


def test_mixed_merchant_always_escalated(merchants, context):
    """Mixed-category merchant fails even when its tags overlap the allow-list"""
    intent = _intent(allowed_categories=frozenset({"books", "stationery"}), allowed_merchant_codes=frozenset({"5999"}))
    mixmart = merchants["MRC006"]
    assert category_overlap(intent.policy.allowed_categories, mixmart)

    result = validate_transaction(intent, mixmart, Decimal("100"), context)

    assert result.approved is False
    assert result.failed_at_check == CheckName.MERCHANT_CATEGORY
    assert result.requires_escalation is True


def test_missing_proof_rejected_last(merchants, context):
    """Proof stage fails after every earlier stage passed"""
    intent = _intent(proof_required=True)
    result = validate_transaction(intent, merchants["MRC001"], Decimal("100"), context)

    assert result.failed_at_check == CheckName.PROOF_REQUIREMENT
    assert all(c.status == CheckStatus.PASSED for c in result.checks[:-1])

    with_proof = dataclasses.replace(context, proof_provided=True)
    assert validate_transaction(intent, merchants["MRC001"], Decimal("100"), with_proof).approved is True


def test_stages_after_failure_not_evaluated(books_intent, merchants, context):
    """No stage after the first failure reports passed or failed"""
    result = validate_transaction(books_intent, merchants["MRC001"], Decimal("900"), context)

    assert result.failed_at_check == CheckName.AMOUNT_CAP
    failed_index = PIPELINE_ORDER.index(CheckName.AMOUNT_CAP)
    for check in result.checks[failed_index + 1:]:
        assert check.status == CheckStatus.NOT_EVALUATED
        assert check.passed is None
    assert len(result.checks) == len(PIPELINE_ORDER)


def test_validation_is_repeatable(books_intent, merchants, context):
    """Same inputs produce equal results, settlement reference included"""
    first = validate_transaction(books_intent, merchants["MRC001"], Decimal("320"), context)
    second = validate_transaction(books_intent, merchants["MRC001"], Decimal("320"), context)

    assert first == second


def test_settlement_reference_unique_per_transaction(books_intent, merchants, context):
    """Different transaction ids give different references, even under one request id"""
    other = dataclasses.replace(context, transaction_id="TXN-other")
    first = validate_transaction(books_intent, merchants["MRC001"], Decimal("320"), context)
    second = validate_transaction(books_intent, merchants["MRC001"], Decimal("320"), other)

    assert first.settlement_reference != second.settlement_reference


def test_emergency_override_bypasses_all_rules(merchants, context):
    """Override approves without an intent and skips every later stage"""
    emergency = dataclasses.replace(context, emergency_override=True)
    result = validate_transaction(None, merchants["MRC006"], Decimal("5000"), emergency)

    assert result.approved is True
    assert result.emergency_bypass is True
    assert result.settlement_reference.startswith("SETL-EMER-")
    assert result.checks[0].status == CheckStatus.PASSED
    assert all(c.status == CheckStatus.NOT_EVALUATED for c in result.checks[1:])
    assert "Emergency override used" in result.risk_assessment.factors


def test_no_intent_rejected_at_status(merchants, context):
    """Payment with no applicable intent fails the status stage"""
    result = validate_transaction(None, merchants["MRC001"], Decimal("10"), context)

    assert result.failed_at_check == CheckName.INTENT_STATUS
    assert "No applicable spending intent" in result.violation_reason


def test_inactive_intent_rejected(books_intent, merchants, context):
    """Exhausted intent cannot take another payment"""
    books_intent.status = IntentStatus.EXHAUSTED
    result = validate_transaction(books_intent, merchants["MRC001"], Decimal("10"), context)

    assert result.failed_at_check == CheckName.INTENT_STATUS
    assert "exhausted" in result.violation_reason


def test_expired_intent_rejected(books_intent, merchants):
    """Request after expiry fails the status stage"""
    late = TransactionContext(requested_at=books_intent.expires_at + timedelta(seconds=1))
    result = validate_transaction(books_intent, merchants["MRC001"], Decimal("10"), late)

    assert result.failed_at_check == CheckName.INTENT_STATUS
    assert "expired" in result.violation_reason


def test_request_before_creation_outside_time_window(books_intent, merchants):
    """Request timestamped before the intent opened fails the time window"""
    early = TransactionContext(requested_at=NOW - timedelta(minutes=5))
    result = validate_transaction(books_intent, merchants["MRC001"], Decimal("10"), early)

    assert result.failed_at_check == CheckName.TIME_WINDOW


def test_non_positive_amount_rejected(books_intent, merchants, context):
    """Zero amount fails the cap stage"""
    result = validate_transaction(books_intent, merchants["MRC001"], Decimal("0"), context)

    assert result.failed_at_check == CheckName.AMOUNT_CAP
    assert result.violation_reason == "Invalid transaction amount."


def test_amount_equal_to_remaining_passes(books_intent, merchants, context):
    """Spending exactly the remaining balance is allowed"""
    assert validate_transaction(books_intent, merchants["MRC001"], Decimal("500"), context).approved is True


def test_geo_fence_city_match(merchants, context):
    """Chennai-restricted intent accepts a Chennai bookstore"""
    intent = _intent(geo_restriction=GeoRestriction(city="Chennai"))
    result = validate_transaction(intent, merchants["MRC001"], Decimal("50"), context)

    assert result.approved is True


def test_geo_fence_city_alias(merchants, context):
    """City aliases resolve to the canonical city"""
    intent = _intent(
        allowed_categories=frozenset({"electronics"}),
        enforcement_tier=2,
        geo_restriction=GeoRestriction(city="Bangalore"),
    )
    assert validate_transaction(intent, merchants["MRC004"], Decimal("50"), context).approved is True


def test_geo_fence_outside_city(merchants, context):
    """Mumbai supermarket is outside a Chennai fence"""
    intent = _intent(allowed_categories=frozenset({"grocery"}), geo_restriction=GeoRestriction(city="Chennai"))
    result = validate_transaction(intent, merchants["MRC003"], Decimal("50"), context)

    assert result.failed_at_check == CheckName.GEO_FENCE
    assert "outside the geo restriction" in result.violation_reason


def test_geo_fence_requires_both_coordinates_and_city(merchants, context):
    """Coordinates inside the box with a mismatching city name still fail"""
    relabelled = dataclasses.replace(merchants["MRC001"], city="Madurai")
    intent = _intent(geo_restriction=GeoRestriction(city="Chennai"))
    result = validate_transaction(intent, relabelled, Decimal("50"), context)

    assert result.failed_at_check == CheckName.GEO_FENCE
    assert "does not match" in result.violation_reason


def test_geo_fence_unknown_city_matches_on_name(merchants, context):
    """City with no bounding box falls back to the city name"""
    local = dataclasses.replace(merchants["MRC001"], city="Madurai", latitude=9.93, longitude=78.12)
    intent = _intent(geo_restriction=GeoRestriction(city="Madurai"))
    result = validate_transaction(intent, local, Decimal("50"), context)

    assert result.approved is True
    geo = next(c for c in result.checks if c.name == CheckName.GEO_FENCE)
    assert "city name only" in geo.detail


def test_geo_fence_region(merchants, context):
    """Region restriction compares the merchant's region"""
    intent = _intent(allowed_categories=frozenset({"education"}), enforcement_tier=2,
                     geo_restriction=GeoRestriction(region="Maharashtra"))
    assert validate_transaction(intent, merchants["MRC008"], Decimal("50"), context).approved is True

    karnataka_only = _intent(geo_restriction=GeoRestriction(region="Karnataka"))
    result = validate_transaction(karnataka_only, merchants["MRC001"], Decimal("50"), context)
    assert result.failed_at_check == CheckName.GEO_FENCE


def test_geo_radius_narrows_city_box(merchants, context):
    """A small radius around the city centre excludes merchants near the edge"""
    box = fence_bounds("chennai", radius_km=1)
    assert box.max_lat - box.min_lat < 0.05

    edge_store = dataclasses.replace(merchants["MRC001"], latitude=13.25, longitude=80.35)
    intent = _intent(geo_restriction=GeoRestriction(city="Chennai", radius_km=1))
    result = validate_transaction(intent, edge_store, Decimal("50"), context)

    assert result.failed_at_check == CheckName.GEO_FENCE


def test_merchant_code_match_is_enough(merchants, context):
    """Allow-listed classification code passes without a label overlap"""
    intent = _intent(allowed_categories=frozenset(), allowed_merchant_codes=frozenset({"5812"}))
    assert validate_transaction(intent, merchants["MRC002"], Decimal("50"), context).approved is True


def test_product_tag_overlap_is_enough(merchants, context):
    """Intent label matched by a merchant product tag passes"""
    intent = _intent(allowed_categories=frozenset({"meals"}))
    assert validate_transaction(intent, merchants["MRC002"], Decimal("50"), context).approved is True


def test_tier_requirement(merchants, context):
    """Tier-3 intent rejects a tier-2 pharmacy and accepts a tier-3 hospital"""
    intent = _intent(allowed_categories=frozenset({"medical"}), enforcement_tier=3)

    pharmacy = validate_transaction(intent, merchants["MRC005"], Decimal("50"), context)
    assert pharmacy.failed_at_check == CheckName.MERCHANT_TIER
    assert "Tier 3" in pharmacy.violation_reason

    hospital = validate_transaction(intent, merchants["MRC007"], Decimal("50"), context)
    assert hospital.approved is True


def test_risk_assessment_low_for_certified_merchant(merchants):
    """Certified low-risk merchant with a small amount is low risk"""
    risk = assess_risk(merchants["MRC001"], Decimal("100"))

    assert risk.level == RiskLevel.LOW
    assert risk.factors == ()


def test_risk_assessment_flags(merchants):
    """Mixed, risky and uncertified merchant is high risk with every factor listed"""
    risk = assess_risk(merchants["MRC006"], Decimal("20000"))

    assert risk.level == RiskLevel.HIGH
    assert len(risk.factors) == 4


def test_risk_assessment_high_value_medium(merchants):
    """Large amount at a clean merchant raises risk to medium"""
    assert assess_risk(merchants["MRC001"], Decimal("10000.01")).level == RiskLevel.MEDIUM


def test_rejected_result_carries_no_risk(books_intent, merchants, context):
    """Risk assessment is attached to approvals only"""
    result = validate_transaction(books_intent, merchants["MRC002"], Decimal("10"), context)

    assert result.risk_assessment is None
    assert _status_of(result, CheckName.MERCHANT_TIER) == CheckStatus.NOT_EVALUATED
    assert merchants["MRC002"].category == MerchantCategory.FOOD

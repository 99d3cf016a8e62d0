"""Rule engine - pre-settlement validation of a payment against a spending intent

Pipeline (fail-fast, evaluated in PIPELINE_ORDER):
1. Emergency override (approve and skip everything else)
2. Intent presence / status / expiry
3. Amount cap
4. Time window
5. Geo-fence
6. Merchant category / classification code
7. Merchant certification tier
8. Proof requirement

The first failing stage decides the outcome; later stages are reported as not evaluated.
Nothing here touches storage: the caller commits usage or violations from the result.
"""

import math
import time
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Set

from spendguard.domain.models import (
    CheckName,
    CheckOutcome,
    CheckStatus,
    Intent,
    IntentStatus,
    Merchant,
    PIPELINE_ORDER,
    RiskAssessment,
    RiskLevel,
    TransactionContext,
    ValidationResult,
)
from spendguard.domain.reference import CITY_GEO_BOUNDS, MCC_CATEGORY_MAP, GeoBounds, canonical_city
from spendguard.utils.money_utils import to_amount

SETTLEMENT_NAMESPACE = uuid.UUID("6f1c2a8e-93d4-4b7a-9e0f-2d5c8b1a7e34")

KM_PER_DEGREE_LAT = 111.0

Stage = Callable[[Optional[Intent], Merchant, Decimal, TransactionContext], CheckOutcome]


def _passed(name: CheckName, detail: Optional[str] = None) -> CheckOutcome:
    return CheckOutcome(name=name, status=CheckStatus.PASSED, detail=detail)


def _failed(name: CheckName, detail: str) -> CheckOutcome:
    return CheckOutcome(name=name, status=CheckStatus.FAILED, detail=detail)


def _format_date(value: datetime) -> str:
    return value.strftime("%d %b %Y")


def check_intent_status(
    intent: Optional[Intent], merchant: Merchant, amount: Decimal, context: TransactionContext
) -> CheckOutcome:
    """Intent must exist, be active, and not be past its expiry right now"""
    name = CheckName.INTENT_STATUS
    if intent is None:
        return _failed(
            name,
            "No applicable spending intent found for this transaction. "
            "Create an intent or select an active one.",
        )
    if intent.status != IntentStatus.ACTIVE:
        return _failed(
            name,
            f"Intent is {intent.status.value}. Cannot process a transaction against a "
            f"{intent.status.value} intent.",
        )
    if intent.is_expired(context.requested_at):
        return _failed(name, f"Intent expired on {_format_date(intent.expires_at)}. Create a new intent.")
    return _passed(name)


def check_amount_cap(
    intent: Optional[Intent], merchant: Merchant, amount: Decimal, context: TransactionContext
) -> CheckOutcome:
    name = CheckName.AMOUNT_CAP
    if amount <= 0:
        return _failed(name, "Invalid transaction amount.")
    if amount > intent.amount_remaining:
        return _failed(
            name,
            f"Transaction amount {amount} exceeds remaining intent balance {intent.amount_remaining}. "
            f"Total locked: {intent.amount_limit}, used: {intent.amount_used}.",
        )
    return _passed(name, f"Remaining after payment: {intent.amount_remaining - amount}")


def check_time_window(
    intent: Optional[Intent], merchant: Merchant, amount: Decimal, context: TransactionContext
) -> CheckOutcome:
    """Re-checks the validity window independently of the status stage"""
    name = CheckName.TIME_WINDOW
    now = context.requested_at
    if now < intent.created_at or now > intent.expires_at:
        return _failed(
            name,
            f"Transaction is outside the allowed time window. Intent valid from "
            f"{_format_date(intent.created_at)} to {_format_date(intent.expires_at)}.",
        )
    return _passed(name)


def fence_bounds(city: str, radius_km: Optional[float] = None) -> Optional[GeoBounds]:
    """
    Bounding box used for the geo-fence.

    Without a radius this is the city's box. With a radius, the box is centred on the
    city's box and extends radius_km in each direction. Unknown cities have no box.
    """
    base = CITY_GEO_BOUNDS.get(canonical_city(city))
    if base is None:
        return None
    if radius_km is None:
        return base

    lat, lng = base.centre
    lat_delta = radius_km / KM_PER_DEGREE_LAT
    lng_delta = radius_km / (KM_PER_DEGREE_LAT * max(math.cos(math.radians(lat)), 1e-6))
    return GeoBounds(lat - lat_delta, lat + lat_delta, lng - lng_delta, lng + lng_delta)


def check_geo_fence(
    intent: Optional[Intent], merchant: Merchant, amount: Decimal, context: TransactionContext
) -> CheckOutcome:
    """
    Merchant must sit inside the restricted area.

    For a city restriction both the coordinates (bounding box) and the recorded city name
    must agree; a merchant whose coordinates and city disagree is rejected. A region
    restriction compares the merchant's recorded region.
    """
    name = CheckName.GEO_FENCE
    restriction = intent.policy.geo_restriction
    if restriction is None:
        return _passed(name, "No geo restriction on this intent")

    note = None
    if restriction.city:
        city = canonical_city(restriction.city)
        bounds = fence_bounds(city, restriction.radius_km)
        if bounds is None:
            note = f"No coordinates on file for {restriction.city}; matched on city name only"
        elif not bounds.contains(merchant.latitude, merchant.longitude):
            return _failed(
                name,
                f'Merchant "{merchant.name}" is located in {merchant.city}, outside the geo '
                f"restriction: {city.title()} only.",
            )
        if canonical_city(merchant.city) != city:
            return _failed(
                name,
                f'Merchant city "{merchant.city}" does not match intent restriction "{restriction.city}".',
            )

    if restriction.region and merchant.region.strip().lower() != restriction.region.strip().lower():
        return _failed(
            name,
            f'Merchant region "{merchant.region}" does not match intent restriction "{restriction.region}".',
        )

    return _passed(name, note)


def category_overlap(allowed_categories, merchant: Merchant) -> Set[str]:
    """Intent category labels matched by the merchant's MCC labels, category or product tags"""
    merchant_labels = set(MCC_CATEGORY_MAP.get(merchant.classification_code, ()))
    merchant_labels.add(merchant.category.value)

    matched = set()
    for label in allowed_categories:
        if label in merchant_labels:
            matched.add(label)
        elif any(tag in label or label in tag for tag in merchant.product_tags):
            matched.add(label)
    return matched


def check_merchant_category(
    intent: Optional[Intent], merchant: Merchant, amount: Decimal, context: TransactionContext
) -> CheckOutcome:
    """
    Merchant must sell what the intent allows.

    Mixed-category merchants are always rejected and need a stronger verification tier.
    Otherwise either signal is enough: classification code on the allow-list, or any
    category label overlap.
    """
    name = CheckName.MERCHANT_CATEGORY
    policy = intent.policy
    if merchant.is_mixed:
        return _failed(
            name,
            f'"{merchant.name}" is a mixed-category merchant (MCC {merchant.classification_code}). '
            "Intent-bound payments cannot be processed at unclassified merchants; "
            "product-level verification or manual override is required.",
        )

    code_match = merchant.classification_code in policy.allowed_merchant_codes
    overlap = category_overlap(policy.allowed_categories, merchant)
    if not code_match and not overlap:
        allowed = ", ".join(sorted(policy.allowed_categories)) or "none"
        codes = ", ".join(sorted(policy.allowed_merchant_codes)) or "none"
        return _failed(
            name,
            f'Merchant category mismatch. "{merchant.name}" is classified as "{merchant.category_label}" '
            f"(MCC {merchant.classification_code}). Intent only allows: {allowed} (MCC: {codes}).",
        )

    return _passed(name, f"code_match={code_match}, matched_labels={sorted(overlap)}")


def check_merchant_tier(
    intent: Optional[Intent], merchant: Merchant, amount: Decimal, context: TransactionContext
) -> CheckOutcome:
    name = CheckName.MERCHANT_TIER
    required = intent.policy.enforcement_tier
    if merchant.certification_tier < required:
        return _failed(
            name,
            f"Intent requires Tier {required} verification, but merchant is only Tier "
            f"{merchant.certification_tier} certified.",
        )
    return _passed(name)


def check_proof_requirement(
    intent: Optional[Intent], merchant: Merchant, amount: Decimal, context: TransactionContext
) -> CheckOutcome:
    name = CheckName.PROOF_REQUIREMENT
    if not intent.policy.proof_required:
        return _passed(name, "Proof not required for this intent")
    if not context.proof_provided:
        return _failed(
            name,
            "This intent requires proof of purchase (invoice/GST receipt) before the "
            "transaction can be approved.",
        )
    return _passed(name)


POLICY_STAGES: Dict[CheckName, Stage] = {
    CheckName.INTENT_STATUS: check_intent_status,
    CheckName.AMOUNT_CAP: check_amount_cap,
    CheckName.TIME_WINDOW: check_time_window,
    CheckName.GEO_FENCE: check_geo_fence,
    CheckName.MERCHANT_CATEGORY: check_merchant_category,
    CheckName.MERCHANT_TIER: check_merchant_tier,
    CheckName.PROOF_REQUIREMENT: check_proof_requirement,
}


def assess_risk(
    merchant: Merchant,
    amount: Decimal,
    risk_threshold: float = 0.3,
    high_value_threshold: Decimal = Decimal("10000"),
) -> RiskAssessment:
    """
    Advisory risk heuristics (never blocks a payment).

    - merchant risk score above threshold: high
    - mixed-category merchant: high (spoofing risk)
    - uncertified merchant: at least medium
    - amount above high-value threshold: at least medium
    """
    factors: List[str] = []
    level = RiskLevel.LOW

    if merchant.risk_score > risk_threshold:
        factors.append("High merchant risk score")
        level = RiskLevel.HIGH

    if merchant.is_mixed:
        factors.append("Mixed-category merchant - potential spoofing risk")
        level = RiskLevel.HIGH

    if not merchant.certified:
        factors.append("Merchant is not network-certified")
        if level == RiskLevel.LOW:
            level = RiskLevel.MEDIUM

    if amount > high_value_threshold:
        factors.append("High-value transaction - enhanced monitoring")
        if level == RiskLevel.LOW:
            level = RiskLevel.MEDIUM

    return RiskAssessment(level=level, factors=tuple(factors), merchant_risk_score=merchant.risk_score)


def settlement_reference(
    context: TransactionContext,
    merchant: Merchant,
    amount: Decimal,
    emergency: bool = False,
) -> str:
    """Reference derived from the transaction id: unique per payment, stable across re-validation"""
    digest = uuid.uuid5(SETTLEMENT_NAMESPACE, f"{context.transaction_id}:{merchant.merchant_id}:{amount}")
    prefix = "SETL-EMER" if emergency else "SETL"
    return f"{prefix}-{digest.hex[:16].upper()}"


def _not_evaluated(names) -> List[CheckOutcome]:
    return [CheckOutcome(name=n, status=CheckStatus.NOT_EVALUATED) for n in names]


def validate_transaction(
    intent: Optional[Intent],
    merchant: Merchant,
    amount,
    context: Optional[TransactionContext] = None,
    risk_threshold: float = 0.3,
    high_value_threshold: Decimal = Decimal("10000"),
) -> ValidationResult:
    """
    Main entry point: run the ordered pipeline and build the result.

    Deterministic for a given (intent, merchant, amount, context): "now" is the
    context's requested_at, and the settlement reference derives from its transaction_id.
    """
    start = time.perf_counter()
    context = context or TransactionContext()
    amount = to_amount(amount)
    intent_id = intent.intent_id if intent is not None else None

    if context.emergency_override:
        risk = assess_risk(merchant, amount, risk_threshold, high_value_threshold)
        risk = RiskAssessment(
            level=risk.level,
            factors=risk.factors + ("Emergency override used",),
            merchant_risk_score=risk.merchant_risk_score,
        )
        checks = [_passed(CheckName.EMERGENCY_OVERRIDE, "Bypassed all rules due to emergency override")]
        checks.extend(_not_evaluated(PIPELINE_ORDER[1:]))
        return ValidationResult(
            approved=True,
            checks=checks,
            merchant_id=merchant.merchant_id,
            amount=amount,
            intent_id=intent_id,
            settlement_reference=settlement_reference(context, merchant, amount, emergency=True),
            risk_assessment=risk,
            emergency_bypass=True,
            processing_latency_ms=(time.perf_counter() - start) * 1000,
        )

    checks: List[CheckOutcome] = [_passed(CheckName.EMERGENCY_OVERRIDE, "No emergency override requested")]
    for position, name in enumerate(PIPELINE_ORDER[1:], start=1):
        outcome = POLICY_STAGES[name](intent, merchant, amount, context)
        checks.append(outcome)
        if outcome.status == CheckStatus.FAILED:
            checks.extend(_not_evaluated(PIPELINE_ORDER[position + 1:]))
            return ValidationResult(
                approved=False,
                checks=checks,
                merchant_id=merchant.merchant_id,
                amount=amount,
                intent_id=intent_id,
                failed_at_check=name,
                violation_reason=outcome.detail,
                requires_escalation=name == CheckName.MERCHANT_CATEGORY and merchant.is_mixed,
                processing_latency_ms=(time.perf_counter() - start) * 1000,
            )

    return ValidationResult(
        approved=True,
        checks=checks,
        merchant_id=merchant.merchant_id,
        amount=amount,
        intent_id=intent_id,
        settlement_reference=settlement_reference(context, merchant, amount),
        risk_assessment=assess_risk(merchant, amount, risk_threshold, high_value_threshold),
        processing_latency_ms=(time.perf_counter() - start) * 1000,
    )

"""Reputation endpoints - score, credit tier and event history"""

from fastapi import APIRouter, Depends

from spendguard.api.dependencies import get_reputation_service
from spendguard.api.v1.schemas import (
    CreditTierSchema,
    ReputationEventRequest,
    ReputationEventResponse,
    ReputationResponse,
)
from spendguard.domain.models import ReputationEvent
from spendguard.services.reputation_service import ReputationService

router = APIRouter()


def _event_response(event: ReputationEvent) -> ReputationEventResponse:
    return ReputationEventResponse(
        event_id=event.event_id,
        user_id=event.user_id,
        kind=event.kind.value,
        delta=event.delta,
        description=event.description,
        timestamp=event.timestamp,
        score_after=event.score_after,
    )


@router.get("/reputation/{user_id}", response_model=ReputationResponse)
def get_reputation(user_id: str, service: ReputationService = Depends(get_reputation_service)):
    """
    Current score with its derived credit tier.

    Users with no history report the baseline score and a 100% compliance rate.
    """
    snapshot = service.get_snapshot(user_id)
    tier = snapshot.credit_tier
    return ReputationResponse(
        user_id=user_id,
        score=snapshot.score,
        level_label=snapshot.level_label,
        credit_tier=CreditTierSchema(
            eligibility=tier.eligibility,
            label=tier.label,
            max_credit_line=tier.max_credit_line,
            interest_rate=tier.interest_rate,
        ),
        compliant_count=snapshot.compliant_count,
        violation_count=snapshot.violation_count,
        total_transactions=snapshot.total_transactions,
        compliance_rate=snapshot.compliance_rate,
        recent_events=[_event_response(e) for e in snapshot.recent_events],
    )


@router.post("/reputation/{user_id}/events", response_model=ReputationEventResponse, status_code=201)
def record_reputation_event(
    user_id: str,
    request_body: ReputationEventRequest,
    service: ReputationService = Depends(get_reputation_service),
):
    """Record an externally observed event such as a savings milestone"""
    return _event_response(service.record_event(user_id, request_body.kind, request_body.description))

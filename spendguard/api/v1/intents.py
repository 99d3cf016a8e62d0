"""Intent endpoints - create (locks funds), inspect, cancel"""

import logging

from fastapi import APIRouter, Depends, Query, Request

from spendguard.api.dependencies import get_intent_service, get_request_id, to_http_error
from spendguard.api.v1.schemas import (
    CancelIntentResponse,
    CreateIntentRequest,
    IntentListResponse,
    IntentResponse,
    intent_to_response,
)
from spendguard.domain.exceptions import DomainException
from spendguard.services.intent_service import IntentService

router = APIRouter()


@router.post("/intents", response_model=IntentResponse, status_code=201)
def create_intent(
    request_body: CreateIntentRequest,
    request: Request,
    service: IntentService = Depends(get_intent_service),
):
    """
    Register a spending intent and lock its amount.

    The policy arrives already structured; turning free text into a policy happens
    upstream of this service.
    """
    request_id = get_request_id(request)
    try:
        policy = request_body.policy.to_domain()
        intent = service.create_intent(request_body.user_id, request_body.source_text, policy)
    except DomainException as e:
        logging.warning(f"Intent creation rejected: {e}", extra={"request_id": request_id})
        raise to_http_error(e)
    return intent_to_response(intent)


@router.get("/intents", response_model=IntentListResponse)
def list_intents(
    user_id: str = Query(..., description="User identifier"),
    service: IntentService = Depends(get_intent_service),
):
    intents = service.list_intents(user_id)
    return IntentListResponse(user_id=user_id, intents=[intent_to_response(i) for i in intents])


@router.get("/intents/{intent_id}", response_model=IntentResponse)
def get_intent(intent_id: str, service: IntentService = Depends(get_intent_service)):
    try:
        return intent_to_response(service.get_intent(intent_id))
    except DomainException as e:
        raise to_http_error(e)


@router.post("/intents/{intent_id}/cancel", response_model=CancelIntentResponse)
def cancel_intent(
    intent_id: str,
    request: Request,
    service: IntentService = Depends(get_intent_service),
):
    """Cancel an active intent; the unused remainder goes back to the spendable balance"""
    try:
        released = service.cancel_intent(intent_id)
        intent = service.get_intent(intent_id)
    except DomainException as e:
        logging.warning(f"Cancel rejected: {e}", extra={"request_id": get_request_id(request)})
        raise to_http_error(e)
    return CancelIntentResponse(intent_id=intent_id, status=intent.status.value, released_amount=released)

"""Escrow endpoints - milestone-gated fund release and clawback"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from spendguard.api.dependencies import get_escrow_service, get_request_id, to_http_error
from spendguard.api.v1.schemas import (
    ClawbackRequest,
    ClawbackResponse,
    CreateEscrowRequest,
    EscrowListResponse,
    EscrowResponse,
    ReleaseMilestoneRequest,
    ReleaseResponse,
    clawback_to_response,
    escrow_to_response,
)
from spendguard.domain.exceptions import DomainException
from spendguard.domain.models import MilestoneSpec
from spendguard.services.escrow_service import EscrowService

router = APIRouter()


@router.post("/escrows", response_model=EscrowResponse, status_code=201)
def create_escrow(
    request_body: CreateEscrowRequest,
    request: Request,
    service: EscrowService = Depends(get_escrow_service),
):
    specs = [MilestoneSpec(m.description, m.amount, m.required_proof_kind) for m in request_body.milestones]
    try:
        escrow = service.create_escrow(
            request_body.user_id, specs, title=request_body.title, intent_id=request_body.intent_id
        )
    except DomainException as e:
        logging.warning(f"Escrow creation rejected: {e}", extra={"request_id": get_request_id(request)})
        raise to_http_error(e)
    return escrow_to_response(escrow)


@router.get("/escrows", response_model=EscrowListResponse)
def list_escrows(
    user_id: str = Query(..., description="User identifier"),
    service: EscrowService = Depends(get_escrow_service),
):
    return EscrowListResponse(user_id=user_id, escrows=[escrow_to_response(e) for e in service.list_escrows(user_id)])


@router.get("/escrows/{escrow_id}", response_model=EscrowResponse)
def get_escrow(escrow_id: str, service: EscrowService = Depends(get_escrow_service)):
    try:
        return escrow_to_response(service.get_escrow(escrow_id))
    except DomainException as e:
        raise to_http_error(e)


@router.post("/escrows/{escrow_id}/milestones/{milestone_id}/release", response_model=ReleaseResponse)
def release_milestone(
    escrow_id: str,
    milestone_id: str,
    request: Request,
    request_body: Optional[ReleaseMilestoneRequest] = None,
    service: EscrowService = Depends(get_escrow_service),
):
    """
    Release one milestone's amount to the merchant.

    Returns:
        Amount released, running totals and the settlement reference
    """
    request_body = request_body or ReleaseMilestoneRequest()
    try:
        receipt = service.release_milestone(
            escrow_id, milestone_id, proof=request_body.proof, merchant_id=request_body.merchant_id
        )
    except DomainException as e:
        logging.warning(f"Milestone release rejected: {e}", extra={"request_id": get_request_id(request)})
        raise to_http_error(e)

    return ReleaseResponse(
        escrow_id=receipt.escrow_id,
        milestone_id=receipt.milestone_id,
        amount_released=receipt.amount_released,
        total_released=receipt.total_released,
        pending_amount=receipt.pending_amount,
        escrow_status=receipt.escrow_status.value,
        settlement_reference=receipt.settlement_reference,
        released_at=receipt.released_at,
    )


@router.post("/escrows/{escrow_id}/clawback", response_model=ClawbackResponse)
def clawback_escrow(
    escrow_id: str,
    request: Request,
    request_body: Optional[ClawbackRequest] = None,
    service: EscrowService = Depends(get_escrow_service),
):
    request_body = request_body or ClawbackRequest()
    try:
        receipt = service.initiate_clawback(escrow_id, request_body.reason, partial_amount=request_body.partial_amount)
    except DomainException as e:
        logging.warning(f"Clawback rejected: {e}", extra={"request_id": get_request_id(request)})
        raise to_http_error(e)
    return clawback_to_response(receipt)

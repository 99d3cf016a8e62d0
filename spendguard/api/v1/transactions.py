"""POST /v1/transactions/validate - payment enforcement endpoint"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from spendguard.api.dependencies import (
    get_orchestrator,
    get_request_id,
    get_transaction_repository,
    to_http_error,
)
from spendguard.api.v1.schemas import (
    CheckSchema,
    RiskAssessmentSchema,
    TransactionHistoryResponse,
    TransactionItem,
    ValidateTransactionRequest,
    ValidationResponse,
    intent_to_response,
)
from spendguard.domain.exceptions import DomainException, MerchantDirectoryError
from spendguard.domain.models import PaymentRequest, TransactionContext
from spendguard.infrastructure.database.repositories import TransactionRepository
from spendguard.services.transaction_orchestrator import TransactionOrchestrator

router = APIRouter()


@router.post("/transactions/validate", response_model=ValidationResponse)
def validate_transaction(
    request_body: ValidateTransactionRequest,
    request: Request,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
):
    """
    Run a payment through the enforcement pipeline.

    A rejection is a normal 200 response with approved=false; error statuses are
    reserved for requests that could not be evaluated at all.
    """
    request_id = get_request_id(request)
    payment = PaymentRequest(
        user_id=request_body.user_id,
        merchant_id=request_body.merchant_id,
        amount=request_body.amount,
        intent_id=request_body.intent_id,
        context=TransactionContext(
            proof_provided=request_body.proof_provided,
            emergency_override=request_body.emergency_override,
            request_id=request_id,
        ),
    )

    try:
        outcome = orchestrator.process_payment(payment)
    except MerchantDirectoryError as e:
        logging.error(f"Merchant directory error: {e}", extra={"request_id": request_id})
        raise to_http_error(e)
    except DomainException as e:
        logging.warning(f"Payment not evaluated: {e}", extra={"request_id": request_id})
        raise to_http_error(e)
    except Exception as e:
        logging.exception(f"Unexpected error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Internal server error")

    result = outcome.result
    risk = result.risk_assessment
    return ValidationResponse(
        transaction_id=outcome.transaction.transaction_id,
        approved=result.approved,
        forwarded_to_settlement=result.forwarded_to_settlement,
        failed_at_check=result.failed_at_check.value if result.failed_at_check else None,
        violation_reason=result.violation_reason,
        settlement_reference=result.settlement_reference,
        emergency_bypass=result.emergency_bypass,
        requires_escalation=result.requires_escalation,
        checks=[
            CheckSchema(name=c.name.value, status=c.status, passed=c.passed, detail=c.detail)
            for c in result.checks
        ],
        risk_assessment=(
            RiskAssessmentSchema(
                level=risk.level.value, factors=list(risk.factors), merchant_risk_score=risk.merchant_risk_score
            )
            if risk
            else None
        ),
        processing_latency_ms=result.processing_latency_ms,
        intent=intent_to_response(outcome.intent) if outcome.intent else None,
    )


@router.get("/transactions", response_model=TransactionHistoryResponse)
def get_transaction_history(
    user_id: str = Query(..., description="User identifier"),
    limit: int = Query(50, ge=1, le=200),
    transactions: TransactionRepository = Depends(get_transaction_repository),
):
    """Recent validation outcomes for a user, newest first"""
    records = transactions.list_by_user(user_id, limit=limit)
    return TransactionHistoryResponse(
        user_id=user_id,
        transactions=[
            TransactionItem(
                transaction_id=r.transaction_id,
                intent_id=r.intent_id,
                merchant_id=r.merchant_id,
                merchant_category=r.merchant_category,
                amount=r.amount,
                approved=r.approved,
                failed_at_check=r.failed_at_check.value if r.failed_at_check else None,
                violation_reason=r.violation_reason,
                settlement_reference=r.settlement_reference,
                risk_level=r.risk_level.value if r.risk_level else None,
                emergency_bypass=r.emergency_bypass,
                created_at=r.created_at,
            )
            for r in records
        ],
    )

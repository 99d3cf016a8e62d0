"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from spendguard.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_validation(
    transaction_id: str,
    user_id: str,
    intent_id: Optional[str],
    merchant_id: str,
    approved: bool,
    failed_at_check: Optional[str],
    duration_ms: float,
) -> None:
    """Log structured validation outcome for analysis"""
    logging.info(
        "Validation completed",
        extra={
            "transaction_id": transaction_id,
            "user_id": user_id,
            "intent_id": intent_id,
            "merchant_id": merchant_id,
            "step": "validation_complete",
            "outcome": "approved" if approved else "rejected",
            "failed_at_check": failed_at_check,
            "duration_ms": duration_ms,
        },
    )


def log_emergency_override(transaction_id: str, user_id: str, merchant_id: str, amount: str) -> None:
    """Emergency bypasses skip every integrity check and are audited separately"""
    logging.warning(
        "Emergency override used: all policy checks bypassed",
        extra={
            "audit": "emergency_override",
            "transaction_id": transaction_id,
            "user_id": user_id,
            "merchant_id": merchant_id,
            "amount": amount,
        },
    )

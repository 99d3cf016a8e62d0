"""Reputation ledger service: record events and read snapshots"""

import logging
from typing import Callable, Optional

from spendguard.domain.models import ReputationEvent, ReputationEventKind, ReputationSnapshot
from spendguard.domain.ports import ReputationRepository
from spendguard.domain.reputation import build_event, build_snapshot
from spendguard.infrastructure.observability.metrics import (
    reputation_event_counter,
    reputation_write_failures_counter,
)
from spendguard.utils.date_utils import utc_now


class ReputationService:
    """Append-only event log with a derived, bounded score"""

    def __init__(self, repository: ReputationRepository, clock: Callable = utc_now):
        self.repository = repository
        self.clock = clock

    def record_event(self, user_id: str, kind, description: str) -> ReputationEvent:
        kind = ReputationEventKind(kind)
        event = self.repository.record(
            user_id, lambda prior: build_event(user_id, kind, description, prior, self.clock())
        )
        reputation_event_counter.labels(kind=kind.value).inc()
        return event

    def record_event_safely(self, user_id: str, kind, description: str) -> Optional[ReputationEvent]:
        """
        Record an event that follows an already-committed mutation.

        A failure here must not undo the committed spend/release, so it is logged and
        counted instead of raised.
        """
        try:
            return self.record_event(user_id, kind, description)
        except Exception:
            reputation_write_failures_counter.inc()
            logging.exception(
                "Reputation write failed after committed mutation",
                extra={"user_id": user_id, "kind": str(getattr(kind, "value", kind))},
            )
            return None

    def get_snapshot(self, user_id: str) -> ReputationSnapshot:
        events = self.repository.list_by_user(user_id)
        score = self.repository.current_score(user_id)
        return build_snapshot(user_id, score, events)

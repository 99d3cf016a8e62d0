"""Storage and directory interfaces the services depend on

Every mutating operation on an Intent or Escrow goes through update(), which runs the
mutator against the latest copy under a per-entity lock and persists the result only if
the mutator returns normally. Objects returned by get()/list_by_user() are snapshots;
mutating them has no effect on storage.
"""

from decimal import Decimal
from typing import Callable, List, Optional, Protocol, TypeVar

from spendguard.domain.models import Escrow, Intent, Merchant, ReputationEvent, TransactionRecord

T = TypeVar("T")


class IntentRepository(Protocol):
    def add(self, intent: Intent) -> None: ...

    def get(self, intent_id: str) -> Optional[Intent]: ...

    def list_by_user(self, user_id: str) -> List[Intent]: ...

    def update(self, intent_id: str, mutator: Callable[[Intent], T]) -> T:
        """Atomic read-modify-write; raises IntentNotFoundError"""
        ...


class EscrowRepository(Protocol):
    def add(self, escrow: Escrow) -> None: ...

    def get(self, escrow_id: str) -> Optional[Escrow]: ...

    def list_by_user(self, user_id: str) -> List[Escrow]: ...

    def update(self, escrow_id: str, mutator: Callable[[Escrow], T]) -> T:
        """Atomic read-modify-write; raises EscrowNotFoundError"""
        ...


class ReputationRepository(Protocol):
    def record(self, user_id: str, build: Callable[[int], ReputationEvent]) -> ReputationEvent:
        """Append the event built from the user's current score, atomically per user"""
        ...

    def current_score(self, user_id: str) -> int: ...

    def list_by_user(self, user_id: str) -> List[ReputationEvent]:
        """Events oldest first"""
        ...


class TransactionRepository(Protocol):
    def add(self, record: TransactionRecord) -> None: ...

    def list_by_user(self, user_id: str, limit: Optional[int] = 50) -> List[TransactionRecord]:
        """Most recent first"""
        ...


class WalletRepository(Protocol):
    """User balance accessor: spendable balance and locked funds"""

    def available_balance(self, user_id: str) -> Decimal: ...

    def lock_funds(self, user_id: str, amount: Decimal, create: Callable[[], T]) -> T:
        """
        Lock amount and run create() as one step.

        Raises InsufficientFundsError before create() runs if the balance is short.
        If create() raises, nothing is locked.
        """
        ...

    def release_funds(self, user_id: str, amount: Decimal) -> None: ...


class MerchantDirectory(Protocol):
    def get(self, merchant_id: str) -> Merchant:
        """Raises MerchantNotFoundError"""
        ...

    def list_all(self) -> List[Merchant]: ...

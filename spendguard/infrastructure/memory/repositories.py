"""In-process repositories backed by dicts, one lock per aggregate"""

import copy
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Generic, List, Optional, Type, TypeVar

from spendguard.domain.exceptions import (
    DomainException,
    EscrowNotFoundError,
    FundLockError,
    InsufficientFundsError,
    IntentNotFoundError,
    WalletExistsError,
    WalletNotFoundError,
)
from spendguard.domain.models import Escrow, Intent, ReputationEvent, TransactionRecord, ZERO
from spendguard.infrastructure.locks import EntityLocks
from spendguard.utils.money_utils import to_amount

A = TypeVar("A")
T = TypeVar("T")


class _AggregateStore(Generic[A]):
    """Snapshot-in, snapshot-out store: callers never hold references into the dict"""

    id_attr: str = ""
    not_found: Type[DomainException] = DomainException

    def __init__(self):
        self._items: Dict[str, A] = {}
        self._guard = threading.Lock()
        self._locks = EntityLocks()

    def add(self, item: A) -> None:
        key = getattr(item, self.id_attr)
        with self._guard:
            if key in self._items:
                raise ValueError(f"Duplicate id {key}")
            self._items[key] = copy.deepcopy(item)

    def get(self, key: str) -> Optional[A]:
        with self._locks.for_key(key):
            item = self._items.get(key)
            return copy.deepcopy(item) if item is not None else None

    def list_by_user(self, user_id: str) -> List[A]:
        with self._guard:
            items = [i for i in self._items.values() if i.user_id == user_id]
        return [copy.deepcopy(i) for i in sorted(items, key=lambda i: i.created_at)]

    def update(self, key: str, mutator: Callable[[A], T]) -> T:
        with self._locks.for_key(key):
            current = self._items.get(key)
            if current is None:
                raise self.not_found(f"{self.id_attr} {key} not found")
            working = copy.deepcopy(current)
            result = mutator(working)
            self._items[key] = copy.deepcopy(working)
            return result


class InMemoryIntentRepository(_AggregateStore[Intent]):
    id_attr = "intent_id"
    not_found = IntentNotFoundError


class InMemoryEscrowRepository(_AggregateStore[Escrow]):
    id_attr = "escrow_id"
    not_found = EscrowNotFoundError


class InMemoryReputationRepository:
    """Append-only event log per user plus the running (clamped) score"""

    def __init__(self, baseline_score: int = 500, initial_scores: Optional[Dict[str, int]] = None):
        self.baseline_score = baseline_score
        self._scores: Dict[str, int] = dict(initial_scores or {})
        self._events: Dict[str, List[ReputationEvent]] = {}
        self._locks = EntityLocks()

    def record(self, user_id: str, build: Callable[[int], ReputationEvent]) -> ReputationEvent:
        with self._locks.for_key(user_id):
            event = build(self._scores.get(user_id, self.baseline_score))
            self._events.setdefault(user_id, []).append(event)
            self._scores[user_id] = event.score_after
            return event

    def current_score(self, user_id: str) -> int:
        with self._locks.for_key(user_id):
            return self._scores.get(user_id, self.baseline_score)

    def list_by_user(self, user_id: str) -> List[ReputationEvent]:
        with self._locks.for_key(user_id):
            return list(self._events.get(user_id, []))


class InMemoryTransactionRepository:
    def __init__(self):
        self._records: List[TransactionRecord] = []
        self._guard = threading.Lock()

    def add(self, record: TransactionRecord) -> None:
        with self._guard:
            self._records.append(record)

    def list_by_user(self, user_id: str, limit: Optional[int] = 50) -> List[TransactionRecord]:
        with self._guard:
            records = [r for r in self._records if r.user_id == user_id]
        return list(reversed(records))[:limit]


@dataclass
class _Wallet:
    balance: Decimal
    locked: Decimal = ZERO

    @property
    def available(self) -> Decimal:
        return self.balance - self.locked


class InMemoryWalletRepository:
    """Spendable balances; locking moves funds from available to locked"""

    def __init__(self, balances: Optional[Dict[str, Decimal]] = None):
        self._wallets: Dict[str, _Wallet] = {
            user_id: _Wallet(balance=to_amount(balance)) for user_id, balance in (balances or {}).items()
        }
        self._locks = EntityLocks()

    def open_wallet(self, user_id: str, balance) -> None:
        with self._locks.for_key(user_id):
            if user_id in self._wallets:
                raise WalletExistsError(f"Wallet already open for user {user_id}")
            self._wallets[user_id] = _Wallet(balance=to_amount(balance))

    def _wallet(self, user_id: str) -> _Wallet:
        wallet = self._wallets.get(user_id)
        if wallet is None:
            raise WalletNotFoundError(f"No wallet for user {user_id}")
        return wallet

    def available_balance(self, user_id: str) -> Decimal:
        with self._locks.for_key(user_id):
            return self._wallet(user_id).available

    def locked_balance(self, user_id: str) -> Decimal:
        with self._locks.for_key(user_id):
            return self._wallet(user_id).locked

    def lock_funds(self, user_id: str, amount: Decimal, create: Callable[[], T]) -> T:
        amount = to_amount(amount)
        with self._locks.for_key(user_id):
            wallet = self._wallet(user_id)
            if amount > wallet.available:
                raise InsufficientFundsError(
                    f"Insufficient balance. Available: {wallet.available}, required: {amount}"
                )
            result = create()
            wallet.locked += amount
            return result

    def release_funds(self, user_id: str, amount: Decimal) -> None:
        amount = to_amount(amount)
        with self._locks.for_key(user_id):
            wallet = self._wallet(user_id)
            if amount > wallet.locked:
                raise FundLockError(f"Cannot release {amount}; only {wallet.locked} locked for {user_id}")
            wallet.locked -= amount

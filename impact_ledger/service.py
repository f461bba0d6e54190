from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from loguru import logger

from .amounts import to_amount
from .errors import NotFoundError, ValidationError
from .models import (
    CreditSource,
    PurchaseStatus,
    CreditTransaction,
    PurchaseTransaction,
    UserBalance,
    LedgerHistoryResponse,
    CreditSummary,
)
from .storage import InMemoryStorage


# Origins of engine-issued credits; direct credits may not use this namespace.
COMPLETION_ORIGIN_PREFIX = "completion:"


def completion_origin(completion_key: str) -> str:
    return f"{COMPLETION_ORIGIN_PREFIX}{completion_key}"


class CreditLedger:
    """Append-only store of earn (credit) and spend (debit) transactions.

    Balances are never stored: ``balance_of`` and ``lifetime_earned`` are
    aggregates over the transaction history.
    """

    def __init__(self, storage: Optional[InMemoryStorage] = None):
        self.storage = storage or InMemoryStorage()

    def build_credit(
        self,
        user_id: UUID,
        amount,
        source: CreditSource,
        description: str,
        origin_event_id: Optional[str] = None,
        related_tier_id: Optional[str] = None,
    ) -> dict:
        amount = to_amount(amount)
        if amount <= 0:
            raise ValidationError("Credit amount must be greater than 0", field="amount")
        source = CreditSource(source)
        return {
            "id": uuid4(),
            "user_id": user_id,
            "amount": amount,
            "source": source,
            "description": description or f"Impact Credits from {source.value}",
            "related_tier_id": related_tier_id,
            "origin_event_id": origin_event_id,
            "issued_at": datetime.now(timezone.utc),
        }

    def credit(
        self,
        user_id: UUID,
        amount,
        source: CreditSource,
        description: str,
        origin_event_id: Optional[str] = None,
        related_tier_id: Optional[str] = None,
    ) -> UUID:
        if origin_event_id and origin_event_id.startswith(COMPLETION_ORIGIN_PREFIX):
            raise ValidationError(
                f"origin_event_id '{origin_event_id}' is reserved for reward completions",
                field="origin_event_id",
            )
        entry = self.build_credit(user_id, amount, source, description, origin_event_id, related_tier_id)
        self.storage.append_credit(entry)
        logger.info(
            f"[CreditLedger] Credited {entry['amount']} IC to {user_id} "
            f"(source={entry['source'].value}, origin={origin_event_id})"
        )
        return entry["id"]

    def debit(self, user_id: UUID, amount, product_id: str, quantity: int = 1) -> UUID:
        amount = to_amount(amount)
        if amount <= 0:
            raise ValidationError("Debit amount must be greater than 0", field="amount")
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field="quantity")

        entry = {
            "id": uuid4(),
            "user_id": user_id,
            "credits_spent": amount,
            "product_id": product_id,
            "quantity": quantity,
            "status": PurchaseStatus.COMPLETED,
            "purchased_at": datetime.now(timezone.utc),
        }
        self.storage.append_purchase(entry)
        logger.info(f"[CreditLedger] Debited {amount} IC from {user_id} for product {product_id} x{quantity}")
        return entry["id"]

    def balance_of(self, user_id: UUID) -> Decimal:
        return self.storage.balance_of(user_id)

    def lifetime_earned(self, user_id: UUID) -> Decimal:
        return self.storage.total_earned(user_id)

    def credit_transactions(self, user_id: UUID) -> list[CreditTransaction]:
        entries = [CreditTransaction(**e) for e in self.storage.credits_for(user_id)]
        entries.sort(key=lambda e: e.issued_at)
        return entries

    def purchase_transactions(self, user_id: UUID) -> list[PurchaseTransaction]:
        purchases = [PurchaseTransaction(**p) for p in self.storage.purchases_for(user_id)]
        purchases.sort(key=lambda p: p.purchased_at)
        return purchases

    def get_transaction(self, transaction_id: UUID) -> CreditTransaction:
        entry = self.storage.get_credit(transaction_id)
        if not entry:
            raise NotFoundError("Transaction", transaction_id)
        return CreditTransaction(**entry)

    def get_balance(self, user_id: UUID) -> UserBalance:
        with self.storage.lock:
            credits = self.storage.credits_for(user_id)
            purchases = self.storage.purchases_for(user_id)

        earned = sum((e["amount"] for e in credits), Decimal("0"))
        spent = sum((p["credits_spent"] for p in purchases), Decimal("0"))
        timestamps = [e["issued_at"] for e in credits] + [p["purchased_at"] for p in purchases]

        return UserBalance(
            user_id=user_id,
            spendable_balance=earned - spent,
            lifetime_earned=earned,
            total_spent=spent,
            total_entries=len(credits) + len(purchases),
            last_transaction_at=max(timestamps) if timestamps else None,
        )

    def get_history(
        self,
        user_id: UUID,
        limit: int = 50,
        offset: int = 0,
        source: Optional[CreditSource] = None,
    ) -> LedgerHistoryResponse:
        all_entries = self.credit_transactions(user_id)
        if source is not None:
            all_entries = [e for e in all_entries if e.source == CreditSource(source)]
        all_entries.sort(key=lambda e: e.issued_at, reverse=True)
        paginated = all_entries[offset:offset + limit]

        return LedgerHistoryResponse(
            user_id=user_id,
            entries=paginated,
            total_count=len(all_entries),
            current_balance=self.balance_of(user_id),
        )

    def get_summary(self, user_id: UUID) -> CreditSummary:
        with self.storage.lock:
            credits = self.storage.credits_for(user_id)
            spent = self.storage.total_spent(user_id)

        by_source: dict[str, Decimal] = {}
        for entry in credits:
            key = CreditSource(entry["source"]).value
            by_source[key] = by_source.get(key, Decimal("0")) + entry["amount"]
        earned = sum(by_source.values(), Decimal("0"))

        return CreditSummary(
            user_id=user_id,
            total_earned=earned,
            total_spent=spent,
            balance=earned - spent,
            by_source=by_source,
            transaction_count=len(credits),
        )

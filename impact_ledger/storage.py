"""
In-memory storage for the Impact-Credits ledger.

Holds the four append-mostly tables (credit transactions, purchase
transactions, reward completions, referral edges) plus the per-user pioneer
metric cache and vesting forfeiture flags. Every read-modify-write happens
under one re-entrant lock, so uniqueness checks and conditional debits are
atomic with respect to concurrent callers.
"""

import threading
from decimal import Decimal
from typing import Optional
from uuid import UUID

from .errors import ConflictError, InsufficientBalanceError, ValidationError
from .models import CreditSource


class InMemoryStorage:
    def __init__(self):
        self.lock = threading.RLock()
        self.credit_transactions: dict[UUID, dict] = {}
        self.purchase_transactions: dict[UUID, dict] = {}
        self.completions: dict[tuple[UUID, str], dict] = {}
        self.referral_edges: dict[UUID, dict] = {}
        self.pioneer_metrics: dict[UUID, dict] = {}
        self.origin_index: dict[tuple[UUID, str, str], UUID] = {}
        self.forfeited_users: set[UUID] = set()

    # ---- credits / purchases ----

    def append_credit(self, entry: dict) -> dict:
        with self.lock:
            self._check_origin_unique(entry)
            self._insert_credit(entry)
        return entry

    def append_purchase(self, entry: dict) -> dict:
        """Insert a purchase only if the user's balance covers it."""
        with self.lock:
            balance = self.balance_of(entry["user_id"])
            if entry["credits_spent"] > balance:
                raise InsufficientBalanceError(balance, entry["credits_spent"])
            self.purchase_transactions[entry["id"]] = entry
        return entry

    def credits_for(self, user_id: UUID) -> list[dict]:
        with self.lock:
            return [e for e in self.credit_transactions.values() if e["user_id"] == user_id]

    def purchases_for(self, user_id: UUID) -> list[dict]:
        with self.lock:
            return [p for p in self.purchase_transactions.values() if p["user_id"] == user_id]

    def get_credit(self, transaction_id: UUID) -> Optional[dict]:
        return self.credit_transactions.get(transaction_id)

    def total_earned(self, user_id: UUID) -> Decimal:
        with self.lock:
            return sum((e["amount"] for e in self.credits_for(user_id)), Decimal("0"))

    def total_spent(self, user_id: UUID) -> Decimal:
        with self.lock:
            return sum((p["credits_spent"] for p in self.purchases_for(user_id)), Decimal("0"))

    def balance_of(self, user_id: UUID) -> Decimal:
        with self.lock:
            return self.total_earned(user_id) - self.total_spent(user_id)

    def user_ids(self) -> set[UUID]:
        with self.lock:
            return {e["user_id"] for e in self.credit_transactions.values()}

    # ---- reward completions ----

    def get_completion(self, user_id: UUID, completion_key: str) -> Optional[dict]:
        return self.completions.get((user_id, completion_key))

    def completions_for(self, user_id: UUID) -> list[dict]:
        with self.lock:
            return [c for (uid, _), c in self.completions.items() if uid == user_id]

    def record_completion(self, completion: dict, entry: Optional[dict] = None) -> dict:
        """Write the completion marker and its ledger credit as one unit."""
        key = (completion["user_id"], completion["completion_key"])
        with self.lock:
            if key in self.completions:
                raise ConflictError(
                    f"Completion '{completion['completion_key']}' already recorded for user {completion['user_id']}"
                )
            if entry is not None:
                self._check_origin_unique(entry)
                self._insert_credit(entry)
            self.completions[key] = completion
        return completion

    # ---- referral edges ----

    def add_referral_edge(self, edge: dict) -> dict:
        with self.lock:
            if edge["user_id"] in self.referral_edges:
                raise ConflictError(f"User {edge['user_id']} already has a referrer")
            self.referral_edges[edge["user_id"]] = edge
        return edge

    def get_referral_edge(self, user_id: UUID) -> Optional[dict]:
        return self.referral_edges.get(user_id)

    def referred_by(self, referrer_id: UUID) -> list[dict]:
        with self.lock:
            return [e for e in self.referral_edges.values() if e["referrer_id"] == referrer_id]

    # ---- pioneer metrics ----

    def get_pioneer_metric(self, user_id: UUID) -> Optional[dict]:
        return self.pioneer_metrics.get(user_id)

    def put_pioneer_metric(self, metric: dict) -> dict:
        with self.lock:
            self.pioneer_metrics[metric["user_id"]] = metric
        return metric

    def all_pioneer_metrics(self) -> list[dict]:
        with self.lock:
            return list(self.pioneer_metrics.values())

    # ---- vesting forfeiture ----

    def mark_forfeited(self, user_id: UUID) -> bool:
        """Returns True only the first time a user is marked."""
        with self.lock:
            if user_id in self.forfeited_users:
                return False
            self.forfeited_users.add(user_id)
        return True

    def is_forfeited(self, user_id: UUID) -> bool:
        return user_id in self.forfeited_users

    # ---- internals ----

    def _check_origin_unique(self, entry: dict) -> None:
        if entry["amount"] <= 0:
            raise ValidationError("Credit amount must be greater than 0", field="amount")
        key = self._origin_key(entry)
        if key is not None and key in self.origin_index:
            raise ConflictError(
                f"Credit for origin '{key[2]}' ({key[1]}) "
                f"already issued to user {entry['user_id']}"
            )

    def _insert_credit(self, entry: dict) -> None:
        self.credit_transactions[entry["id"]] = entry
        key = self._origin_key(entry)
        if key is not None:
            self.origin_index[key] = entry["id"]

    @staticmethod
    def _origin_key(entry: dict) -> Optional[tuple[UUID, str, str]]:
        source = CreditSource(entry["source"])
        if source.is_referral or not entry.get("origin_event_id"):
            return None
        return (entry["user_id"], source.value, entry["origin_event_id"])

"""
Derived balances and the Founding Pioneer access lifecycle.

Spendable balance and lifetime score are pure views over the ledger. The
pioneer metric row is a cache of the lifetime score plus the access status;
recomputing it any number of times over the same ledger yields the same row.

Access status transitions::

    pending  -> approved  (one-time approval bonus)
    pending  -> rejected  (terminal)
    approved -> revoked   (manual, or the top-N enforcement sweep)
    revoked  -> approved  (re-approval, never re-grants the bonus)
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from loguru import logger

from .config import Settings, settings as default_settings
from .errors import ConflictError, InvalidStatusTransitionError
from .models import (
    BalanceSnapshot,
    CreditSource,
    PioneerAccessStatus,
    PioneerMetric,
)
from .service import CreditLedger
from .vesting import VestingCalculator


PIONEER_APPROVAL_ORIGIN = "pioneer_approval"

ALLOWED_TRANSITIONS = {
    PioneerAccessStatus.PENDING: {PioneerAccessStatus.APPROVED, PioneerAccessStatus.REJECTED},
    PioneerAccessStatus.APPROVED: {PioneerAccessStatus.REVOKED},
    PioneerAccessStatus.REVOKED: {PioneerAccessStatus.APPROVED},
    PioneerAccessStatus.REJECTED: set(),
}


class BalanceService:
    def __init__(
        self,
        ledger: CreditLedger,
        vesting: Optional[VestingCalculator] = None,
        settings: Optional[Settings] = None,
    ):
        self.ledger = ledger
        self.settings = settings or default_settings
        self.vesting = vesting or VestingCalculator(ledger, self.settings)
        self.storage = ledger.storage

    def spendable_balance(self, user_id: UUID) -> Decimal:
        return self.ledger.balance_of(user_id)

    def lifetime_score(self, user_id: UUID) -> Decimal:
        return self.ledger.lifetime_earned(user_id)

    def vested_balance(self, user_id: UUID, now: Optional[datetime] = None) -> Decimal:
        return self.vesting.vested_balance(user_id, now)

    # ---- pioneer metric cache ----

    def get_pioneer_metric(self, user_id: UUID) -> PioneerMetric:
        data = self.storage.get_pioneer_metric(user_id)
        if data is None:
            return PioneerMetric(user_id=user_id, total_impact_credits_earned=self.lifetime_score(user_id))
        return PioneerMetric(**data)

    def refresh_pioneer_metric(self, user_id: UUID) -> PioneerMetric:
        with self.storage.lock:
            data = dict(self.storage.get_pioneer_metric(user_id) or {"user_id": user_id})
            data["total_impact_credits_earned"] = self.lifetime_score(user_id)
            data["updated_at"] = datetime.now(timezone.utc)
            self.storage.put_pioneer_metric(data)
        return PioneerMetric(**data)

    def refresh_all_pioneer_metrics(self) -> list[PioneerMetric]:
        user_ids = self.storage.user_ids() | {m["user_id"] for m in self.storage.all_pioneer_metrics()}
        return [self.refresh_pioneer_metric(uid) for uid in sorted(user_ids, key=str)]

    # ---- access status ----

    def approve(self, user_id: UUID) -> PioneerMetric:
        self._transition(user_id, PioneerAccessStatus.APPROVED)
        self._grant_approval_bonus(user_id)
        return self.refresh_pioneer_metric(user_id)

    def reject(self, user_id: UUID) -> PioneerMetric:
        self._transition(user_id, PioneerAccessStatus.REJECTED)
        return self.get_pioneer_metric(user_id)

    def revoke(self, user_id: UUID) -> PioneerMetric:
        self._transition(user_id, PioneerAccessStatus.REVOKED)
        return self.get_pioneer_metric(user_id)

    def enforce_top_n(self, n: Optional[int] = None) -> list[UUID]:
        """Revoke approved pioneers ranked beyond the cutoff. Safe to re-run."""
        cutoff = n if n is not None else self.settings.pioneer_top_n
        with self.storage.lock:
            approved = [
                m for m in self.leaderboard()
                if m.access_status == PioneerAccessStatus.APPROVED
            ]
            demoted = [m.user_id for m in approved[cutoff:]]
            for user_id in demoted:
                self._transition(user_id, PioneerAccessStatus.REVOKED)

        logger.info(f"[BalanceService] Top-{cutoff} enforced: {len(demoted)} pioneer(s) revoked")
        return demoted

    def leaderboard(self, limit: Optional[int] = None) -> list[PioneerMetric]:
        metrics = [
            m.model_copy(update={"total_impact_credits_earned": self.lifetime_score(m.user_id)})
            for m in (PioneerMetric(**d) for d in self.storage.all_pioneer_metrics())
        ]
        metrics.sort(key=lambda m: (-m.total_impact_credits_earned, str(m.user_id)))
        return metrics if limit is None else metrics[:limit]

    # ---- reporting ----

    def snapshot(self, user_ids: Iterable[UUID], now: Optional[datetime] = None) -> list[BalanceSnapshot]:
        """Read-only balance snapshot for the periodic reporting job."""
        now = now or datetime.now(timezone.utc)
        return [
            BalanceSnapshot(
                user_id=uid,
                as_of=now,
                spendable_balance=self.spendable_balance(uid),
                lifetime_score=self.lifetime_score(uid),
                vested_balance=self.vested_balance(uid, now),
            )
            for uid in user_ids
        ]

    # ---- internals ----

    def _transition(self, user_id: UUID, target: PioneerAccessStatus) -> Optional[dict]:
        """Move the user to ``target``. Returns None when already there."""
        with self.storage.lock:
            current = self.get_pioneer_metric(user_id)
            if current.access_status == target:
                return None
            if target not in ALLOWED_TRANSITIONS[current.access_status]:
                raise InvalidStatusTransitionError(
                    "pioneer access", current.access_status.value, target.value
                )
            now = datetime.now(timezone.utc)
            data = current.model_dump()
            data.update(access_status=target, access_changed_at=now, updated_at=now)
            self.storage.put_pioneer_metric(data)

        logger.info(f"[BalanceService] Pioneer {user_id}: {current.access_status.value} -> {target.value}")
        return data

    def _grant_approval_bonus(self, user_id: UUID) -> None:
        bonus = self.settings.pioneer_approval_bonus
        if bonus <= 0:
            return
        try:
            self.ledger.credit(
                user_id,
                bonus,
                CreditSource.BONUS,
                "Founding Pioneer Approval Bonus",
                origin_event_id=PIONEER_APPROVAL_ORIGIN,
            )
        except ConflictError:
            logger.debug(f"[BalanceService] Approval bonus already granted to {user_id}")

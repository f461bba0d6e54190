"""
Time-based vesting of earned Impact Credits.

Each credit transaction is a tranche with its own clock:

- before the cliff (12 months) nothing is vested;
- at the cliff 25% vests, then the remainder vests linearly per whole month;
- from 48 months on the tranche is fully vested.

A forfeited user (bad-leaver determination) vests nothing, regardless of
time. Vesting is informational and never gates the spendable balance.
"""

import calendar
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from loguru import logger

from .config import Settings, settings as default_settings
from .models import VestingStatus, VestingTranche, VestingReport
from .service import CreditLedger


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def months_between(start: datetime, end: datetime) -> int:
    """Whole calendar months elapsed from ``start`` to ``end`` (never negative).

    A month completes on the same day-of-month as ``start``, clamped to the
    last day of shorter months (Jan 31 -> Feb 28 counts as one month).
    """
    start, end = _as_utc(start), _as_utc(end)
    if end <= start:
        return 0
    months = (end.year - start.year) * 12 + (end.month - start.month)
    last_day = calendar.monthrange(end.year, end.month)[1]
    anniversary = start.replace(
        year=end.year,
        month=end.month,
        day=min(start.day, last_day),
    )
    if end < anniversary:
        months -= 1
    return max(months, 0)


class VestingCalculator:
    def __init__(self, ledger: CreditLedger, settings: Optional[Settings] = None):
        self.ledger = ledger
        self.settings = settings or default_settings
        self.storage = ledger.storage

    def vested_fraction(self, earned_at: datetime, now: datetime, forfeited: bool = False) -> Decimal:
        if forfeited:
            return Decimal("0")
        m = months_between(earned_at, now)
        cliff = self.settings.vesting_cliff_months
        full = self.settings.vesting_full_months
        if m < cliff:
            return Decimal("0")
        if m >= full:
            return Decimal("1")
        base = self.settings.vesting_cliff_fraction
        return base + (Decimal("1") - base) * Decimal(m - cliff) / Decimal(full - cliff)

    def vesting_status(self, earned_at: datetime, now: datetime, forfeited: bool = False) -> VestingStatus:
        if forfeited:
            return VestingStatus.FORFEITED
        m = months_between(earned_at, now)
        if m < self.settings.vesting_cliff_months:
            return VestingStatus.IN_CLIFF
        if m >= self.settings.vesting_full_months:
            return VestingStatus.FULLY_VESTED
        return VestingStatus.VESTING_LINEARLY

    def forfeit(self, user_id: UUID) -> None:
        """Pin the user's vesting to zero. Terminal; repeating it is a no-op."""
        if self.storage.mark_forfeited(user_id):
            logger.warning(f"[Vesting] Vesting forfeited for user {user_id}")

    def is_forfeited(self, user_id: UUID) -> bool:
        return self.storage.is_forfeited(user_id)

    def vested_balance(self, user_id: UUID, now: Optional[datetime] = None) -> Decimal:
        now = now or datetime.now(timezone.utc)
        forfeited = self.is_forfeited(user_id)
        return sum(
            (t.amount * self.vested_fraction(t.issued_at, now, forfeited)
             for t in self.ledger.credit_transactions(user_id)),
            Decimal("0"),
        )

    def vesting_report(self, user_id: UUID, now: Optional[datetime] = None) -> VestingReport:
        now = now or datetime.now(timezone.utc)
        forfeited = self.is_forfeited(user_id)
        tranches = []
        for txn in self.ledger.credit_transactions(user_id):
            fraction = self.vested_fraction(txn.issued_at, now, forfeited)
            tranches.append(VestingTranche(
                transaction_id=txn.id,
                amount=txn.amount,
                issued_at=txn.issued_at,
                months_elapsed=months_between(txn.issued_at, now),
                vested_fraction=fraction,
                vested_amount=txn.amount * fraction,
                status=self.vesting_status(txn.issued_at, now, forfeited),
            ))

        total = sum((t.amount for t in tranches), Decimal("0"))
        vested = sum((t.vested_amount for t in tranches), Decimal("0"))
        return VestingReport(
            user_id=user_id,
            as_of=now,
            forfeited=forfeited,
            total_earned=total,
            vested_balance=vested,
            unvested_balance=total - vested,
            tranches=tranches,
        )

"""
Two-level referral distribution.

When a referred user earns credits, their direct referrer receives
``floor(amount * 0.7)`` and the referrer's own referrer receives
``floor(amount * 0.3)``. Propagation stops at the second level.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Protocol
from uuid import UUID

from loguru import logger

from impact_ledger.amounts import floor_credits, to_amount
from impact_ledger.config import Settings, settings as default_settings
from impact_ledger.errors import PartialFailureError, ValidationError
from impact_ledger.models import CreditSource, DistributionResult, ReferralEdge
from impact_ledger.service import CreditLedger
from impact_ledger.storage import InMemoryStorage

from .notifications import NotificationSender


class ReferralGraph(Protocol):
    def referrer_of(self, user_id: UUID) -> Optional[UUID]:
        ...


class InMemoryReferralGraph:
    """Referral edges are set once at signup and never mutated."""

    def __init__(self, storage: Optional[InMemoryStorage] = None):
        self.storage = storage or InMemoryStorage()

    def link(self, user_id: UUID, referrer_id: UUID) -> ReferralEdge:
        if user_id == referrer_id:
            raise ValidationError("A user cannot refer themselves", field="referrer_id")
        with self.storage.lock:
            if self._reaches(referrer_id, user_id):
                raise ValidationError(
                    f"Linking {user_id} to {referrer_id} would create a referral cycle", field="referrer_id"
                )
            edge = self.storage.add_referral_edge({
                "user_id": user_id,
                "referrer_id": referrer_id,
                "created_at": datetime.now(timezone.utc),
            })
        return ReferralEdge(**edge)

    def referrer_of(self, user_id: UUID) -> Optional[UUID]:
        edge = self.storage.get_referral_edge(user_id)
        return edge["referrer_id"] if edge else None

    def referred_users(self, referrer_id: UUID) -> list[UUID]:
        return [e["user_id"] for e in self.storage.referred_by(referrer_id)]

    def _reaches(self, start: UUID, target: UUID) -> bool:
        seen = set()
        current = start
        while current is not None and current not in seen:
            if current == target:
                return True
            seen.add(current)
            current = self.referrer_of(current)
        return False


class ReferralDistributor:
    def __init__(
        self,
        ledger: CreditLedger,
        graph: ReferralGraph,
        notifier: Optional[NotificationSender] = None,
        settings: Optional[Settings] = None,
    ):
        self.ledger = ledger
        self.graph = graph
        self.notifier = notifier
        self.settings = settings or default_settings

    def split(self, amount) -> tuple[Decimal, Decimal]:
        amount = to_amount(amount)
        return (
            floor_credits(amount * self.settings.referral_direct_ratio),
            floor_credits(amount * self.settings.referral_indirect_ratio),
        )

    def distribute(
        self,
        user_id: UUID,
        amount,
        source: CreditSource,
        origin_event_id: Optional[str] = None,
    ) -> DistributionResult:
        """Pay the referral chain of ``user_id``.

        Each level is written independently. If either fails, the other
        still completes and ``PartialFailureError`` is raised carrying the
        partial result.
        """
        source = CreditSource(source)
        direct, indirect = self.split(amount)
        result = DistributionResult()
        failures: dict[str, Exception] = {}

        referrer_id = self.graph.referrer_of(user_id)
        if referrer_id is None:
            return result
        result.direct_referrer_id = referrer_id
        origin = f"{user_id}:{origin_event_id or source.value}"

        if direct > 0:
            try:
                self.ledger.credit(
                    referrer_id,
                    direct,
                    CreditSource.REFERRAL_DIRECT,
                    f"Commission from direct referral {user_id} ({source.value})",
                    origin_event_id=origin,
                )
                result.direct_awarded = direct
                self._notify(referrer_id, "referral_direct", direct, user_id)
            except Exception as e:
                failures["referral_direct"] = e
                logger.error(f"[ReferralDistributor] Direct payout to {referrer_id} failed: {e}")

        try:
            second_id = self.graph.referrer_of(referrer_id)
        except Exception as e:
            second_id = None
            failures["referral_indirect"] = e
            logger.error(f"[ReferralDistributor] Second-level lookup for {referrer_id} failed: {e}")

        if second_id is not None and indirect > 0:
            result.indirect_referrer_id = second_id
            try:
                self.ledger.credit(
                    second_id,
                    indirect,
                    CreditSource.REFERRAL_INDIRECT,
                    f"Commission from indirect referral {user_id} via {referrer_id} ({source.value})",
                    origin_event_id=origin,
                )
                result.indirect_awarded = indirect
                self._notify(second_id, "referral_indirect", indirect, user_id)
            except Exception as e:
                failures["referral_indirect"] = e
                logger.error(f"[ReferralDistributor] Indirect payout to {second_id} failed: {e}")

        if failures:
            result.failures = sorted(failures)
            raise PartialFailureError(result, failures)

        logger.info(
            f"[ReferralDistributor] {user_id} earned {amount} ({source.value}): "
            f"direct {result.direct_awarded}, indirect {result.indirect_awarded}"
        )
        return result

    def _notify(self, user_id: UUID, key: str, amount: Decimal, origin_user_id: UUID) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(
                user_id, f"{key}.title", f"{key}.body",
                {"amount": str(amount), "origin_user_id": str(origin_user_id)},
            )
        except Exception:
            logger.exception(f"[ReferralDistributor] Notification to {user_id} failed")

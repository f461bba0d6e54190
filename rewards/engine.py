"""
Idempotent credit issuance for named actions.

``RewardEngine.execute`` awards a user the credits of one action exactly
once. The completion marker and the ledger credit are written as one unit;
referral payouts, notifications and the ``CreditIssued`` event are
best-effort follow-ups that never roll the credit back.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID
import time

from loguru import logger

from impact_ledger.amounts import to_amount
from impact_ledger.config import Settings, settings as default_settings
from impact_ledger.errors import (
    ActionNotFoundError,
    ConflictError,
    PartialFailureError,
    PersistenceError,
    ValidationError,
)
from impact_ledger.models import CreditSource, ExecutionResult, RewardCompletion
from impact_ledger.service import CreditLedger, completion_origin
from impact_ledger.tiers import TierResolver

from .catalog import ActionCatalog, ActionDefinition, ActionKind
from .notifications import CreditIssued, EventBus, NotificationSender
from .referrals import ReferralDistributor


AWARDED = "AWARDED"
ZERO_VALUE = "ZERO_VALUE"
ALREADY_COMPLETED = "ALREADY_COMPLETED"

COMPLETION_FIELDS = {
    ActionKind.MISSION: "mission_id",
    ActionKind.CONTRIBUTION: "contribution_id",
}

# Only ad hoc actions take their amount from the caller.
OVERRIDABLE_KINDS = {ActionKind.DYNAMIC, ActionKind.MISSION}


class RewardEngine:
    def __init__(
        self,
        ledger: CreditLedger,
        catalog: ActionCatalog,
        tier_resolver: Optional[TierResolver] = None,
        distributor: Optional[ReferralDistributor] = None,
        notifier: Optional[NotificationSender] = None,
        events: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
    ):
        self.ledger = ledger
        self.storage = ledger.storage
        self.catalog = catalog
        self.tier_resolver = tier_resolver or TierResolver()
        self.distributor = distributor
        self.notifier = notifier
        self.events = events or EventBus()
        self.settings = settings or default_settings

    def execute(self, user_id: UUID, action_key: str, context: Optional[dict] = None) -> ExecutionResult:
        context = context or {}
        action = self._get_action(action_key)
        completion_key = self.completion_key(action, context)
        amount, tier_id = self._credit_amount(action, context)

        if self.storage.get_completion(user_id, completion_key):
            logger.info(f"[RewardEngine] {action_key} already completed by {user_id} ({completion_key})")
            return ExecutionResult(success=False, reason=ALREADY_COMPLETED, completion_key=completion_key)

        description = context.get("description") or action.display_name

        try:
            completion = self._write_primary(
                user_id, action, completion_key, amount, description, tier_id
            )
        except ConflictError:
            if self.storage.get_completion(user_id, completion_key) is None:
                raise
            logger.info(f"[RewardEngine] Lost completion race for {user_id} on {completion_key}")
            return ExecutionResult(success=False, reason=ALREADY_COMPLETED, completion_key=completion_key)

        if amount == 0:
            logger.info(f"[RewardEngine] {action_key} for {user_id} is zero-value; completion recorded")
            return ExecutionResult(success=True, reason=ZERO_VALUE, completion_key=completion_key)

        result = ExecutionResult(
            success=True,
            credits_awarded=amount,
            reason=AWARDED,
            completion_key=completion_key,
            transaction_id=completion.transaction_id,
        )

        if action.referral_eligible and self.distributor is not None:
            try:
                result.referral = self.distributor.distribute(
                    user_id, amount, action.source, origin_event_id=completion_key
                )
            except PartialFailureError as e:
                result.referral = e.result
                result.failed_steps.extend(sorted(e.failures))
                logger.warning(f"[RewardEngine] Referral payout for {user_id} partially failed: {e}")
            except Exception as e:
                result.failed_steps.append("referral")
                logger.error(f"[RewardEngine] Referral payout for {user_id} failed: {e}")

        if action.notify and self.notifier is not None:
            try:
                self.notifier.notify(
                    user_id, "reward_earned.title", "reward_earned.body",
                    {"amount": str(amount), "action": action.display_name},
                )
            except Exception:
                result.failed_steps.append("notification")
                logger.exception(f"[RewardEngine] Notification for {user_id} failed")

        failed = self.events.publish(CreditIssued(
            user_id=user_id,
            amount=amount,
            source=action.source,
            transaction_id=completion.transaction_id,
            origin_event_id=completion_key,
        ))
        if failed:
            result.failed_steps.append("event")

        logger.info(f"[RewardEngine] Awarded {amount} IC to {user_id} for {action_key} ({completion_key})")
        return result

    def grant(
        self,
        user_id: UUID,
        amount,
        description: str,
        origin_event_id: str,
        source: CreditSource = CreditSource.ADMIN_GRANT,
    ) -> ExecutionResult:
        """Ad hoc grant through the same at-most-once path, keyed by ``origin_event_id``."""
        action = ActionDefinition(
            id=f"grant-{origin_event_id}",
            action_key=f"grant:{origin_event_id}",
            credit_value=to_amount(amount),
            source=CreditSource(source),
            title=description,
            notify=False,
        )
        completion_key = action.action_key
        if self.storage.get_completion(user_id, completion_key):
            return ExecutionResult(success=False, reason=ALREADY_COMPLETED, completion_key=completion_key)
        try:
            completion = self._write_primary(user_id, action, completion_key, action.credit_value, description, None)
        except ConflictError:
            if self.storage.get_completion(user_id, completion_key) is None:
                raise
            return ExecutionResult(success=False, reason=ALREADY_COMPLETED, completion_key=completion_key)
        return ExecutionResult(
            success=True,
            credits_awarded=action.credit_value,
            reason=AWARDED if action.credit_value > 0 else ZERO_VALUE,
            completion_key=completion_key,
            transaction_id=completion.transaction_id,
        )

    def has_completed(self, user_id: UUID, action_key: str, context: Optional[dict] = None) -> bool:
        action = self._get_action(action_key)
        return self.storage.get_completion(user_id, self.completion_key(action, context or {})) is not None

    def completions(self, user_id: UUID) -> list[RewardCompletion]:
        items = [RewardCompletion(**c) for c in self.storage.completions_for(user_id)]
        items.sort(key=lambda c: c.completed_at)
        return items

    @staticmethod
    def completion_key(action: ActionDefinition, context: dict) -> str:
        field = action.completion_field or COMPLETION_FIELDS.get(action.kind)
        if field is None:
            return action.action_key
        value = context.get(field)
        if value in (None, ""):
            raise ValidationError(f"Action '{action.action_key}' requires '{field}' in context", field=field)
        if action.kind == ActionKind.MISSION:
            return f"mission:{value}"
        if action.kind == ActionKind.CONTRIBUTION:
            return f"contribution:{value}"
        return f"{action.action_key}:{value}"

    # ---- internals ----

    def _get_action(self, action_key: str) -> ActionDefinition:
        action = self.catalog.get(action_key)
        if action is None or not action.is_active:
            raise ActionNotFoundError(action_key)
        return action

    def _credit_amount(self, action: ActionDefinition, context: dict) -> tuple[Decimal, Optional[str]]:
        if action.kind in OVERRIDABLE_KINDS and context.get("credit_value") is not None:
            return to_amount(context["credit_value"], field="credit_value"), None
        if context.get("credit_value") is not None:
            logger.warning(
                f"[RewardEngine] Ignoring credit_value override for {action.kind.value} action {action.action_key}"
            )

        if action.kind == ActionKind.CONTRIBUTION:
            if context.get("amount") is None:
                raise ValidationError(
                    f"Action '{action.action_key}' requires 'amount' in context", field="amount"
                )
            tier = self.tier_resolver.resolve_tier(context["amount"])
            if tier is None:
                return Decimal("0"), None
            return tier.impact_credit_reward, tier.id

        return to_amount(action.credit_value, field="credit_value"), None

    def _write_primary(
        self,
        user_id: UUID,
        action: ActionDefinition,
        completion_key: str,
        amount: Decimal,
        description: str,
        tier_id: Optional[str],
    ) -> RewardCompletion:
        """Write completion + credit atomically, retrying transient storage failures."""
        entry = None
        if amount > 0:
            entry = self.ledger.build_credit(
                user_id, amount, action.source, description,
                origin_event_id=completion_origin(completion_key), related_tier_id=tier_id,
            )
        completion = {
            "user_id": user_id,
            "completion_key": completion_key,
            "action_key": action.action_key,
            "transaction_id": entry["id"] if entry else None,
            "credits_awarded": amount,
            "completed_at": datetime.now(timezone.utc),
        }

        attempts = self.settings.max_write_attempts
        for attempt in range(attempts):
            try:
                self.storage.record_completion(completion, entry)
                return RewardCompletion(**completion)
            except PersistenceError as e:
                if attempt == attempts - 1:
                    logger.error(f"[RewardEngine] Giving up on {completion_key} for {user_id} after {attempts} attempts: {e}")
                    raise
                delay = self.settings.retry_backoff_seconds * (2 ** attempt)
                logger.warning(
                    f"[RewardEngine] Write for {completion_key} failed (attempt {attempt + 1}/{attempts}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                time.sleep(delay)

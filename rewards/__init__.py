"""
Rewards Engine Package

Idempotent credit issuance for configured actions, two-level referral
payouts, notification intents and the CreditIssued domain event.
"""

from .catalog import (
    ActionCatalog,
    ActionDefinition,
    ActionKind,
    InMemoryActionCatalog,
)
from .engine import RewardEngine
from .notifications import CreditIssued, EventBus, LoggingNotificationSender
from .referrals import InMemoryReferralGraph, ReferralDistributor

__all__ = [
    "ActionCatalog",
    "ActionDefinition",
    "ActionKind",
    "InMemoryActionCatalog",
    "RewardEngine",
    "CreditIssued",
    "EventBus",
    "LoggingNotificationSender",
    "InMemoryReferralGraph",
    "ReferralDistributor",
]

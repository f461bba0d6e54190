"""
Impact-Credits Ledger

This module provides:
- Append-only credit (earn) and purchase (spend) transactions
- Spendable balance and lifetime score derived from the history
- Contribution-amount to reward-tier resolution
- Time-based vesting of earned credits
- Founding Pioneer access lifecycle and top-N enforcement
"""

from .errors import (
    LedgerServiceError,
    ValidationError,
    NotFoundError,
    ConflictError,
    InsufficientBalanceError,
    PartialFailureError,
    PersistenceError,
)
from .models import (
    CreditSource,
    PioneerAccessStatus,
    VestingStatus,
    Tier,
    CreditTransaction,
    PurchaseTransaction,
)
from .service import CreditLedger
from .storage import InMemoryStorage
from .tiers import TierCatalog, TierResolver
from .vesting import VestingCalculator
from .balances import BalanceService

__all__ = [
    "LedgerServiceError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "InsufficientBalanceError",
    "PartialFailureError",
    "PersistenceError",
    "CreditSource",
    "PioneerAccessStatus",
    "VestingStatus",
    "Tier",
    "CreditTransaction",
    "PurchaseTransaction",
    "CreditLedger",
    "InMemoryStorage",
    "TierCatalog",
    "TierResolver",
    "VestingCalculator",
    "BalanceService",
]

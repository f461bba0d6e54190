from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class CreditSource(str, Enum):
    CONTRIBUTION = "contribution"
    QUEST = "quest"
    REFERRAL_DIRECT = "referral_direct"
    REFERRAL_INDIRECT = "referral_indirect"
    ADMIN_GRANT = "admin_grant"
    BONUS = "bonus"

    @property
    def is_referral(self) -> bool:
        return self in (CreditSource.REFERRAL_DIRECT, CreditSource.REFERRAL_INDIRECT)


class PurchaseStatus(str, Enum):
    COMPLETED = "completed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class PioneerAccessStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REVOKED = "revoked"
    REJECTED = "rejected"


class VestingStatus(str, Enum):
    IN_CLIFF = "in_cliff"
    VESTING_LINEARLY = "vesting_linearly"
    FULLY_VESTED = "fully_vested"
    FORFEITED = "forfeited"


class Tier(BaseModel):
    id: str
    slug: str
    name: str = ""
    min_amount: Decimal = Field(..., ge=0)
    impact_credit_reward: Decimal = Field(default=Decimal("0"), ge=0)
    land_dollar_reward: Decimal = Field(default=Decimal("0"), ge=0)
    is_active: bool = True
    display_order: int = 0

    model_config = ConfigDict(from_attributes=True, frozen=True)


class CreditTransaction(BaseModel):
    id: UUID
    user_id: UUID
    amount: Decimal = Field(..., gt=0)
    source: CreditSource
    description: str
    related_tier_id: Optional[str] = None
    origin_event_id: Optional[str] = None
    issued_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)


class PurchaseTransaction(BaseModel):
    id: UUID
    user_id: UUID
    credits_spent: Decimal = Field(..., gt=0)
    product_id: str
    quantity: int = Field(default=1, ge=1)
    status: PurchaseStatus = PurchaseStatus.COMPLETED
    purchased_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ReferralEdge(BaseModel):
    user_id: UUID
    referrer_id: UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)


class RewardCompletion(BaseModel):
    user_id: UUID
    completion_key: str
    action_key: str
    transaction_id: Optional[UUID] = None
    credits_awarded: Decimal = Decimal("0")
    completed_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)


class PioneerMetric(BaseModel):
    user_id: UUID
    total_impact_credits_earned: Decimal = Decimal("0")
    access_status: PioneerAccessStatus = PioneerAccessStatus.PENDING
    access_changed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CreditRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    source: CreditSource = CreditSource.ADMIN_GRANT
    description: str = Field(..., min_length=1)
    origin_event_id: Optional[str] = None
    related_tier_id: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "amount": 250,
            "source": "admin_grant",
            "description": "Community event bonus",
            "origin_event_id": "event-2025-spring-cleanup",
        }
    })


class PurchaseRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1)


class ExecuteActionRequest(BaseModel):
    context: dict = Field(default_factory=dict, description="Action-specific context (amount, mission_id, ...)")

    model_config = ConfigDict(json_schema_extra={
        "example": {"context": {"amount": "49.99", "contribution_id": "startnext-8812"}}
    })


class UserBalance(BaseModel):
    user_id: UUID
    spendable_balance: Decimal
    lifetime_earned: Decimal
    total_spent: Decimal
    total_entries: int
    last_transaction_at: Optional[datetime] = None


class LedgerHistoryResponse(BaseModel):
    user_id: UUID
    entries: list[CreditTransaction]
    total_count: int
    current_balance: Decimal


class CreditSummary(BaseModel):
    user_id: UUID
    total_earned: Decimal
    total_spent: Decimal
    balance: Decimal
    by_source: dict[str, Decimal] = Field(default_factory=dict)
    transaction_count: int = 0


class DistributionResult(BaseModel):
    direct_referrer_id: Optional[UUID] = None
    direct_awarded: Decimal = Decimal("0")
    indirect_referrer_id: Optional[UUID] = None
    indirect_awarded: Decimal = Decimal("0")
    failures: list[str] = Field(default_factory=list)

    @property
    def total_awarded(self) -> Decimal:
        return self.direct_awarded + self.indirect_awarded


class ExecutionResult(BaseModel):
    success: bool
    credits_awarded: Decimal = Decimal("0")
    reason: str
    completion_key: Optional[str] = None
    transaction_id: Optional[UUID] = None
    referral: Optional[DistributionResult] = None
    failed_steps: list[str] = Field(default_factory=list)


class VestingTranche(BaseModel):
    transaction_id: UUID
    amount: Decimal
    issued_at: datetime
    months_elapsed: int
    vested_fraction: Decimal
    vested_amount: Decimal
    status: VestingStatus


class VestingReport(BaseModel):
    user_id: UUID
    as_of: datetime
    forfeited: bool = False
    total_earned: Decimal
    vested_balance: Decimal
    unvested_balance: Decimal
    tranches: list[VestingTranche]


class BalanceSnapshot(BaseModel):
    user_id: UUID
    as_of: datetime
    spendable_balance: Decimal
    lifetime_score: Decimal
    vested_balance: Decimal

from typing import Optional
from uuid import UUID
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rewards.catalog import InMemoryActionCatalog
from rewards.engine import RewardEngine
from rewards.notifications import EventBus, LoggingNotificationSender
from rewards.referrals import InMemoryReferralGraph, ReferralDistributor

from .balances import BalanceService
from .config import settings
from .errors import (
    LedgerServiceError, ValidationError, NotFoundError, ConflictError,
    InsufficientBalanceError, PersistenceError,
)
from .logger import setup_logging
from .models import (
    CreditRequest, CreditSource, PurchaseRequest, ExecuteActionRequest, ExecutionResult,
    UserBalance, LedgerHistoryResponse, CreditSummary, VestingReport, PioneerMetric, Tier,
)
from .service import CreditLedger
from .tiers import TierResolver
from .vesting import VestingCalculator

setup_logging(settings.log_level)

app = FastAPI(
    title="Impact Credits API",
    description="Impact-Credits ledger, tier resolution, idempotent rewards and two-level referral payouts",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ledger = CreditLedger()
notifier = LoggingNotificationSender()
tier_resolver = TierResolver()
referral_graph = InMemoryReferralGraph(ledger.storage)
vesting_calculator = VestingCalculator(ledger, settings)
balance_service = BalanceService(ledger, vesting_calculator, settings)
reward_engine = RewardEngine(
    ledger,
    InMemoryActionCatalog(),
    tier_resolver=tier_resolver,
    distributor=ReferralDistributor(ledger, referral_graph, notifier, settings),
    notifier=notifier,
    events=EventBus(),
    settings=settings,
)


def _status_for(exc: LedgerServiceError) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (ConflictError, InsufficientBalanceError)):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, PersistenceError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


@app.exception_handler(LedgerServiceError)
def handle_ledger_error(request: Request, exc: LedgerServiceError) -> JSONResponse:
    return JSONResponse(status_code=_status_for(exc), content={"code": exc.code, "detail": exc.message})


@app.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "impact-credits"}


@app.get("/tiers", response_model=list[Tier], tags=["Tiers"])
def list_tiers() -> list[Tier]:
    return tier_resolver.catalog.active_tiers()


@app.get("/tiers/resolve", response_model=Optional[Tier], tags=["Tiers"])
def resolve_tier(amount: str) -> Optional[Tier]:
    return tier_resolver.resolve_tier(amount)


@app.post("/users/{user_id}/actions/{action_key}", response_model=ExecutionResult, tags=["Rewards"])
def execute_action(user_id: UUID, action_key: str, request: ExecuteActionRequest) -> ExecutionResult:
    return reward_engine.execute(user_id, action_key, request.context)


@app.post("/users/{user_id}/credits", status_code=status.HTTP_201_CREATED, tags=["Ledger"])
def credit_user(user_id: UUID, request: CreditRequest):
    transaction_id = ledger.credit(
        user_id, request.amount, request.source, request.description,
        origin_event_id=request.origin_event_id, related_tier_id=request.related_tier_id,
    )
    return {"transaction_id": transaction_id, "balance": ledger.balance_of(user_id)}


@app.post("/users/{user_id}/purchases", status_code=status.HTTP_201_CREATED, tags=["Ledger"])
def purchase(user_id: UUID, request: PurchaseRequest):
    transaction_id = ledger.debit(user_id, request.amount, request.product_id, request.quantity)
    return {"transaction_id": transaction_id, "balance": ledger.balance_of(user_id)}


@app.get("/users/{user_id}/balance", response_model=UserBalance, tags=["Users"])
def get_user_balance(user_id: UUID) -> UserBalance:
    return ledger.get_balance(user_id)


@app.get("/users/{user_id}/ledger", response_model=LedgerHistoryResponse, tags=["Users"])
def get_user_ledger(
    user_id: UUID, limit: int = 50, offset: int = 0, source: Optional[CreditSource] = None
) -> LedgerHistoryResponse:
    return ledger.get_history(user_id, limit, offset, source)


@app.get("/users/{user_id}/summary", response_model=CreditSummary, tags=["Users"])
def get_user_summary(user_id: UUID) -> CreditSummary:
    return ledger.get_summary(user_id)


@app.get("/users/{user_id}/vesting", response_model=VestingReport, tags=["Users"])
def get_user_vesting(user_id: UUID) -> VestingReport:
    return vesting_calculator.vesting_report(user_id)


@app.post("/users/{user_id}/vesting/forfeit", response_model=VestingReport, tags=["Users"])
def forfeit_user_vesting(user_id: UUID) -> VestingReport:
    vesting_calculator.forfeit(user_id)
    return vesting_calculator.vesting_report(user_id)


@app.post("/pioneers/{user_id}/approve", response_model=PioneerMetric, tags=["Pioneers"])
def approve_pioneer(user_id: UUID) -> PioneerMetric:
    return balance_service.approve(user_id)


@app.post("/pioneers/{user_id}/reject", response_model=PioneerMetric, tags=["Pioneers"])
def reject_pioneer(user_id: UUID) -> PioneerMetric:
    return balance_service.reject(user_id)


@app.post("/pioneers/{user_id}/revoke", response_model=PioneerMetric, tags=["Pioneers"])
def revoke_pioneer(user_id: UUID) -> PioneerMetric:
    return balance_service.revoke(user_id)


@app.post("/pioneers/enforce-top-n", tags=["Pioneers"])
def enforce_top_n(n: Optional[int] = None):
    revoked = balance_service.enforce_top_n(n)
    return {"revoked": revoked, "count": len(revoked)}


@app.post("/pioneers/refresh", response_model=list[PioneerMetric], tags=["Pioneers"])
def refresh_pioneer_metrics() -> list[PioneerMetric]:
    return balance_service.refresh_all_pioneer_metrics()


@app.get("/pioneers/leaderboard", response_model=list[PioneerMetric], tags=["Pioneers"])
def leaderboard(limit: int = 100) -> list[PioneerMetric]:
    return balance_service.leaderboard(limit)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

"""
Reward tiers and contribution-amount resolution.

A contribution matches the highest-threshold active tier whose
``min_amount`` it reaches; amounts below every threshold match nothing.
"""

from decimal import Decimal
from typing import Iterable, Optional

from .amounts import to_amount
from .errors import TierNotFoundError, ValidationError
from .models import Tier


DEFAULT_TIERS = [
    Tier(
        id="ad69841c-4699-44f0-82d2-a281974ec418",
        slug="explorer_mountain_spring",
        name="Explorer Mountain Spring",
        min_amount=Decimal("5.00"),
        impact_credit_reward=Decimal("5"),
        display_order=1,
    ),
    Tier(
        id="d8c091e4-6f74-48ec-8c80-a96e1be7193e",
        slug="explorer_mountain_stream",
        name="Explorer Mountain Stream",
        min_amount=Decimal("14.99"),
        impact_credit_reward=Decimal("15"),
        display_order=2,
    ),
    Tier(
        id="458b4bf6-3444-4304-84d4-b2a7c3f27a3c",
        slug="explorer_riverbed",
        name="Explorer Riverbed",
        min_amount=Decimal("49.99"),
        impact_credit_reward=Decimal("50"),
        display_order=3,
    ),
    Tier(
        id="bedb258e-9555-4a15-8677-4d6b4b0b4910",
        slug="explorer_lifeline",
        name="Explorer Lifeline",
        min_amount=Decimal("97.99"),
        impact_credit_reward=Decimal("100"),
        display_order=4,
    ),
]


def normalize_slug(slug: str) -> str:
    return slug.strip().replace("-", "_").lower()


class TierCatalog:
    def __init__(self, tiers: Optional[Iterable[Tier]] = None):
        self._tiers: list[Tier] = list(DEFAULT_TIERS if tiers is None else tiers)
        self._validate()

    def _validate(self) -> None:
        seen_ids: set[str] = set()
        thresholds: dict[Decimal, str] = {}
        for tier in self._tiers:
            if tier.id in seen_ids:
                raise ValidationError(f"Duplicate tier id '{tier.id}'", field="tier_id")
            seen_ids.add(tier.id)
            if not tier.is_active:
                continue
            if tier.min_amount in thresholds:
                raise ValidationError(
                    f"Tiers '{thresholds[tier.min_amount]}' and '{tier.slug}' share min_amount {tier.min_amount}",
                    field="min_amount",
                )
            thresholds[tier.min_amount] = tier.slug

    def active_tiers(self) -> list[Tier]:
        active = [t for t in self._tiers if t.is_active]
        return sorted(active, key=lambda t: (t.min_amount, t.display_order))

    def all_tiers(self) -> list[Tier]:
        return sorted(self._tiers, key=lambda t: (t.min_amount, t.display_order))

    def get(self, tier_id: str) -> Tier:
        for tier in self._tiers:
            if tier.id == tier_id:
                return tier
        raise TierNotFoundError(tier_id)

    def get_by_slug(self, slug: str) -> Optional[Tier]:
        if not slug:
            return None
        wanted = normalize_slug(slug)
        return next((t for t in self._tiers if normalize_slug(t.slug) == wanted), None)


class TierResolver:
    def __init__(self, catalog: Optional[TierCatalog] = None):
        self.catalog = catalog or TierCatalog()

    def resolve_tier(self, amount) -> Optional[Tier]:
        value = to_amount(amount)
        eligible = [t for t in self.catalog.active_tiers() if value >= t.min_amount]
        return eligible[-1] if eligible else None

    def resolve(self, amount) -> Optional[str]:
        tier = self.resolve_tier(amount)
        return tier.id if tier else None

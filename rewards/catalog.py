from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol
import threading

from impact_ledger.errors import ActionNotFoundError
from impact_ledger.models import CreditSource


class ActionKind(str, Enum):
    STATIC = "static"
    CONTRIBUTION = "contribution"
    DYNAMIC = "dynamic"
    MISSION = "mission"


@dataclass(frozen=True)
class ActionDefinition:
    id: str
    action_key: str
    credit_value: Decimal = Decimal("0")
    is_active: bool = True
    kind: ActionKind = ActionKind.STATIC
    title: str = ""
    source: CreditSource = CreditSource.QUEST
    referral_eligible: bool = False
    notify: bool = True
    completion_field: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.title or self.action_key

    def to_dict(self) -> dict:
        return {
            "id": self.id, "action_key": self.action_key, "credit_value": str(self.credit_value),
            "is_active": self.is_active, "kind": self.kind.value, "title": self.title,
            "source": self.source.value, "referral_eligible": self.referral_eligible,
            "notify": self.notify, "completion_field": self.completion_field, "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ActionDefinition":
        return cls(
            id=data["id"], action_key=data["action_key"],
            credit_value=Decimal(str(data.get("credit_value", 0))),
            is_active=data.get("is_active", True), kind=ActionKind(data.get("kind", "static")),
            title=data.get("title", ""), source=CreditSource(data.get("source", "quest")),
            referral_eligible=data.get("referral_eligible", False), notify=data.get("notify", True),
            completion_field=data.get("completion_field"),
            metadata=data.get("metadata", {}),
        )


class ActionCatalog(Protocol):
    def get(self, action_key: str) -> Optional[ActionDefinition]:
        ...


class InMemoryActionCatalog:
    """Admin-editable action definitions; ``get`` always reads the current value."""

    def __init__(self, actions: Optional[list[ActionDefinition]] = None):
        self._lock = threading.Lock()
        self.actions: dict[str, ActionDefinition] = {}
        for action in (create_default_actions() if actions is None else actions):
            self.add_action(action)

    def add_action(self, action: ActionDefinition) -> None:
        with self._lock:
            self.actions[action.action_key] = action

    def update_action(self, action_key: str, **changes) -> ActionDefinition:
        with self._lock:
            if action_key not in self.actions:
                raise ActionNotFoundError(action_key)
            updated = replace(self.actions[action_key], **changes)
            self.actions[action_key] = updated
        return updated

    def remove_action(self, action_key: str) -> None:
        with self._lock:
            self.actions.pop(action_key, None)

    def get(self, action_key: str) -> Optional[ActionDefinition]:
        return self.actions.get(action_key)

    def list_actions(self, active_only: bool = False) -> list[ActionDefinition]:
        actions = list(self.actions.values())
        if active_only:
            actions = [a for a in actions if a.is_active]
        actions.sort(key=lambda a: a.action_key)
        return actions


def create_default_actions() -> list[ActionDefinition]:
    return [
        ActionDefinition(
            id="action-profile-update", action_key="profile_update", title="Profile Update",
            credit_value=Decimal("50"), source=CreditSource.QUEST,
        ),
        ActionDefinition(
            id="action-quest-completion", action_key="quest_completion", title="Quest Completion",
            credit_value=Decimal("25"), source=CreditSource.QUEST, referral_eligible=True,
        ),
        ActionDefinition(
            id="action-genesis-quest", action_key="genesis_quest", title="Genesis Quest",
            credit_value=Decimal("1000"), source=CreditSource.QUEST,
        ),
        ActionDefinition(
            id="action-mission-quest", action_key="mission_quest", title="Mission Quest",
            kind=ActionKind.MISSION, credit_value=Decimal("0"), source=CreditSource.QUEST,
            referral_eligible=True,
        ),
        ActionDefinition(
            id="action-referral-signup", action_key="referral_signup", title="Referral Signup",
            credit_value=Decimal("150"), source=CreditSource.BONUS, referral_eligible=True,
            completion_field="referred_user_id",
        ),
        ActionDefinition(
            id="action-startnext-contribution", action_key="startnext_contribution",
            title="Startnext Contribution", kind=ActionKind.CONTRIBUTION,
            source=CreditSource.CONTRIBUTION, referral_eligible=True,
        ),
    ]

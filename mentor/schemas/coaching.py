from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, computed_field

from ..utils.nanoid import nanoid


class CardType(str, Enum):
    NEW_USER = "new_user"
    URGENT_DEADLINE = "urgent_deadline"
    STREAK_AT_RISK = "streak_at_risk"
    STALLED_GOAL = "stalled_goal"
    MINI_WIN = "mini_win"
    COMEBACK = "comeback"
    DISCOVER_REFLECTION_HABIT = "discover_reflection_habit"
    DISCOVER_CHAT = "discover_chat"
    DISCOVER_MILESTONES = "discover_milestones"
    WINNING = "winning"
    NUDGE_JOURNAL_ONLY = "nudge_journal_only"
    NUDGE_START_JOURNALING = "nudge_start_journaling"
    NUDGE_ADD_HABITS = "nudge_add_habits"
    NUDGE_ADD_GOALS = "nudge_add_goals"
    BALANCED = "balanced"


DISCOVERY_CARD_TYPES = frozenset(
    {
        CardType.DISCOVER_REFLECTION_HABIT,
        CardType.DISCOVER_CHAT,
        CardType.DISCOVER_MILESTONES,
    }
)

CardSource = Literal["template", "generated", "fallback"]
BindingKind = Literal["goal", "habit", "journal", "none"]
Backend = Literal["remote", "local"]


class CardAction(BaseModel):
    label: str
    destination: str


class CardBinding(BaseModel):
    kind: BindingKind = "none"
    entity_id: Optional[str] = None
    title: Optional[str] = None
    facts: Dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class RuleMatch:
    card_type: CardType
    tier: int
    binding: CardBinding = field(default_factory=CardBinding)


class CoachingCard(BaseModel):
    id: str = Field(default_factory=lambda: nanoid("card"))
    type: CardType
    tier: int
    title: str
    body: str
    source: CardSource = "template"
    binding: CardBinding = Field(default_factory=CardBinding)
    actions: List[CardAction] = Field(default_factory=list)
    created_at: datetime


class BoundedContext(BaseModel):
    text: str
    backend: Backend
    token_budget: int
    estimated_tokens: int
    included: Dict[str, int]
    dropped: Dict[str, int]

    @computed_field  # type: ignore[misc]
    @property
    def truncated(self) -> bool:
        return any(count > 0 for count in self.dropped.values())

import hashlib
import json
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from ..schemas.coaching import CardType
from ..schemas.entities import FeatureUsage, Goal, Habit, JournalEntry
from ..utils.dates import hour_bucket, minute_bucket, resolve_now

STORAGE_PREFIX = "mentor_card:"


class EntityCounts(BaseModel):
    model_config = ConfigDict(frozen=True)

    goals: int = 0
    habits: int = 0
    journal_entries: int = 0

    def emptiness(self) -> Tuple[bool, bool, bool]:
        return self.goals == 0, self.habits == 0, self.journal_entries == 0

    @classmethod
    def of(cls, goals: Sequence[Goal], habits: Sequence[Habit], journal_entries: Sequence[JournalEntry]) -> "EntityCounts":
        return cls(goals=len(goals or []), habits=len(habits or []), journal_entries=len(journal_entries or []))


class Fingerprint(BaseModel):
    """Stable digest of everything the rule chain can react to.

    Counts are kept next to the digest so a cached entry can be checked
    against live data without recomputing the hash.
    """

    model_config = ConfigDict(frozen=True)

    digest: str
    counts: EntityCounts
    hour: str

    @property
    def key(self) -> str:
        return f"{STORAGE_PREFIX}{self.digest}"

    def conflicts_with(self, live: EntityCounts) -> bool:
        return self.counts.emptiness() != live.emptiness()


def _goal_marker(goal: Goal) -> List[object]:
    completed_milestones = len([milestone for milestone in goal.milestones if milestone.completed])
    return [
        goal.id,
        goal.status,
        goal.progress,
        minute_bucket(goal.updated_at),
        minute_bucket(goal.deadline),
        len(goal.milestones),
        completed_milestones,
    ]


def _habit_marker(habit: Habit) -> List[object]:
    last_done = habit.completion_dates[-1].isoformat() if habit.completion_dates else "-"
    return [
        habit.id,
        habit.status,
        habit.frequency,
        habit.current_streak,
        len(habit.completion_dates),
        last_done,
        habit.tracks_reflection,
        minute_bucket(habit.updated_at),
    ]


def _journal_marker(entry: JournalEntry) -> List[object]:
    return [entry.id, entry.variant, minute_bucket(entry.touched_at)]


def compute_fingerprint(
    goals: Sequence[Goal],
    habits: Sequence[Habit],
    journal_entries: Sequence[JournalEntry],
    now: Optional[datetime] = None,
    features: Optional[FeatureUsage] = None,
    discovered: Optional[Iterable[CardType]] = None,
) -> Fingerprint:
    current = resolve_now(now)
    counts = EntityCounts.of(goals, habits, journal_entries)
    flags = features or FeatureUsage()
    payload = {
        "counts": counts.model_dump(),
        "goals": sorted(_goal_marker(goal) for goal in goals or []),
        "habits": sorted(_habit_marker(habit) for habit in habits or []),
        "journal": sorted(_journal_marker(entry) for entry in journal_entries or []),
        "features": sorted(name for name, enabled in flags.model_dump().items() if enabled),
        "discovered": sorted(CardType(item).value for item in discovered or []),
        "hour": hour_bucket(current),
    }
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return Fingerprint(digest=digest, counts=counts, hour=payload["hour"])

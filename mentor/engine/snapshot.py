"""
State snapshot: the decision-ready facts the rule chain reads.

Built fresh from the caller's entity lists on every evaluation and never
stored. Empty lists produce "no match" facts rather than errors.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence, Tuple, TypeVar

from ..config import RuleThresholds
from ..schemas.coaching import CardType
from ..schemas.entities import FeatureUsage, Goal, Habit, JournalEntry
from ..utils.dates import days_between, iso_week, resolve_now

T = TypeVar("T")


@dataclass(frozen=True)
class WinningStats:
    window_days: int
    habit_completion_rate: float
    weekly_journal_counts: Tuple[int, ...]
    qualifies: bool


@dataclass(frozen=True)
class StateSnapshot:
    now: datetime
    goal_count: int
    habit_count: int
    journal_count: int
    active_goal_count: int
    active_habit_count: int
    urgent_deadline_goal: Optional[Goal]
    at_risk_streak_habit: Optional[Habit]
    stalled_goal: Optional[Goal]
    mini_win_goal: Optional[Goal]
    last_journal_entry: Optional[JournalEntry]
    days_since_last_journal: Optional[int]
    reflection_habit_pending: Optional[Habit]
    any_goal_has_milestones: bool
    winning: WinningStats
    features: FeatureUsage = field(default_factory=FeatureUsage)
    discovered: FrozenSet[CardType] = frozenset()

    @property
    def has_goals(self) -> bool:
        return self.goal_count > 0

    @property
    def has_habits(self) -> bool:
        return self.habit_count > 0

    @property
    def has_journal(self) -> bool:
        return self.journal_count > 0

    @property
    def has_any_data(self) -> bool:
        return self.has_goals or self.has_habits or self.has_journal

    @property
    def populated_kinds(self) -> int:
        return sum(1 for flag in (self.has_goals, self.has_habits, self.has_journal) if flag)


def _pick(items: Iterable[T], predicate: Callable[[T], bool], key: Callable[[T], tuple]) -> Optional[T]:
    return min((item for item in items if predicate(item)), key=key, default=None)


def _local_day(value: datetime, now: datetime) -> date:
    return value.astimezone(now.tzinfo).date()


def _urgent_deadline_goal(goals: Sequence[Goal], now: datetime, thresholds: RuleThresholds) -> Optional[Goal]:
    horizon = timedelta(hours=thresholds.urgent_deadline_hours)

    def qualifies(goal: Goal) -> bool:
        if not goal.is_active or goal.progress >= 100 or goal.deadline is None:
            return False
        remaining = goal.deadline - now
        return timedelta(0) <= remaining <= horizon

    return _pick(goals, qualifies, key=lambda goal: (goal.deadline, goal.progress, goal.id))


def _at_risk_streak_habit(habits: Sequence[Habit], today: date, thresholds: RuleThresholds) -> Optional[Habit]:
    return _pick(
        habits,
        lambda habit: habit.is_active
        and habit.current_streak >= thresholds.streak_at_risk_min_days
        and not habit.completed_in_period(today),
        key=lambda habit: (-habit.current_streak, habit.created_at, habit.id),
    )


def _aged_low_progress_goal(goals: Sequence[Goal], now: datetime, min_age_days: int, max_progress: int) -> Optional[Goal]:
    return _pick(
        goals,
        lambda goal: goal.is_active and days_between(goal.created_at, now) >= min_age_days and goal.progress < max_progress,
        key=lambda goal: (goal.created_at, goal.progress, goal.id),
    )


def _reflection_habit_pending(habits: Sequence[Habit], entries: Sequence[JournalEntry], now: datetime) -> Optional[Habit]:
    today = now.date()
    reflected_today = any(entry.variant == "guided" and _local_day(entry.created_at, now) == today for entry in entries)
    if not reflected_today:
        return None
    return _pick(
        habits,
        lambda habit: habit.is_active and habit.tracks_reflection and not habit.completed_in_period(today),
        key=lambda habit: (habit.created_at, habit.id),
    )


def _habit_completion(habit: Habit, window_first: date, now: datetime) -> Tuple[int, int]:
    today = now.date()
    first_day = max(window_first, _local_day(habit.created_at, now))
    if first_day > today:
        return 0, 0
    if habit.frequency == "weekly":
        expected_weeks = {iso_week(first_day + timedelta(days=offset)) for offset in range((today - first_day).days + 1)}
        done_weeks = {iso_week(done) for done in habit.completion_dates if first_day <= done <= today}
        return len(done_weeks & expected_weeks), len(expected_weeks)
    expected = (today - first_day).days + 1
    return min(habit.completions_between(first_day, today), expected), expected


def _winning_stats(habits: Sequence[Habit], entries: Sequence[JournalEntry], now: datetime, thresholds: RuleThresholds) -> WinningStats:
    window_days = thresholds.winning_window_days
    today = now.date()
    window_first = today - timedelta(days=window_days - 1)

    completed = 0
    expected = 0
    for habit in habits:
        if not habit.is_active:
            continue
        done, due = _habit_completion(habit, window_first, now)
        completed += done
        expected += due
    rate = completed / expected if expected else 0.0

    weekly_counts: List[int] = []
    for week in range(window_days // 7):
        slice_end = now - timedelta(days=7 * week)
        slice_start = slice_end - timedelta(days=7)
        weekly_counts.append(len([entry for entry in entries if slice_start < entry.created_at <= slice_end]))

    qualifies = (
        expected > 0
        and rate >= thresholds.winning_completion_rate
        and all(count >= thresholds.winning_journals_per_week for count in weekly_counts)
    )
    return WinningStats(
        window_days=window_days,
        habit_completion_rate=round(rate, 4),
        weekly_journal_counts=tuple(weekly_counts),
        qualifies=qualifies,
    )


def build_snapshot(
    goals: Sequence[Goal],
    habits: Sequence[Habit],
    journal_entries: Sequence[JournalEntry],
    now: Optional[datetime] = None,
    features: Optional[FeatureUsage] = None,
    discovered: Optional[Iterable[CardType]] = None,
    thresholds: Optional[RuleThresholds] = None,
) -> StateSnapshot:
    current = resolve_now(now)
    limits = thresholds or RuleThresholds()
    goals = list(goals or [])
    habits = list(habits or [])
    entries = sorted(journal_entries or [], key=lambda entry: (entry.created_at, entry.id), reverse=True)

    last_entry = entries[0] if entries else None
    days_since_last = days_between(last_entry.created_at, current) if last_entry else None

    return StateSnapshot(
        now=current,
        goal_count=len(goals),
        habit_count=len(habits),
        journal_count=len(entries),
        active_goal_count=len([goal for goal in goals if goal.is_active]),
        active_habit_count=len([habit for habit in habits if habit.is_active]),
        urgent_deadline_goal=_urgent_deadline_goal(goals, current, limits),
        at_risk_streak_habit=_at_risk_streak_habit(habits, current.date(), limits),
        stalled_goal=_aged_low_progress_goal(goals, current, limits.stalled_goal_min_age_days, limits.stalled_goal_max_progress),
        mini_win_goal=_aged_low_progress_goal(goals, current, limits.mini_win_min_age_days, limits.mini_win_max_progress),
        last_journal_entry=last_entry,
        days_since_last_journal=days_since_last,
        reflection_habit_pending=_reflection_habit_pending(habits, entries, current),
        any_goal_has_milestones=any(goal.has_milestones for goal in goals),
        winning=_winning_stats(habits, entries, current, limits),
        features=features or FeatureUsage(),
        discovered=frozenset(CardType(item) for item in (discovered or [])),
    )

"""
Token-bounded user context for the mentor chat.

Sections always appear in the same order (goals, habits, journal, pulse).
When the estimate exceeds the backend's budget, items are dropped from the
tail of pulse first, then journal, then habits, and goals only last.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from ..config import EngineSettings
from ..schemas.coaching import Backend, BoundedContext
from ..schemas.entities import Goal, Habit, JournalEntry, PulseEntry
from ..utils.dates import days_between, format_day, resolve_now
from ..utils.strings import preview
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)

NO_DATA_TEXT = "No data yet."
TRIMMED_TEXT = "Context truncated to fit budget."
SECTION_ORDER = ("goals", "habits", "journal", "pulse")
DROP_ORDER = ("pulse", "journal", "habits", "goals")
HEADERS = {
    "goals": "Active Goals:",
    "habits": "Habits:",
    "journal": "Recent Journal Entries:",
    "pulse": "Recent Pulse Checks:",
}
BACKEND_ALIASES = {
    "remote": "remote",
    "cloud": "remote",
    "local": "local",
    "on_device": "local",
}
VARIANT_LABELS = {
    "quick_note": "note",
    "guided": "guided reflection",
    "structured": "structured",
}


def normalize_backend(value: Optional[str]) -> Backend:
    if value is None:
        return "remote"
    resolved = BACKEND_ALIASES.get(str(value).strip().lower())
    if resolved is None:
        raise ValueError(f"Unknown backend: {value}")
    return resolved  # type: ignore[return-value]


def _relative_day(value: datetime, now: datetime) -> str:
    days = days_between(value, now)
    if days == 0:
        return "Today"
    if days == 1:
        return "Yesterday"
    if days < 7:
        return f"{days} days ago"
    return format_day(value)


def _goal_line(goal: Goal, now: datetime) -> str:
    details = [f"{goal.progress}% complete", goal.category, f"updated {_relative_day(goal.updated_at, now).lower()}"]
    if goal.deadline is not None:
        details.append(f"due {format_day(goal.deadline)}")
    if goal.milestones:
        done = len([milestone for milestone in goal.milestones if milestone.completed])
        details.append(f"{done}/{len(goal.milestones)} milestones")
    return f"- {goal.title} ({', '.join(details)})"


def _habit_line(habit: Habit) -> str:
    return f"- {habit.title} ({habit.current_streak}-day streak, {habit.frequency})"


def _journal_line(entry: JournalEntry, now: datetime, preview_chars: int) -> str:
    label = VARIANT_LABELS.get(entry.variant, entry.variant)
    if entry.reflection_type:
        label = f"{label}, {entry.reflection_type}"
    return f"- {_relative_day(entry.touched_at, now)} ({label}): {preview(entry.text(), preview_chars)}"


def _pulse_line(entry: PulseEntry, now: datetime, preview_chars: int) -> str:
    line = f"- {_relative_day(entry.timestamp, now)}: {entry.summary()}"
    if entry.notes:
        line = f"{line} ({preview(entry.notes, preview_chars)})"
    return line


@dataclass
class _Section:
    name: str
    lines: List[str]
    costs: List[int]
    dropped: int = 0
    header_cost: int = 0

    @property
    def cost(self) -> int:
        return self.header_cost + sum(self.costs) if self.lines else 0

    def drop_last(self) -> None:
        self.lines.pop()
        self.costs.pop()
        self.dropped += 1


def _section(name: str, lines: List[str], available: int, tokens_per_word: float) -> _Section:
    return _Section(
        name=name,
        lines=lines,
        costs=[estimate_tokens(line, tokens_per_word) for line in lines],
        dropped=available - len(lines),
        header_cost=estimate_tokens(HEADERS[name], tokens_per_word),
    )


def build_context(
    goals: Sequence[Goal],
    habits: Sequence[Habit],
    journal_entries: Sequence[JournalEntry],
    pulse_entries: Sequence[PulseEntry] = (),
    backend: Optional[str] = "remote",
    now: Optional[datetime] = None,
    settings: Optional[EngineSettings] = None,
    token_budget: Optional[int] = None,
) -> BoundedContext:
    config = settings or EngineSettings()
    resolved_backend = normalize_backend(backend)
    limits = config.context.limits_for(resolved_backend)
    budget = token_budget if token_budget is not None else config.budget_for(resolved_backend)
    per_word = config.context.tokens_per_word
    current = resolve_now(now)

    active_goals = sorted(
        (goal for goal in goals or [] if goal.is_active),
        key=lambda goal: (goal.updated_at, goal.created_at, goal.id),
        reverse=True,
    )
    active_habits = sorted(
        (habit for habit in habits or [] if habit.is_active),
        key=lambda habit: (-habit.current_streak, -habit.updated_at.timestamp(), habit.id),
    )
    recent_journal = sorted(journal_entries or [], key=lambda entry: (entry.touched_at, entry.created_at, entry.id), reverse=True)
    recent_pulse = sorted(pulse_entries or [], key=lambda entry: (entry.timestamp, entry.id), reverse=True)

    sections = {
        "goals": _section("goals", [_goal_line(goal, current) for goal in active_goals], len(active_goals), per_word),
        "habits": _section("habits", [_habit_line(habit) for habit in active_habits], len(active_habits), per_word),
        "journal": _section(
            "journal",
            [_journal_line(entry, current, limits.preview_chars) for entry in recent_journal[: limits.journal_limit]],
            len(recent_journal),
            per_word,
        ),
        "pulse": _section(
            "pulse",
            [_pulse_line(entry, current, limits.preview_chars) for entry in recent_pulse[: limits.pulse_limit]],
            len(recent_pulse),
            per_word,
        ),
    }

    total = sum(section.cost for section in sections.values())
    while total > budget:
        victim = next((sections[name] for name in DROP_ORDER if sections[name].lines), None)
        if victim is None:
            break
        victim.drop_last()
        total = sum(section.cost for section in sections.values())

    blocks = [
        "\n".join([HEADERS[name], *sections[name].lines])
        for name in SECTION_ORDER
        if sections[name].lines
    ]
    dropped: Dict[str, int] = {name: sections[name].dropped for name in SECTION_ORDER}
    placeholder = TRIMMED_TEXT if any(dropped.values()) else NO_DATA_TEXT
    text = "\n\n".join(blocks) if blocks else placeholder
    estimated = total if blocks else estimate_tokens(placeholder, per_word)

    included: Dict[str, int] = {name: len(sections[name].lines) for name in SECTION_ORDER}
    if any(dropped.values()):
        logger.debug("[ContextBuilder] %s context trimmed to %d/%d tokens, dropped %s", resolved_backend, estimated, budget, dropped)
    return BoundedContext(
        text=text,
        backend=resolved_backend,
        token_budget=budget,
        estimated_tokens=estimated,
        included=included,
        dropped=dropped,
    )

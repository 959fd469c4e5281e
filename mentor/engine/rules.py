"""
Priority rule chain.

Rules are evaluated strictly in tier order and the first match wins; nothing
after it runs. The last tier always matches, so every evaluation yields
exactly one card type.
"""

import logging
from dataclasses import dataclass
from typing import Callable, FrozenSet, Optional, Tuple

from ..schemas.coaching import CardBinding, CardType, RuleMatch
from ..schemas.entities import Goal, Habit
from ..utils.dates import days_between
from .snapshot import StateSnapshot

logger = logging.getLogger(__name__)

RulePredicate = Callable[[StateSnapshot], Optional[RuleMatch]]


@dataclass(frozen=True)
class Rule:
    tier: int
    name: str
    emits: FrozenSet[CardType]
    predicate: RulePredicate


def _goal_binding(goal: Goal, snapshot: StateSnapshot) -> CardBinding:
    facts = {
        "progress": goal.progress,
        "category": goal.category,
        "days_since_created": days_between(goal.created_at, snapshot.now),
        "days_since_update": days_between(goal.updated_at, snapshot.now),
        "milestones_open": len([milestone for milestone in goal.milestones if not milestone.completed]),
    }
    if goal.deadline is not None:
        facts["deadline"] = goal.deadline.isoformat()
        facts["hours_until_deadline"] = round((goal.deadline - snapshot.now).total_seconds() / 3600, 1)
    return CardBinding(kind="goal", entity_id=goal.id, title=goal.title, facts=facts)


def _habit_binding(habit: Habit) -> CardBinding:
    return CardBinding(
        kind="habit",
        entity_id=habit.id,
        title=habit.title,
        facts={
            "streak": habit.current_streak,
            "frequency": habit.frequency,
            "period": "today" if habit.frequency == "daily" else "this week",
        },
    )


def _count_facts(snapshot: StateSnapshot) -> dict:
    return {
        "goals": snapshot.goal_count,
        "habits": snapshot.habit_count,
        "journal_entries": snapshot.journal_count,
    }


def _new_user(snapshot: StateSnapshot) -> Optional[RuleMatch]:
    if snapshot.has_any_data:
        return None
    return RuleMatch(CardType.NEW_USER, 1)


def _urgent_deadline(snapshot: StateSnapshot) -> Optional[RuleMatch]:
    goal = snapshot.urgent_deadline_goal
    if goal is None:
        return None
    return RuleMatch(CardType.URGENT_DEADLINE, 2, _goal_binding(goal, snapshot))


def _streak_at_risk(snapshot: StateSnapshot) -> Optional[RuleMatch]:
    habit = snapshot.at_risk_streak_habit
    if habit is None:
        return None
    return RuleMatch(CardType.STREAK_AT_RISK, 3, _habit_binding(habit))


def _stalled_goal(snapshot: StateSnapshot) -> Optional[RuleMatch]:
    goal = snapshot.stalled_goal
    if goal is None:
        return None
    return RuleMatch(CardType.STALLED_GOAL, 4, _goal_binding(goal, snapshot))


def _mini_win(snapshot: StateSnapshot) -> Optional[RuleMatch]:
    goal = snapshot.mini_win_goal
    if goal is None or snapshot.has_journal:
        return None
    return RuleMatch(CardType.MINI_WIN, 5, _goal_binding(goal, snapshot))


def _comeback_factory(min_days: int) -> RulePredicate:
    def _comeback(snapshot: StateSnapshot) -> Optional[RuleMatch]:
        entry = snapshot.last_journal_entry
        days_away = snapshot.days_since_last_journal
        if entry is None or days_away is None or days_away < min_days:
            return None
        binding = CardBinding(
            kind="journal",
            entity_id=entry.id,
            title=None,
            facts={"days_since_last_journal": days_away, "last_entry_at": entry.created_at.isoformat()},
        )
        return RuleMatch(CardType.COMEBACK, 6, binding)

    return _comeback


def _feature_discovery(snapshot: StateSnapshot) -> Optional[RuleMatch]:
    seen = snapshot.discovered
    habit = snapshot.reflection_habit_pending
    if habit is not None and CardType.DISCOVER_REFLECTION_HABIT not in seen:
        return RuleMatch(CardType.DISCOVER_REFLECTION_HABIT, 7, _habit_binding(habit))
    if (snapshot.has_goals or snapshot.has_journal) and not snapshot.features.has_opened_chat and CardType.DISCOVER_CHAT not in seen:
        return RuleMatch(CardType.DISCOVER_CHAT, 7, CardBinding(facts=_count_facts(snapshot)))
    if snapshot.has_goals and not snapshot.any_goal_has_milestones and CardType.DISCOVER_MILESTONES not in seen:
        return RuleMatch(CardType.DISCOVER_MILESTONES, 7, CardBinding(facts={"goals": snapshot.goal_count}))
    return None


def _winning(snapshot: StateSnapshot) -> Optional[RuleMatch]:
    stats = snapshot.winning
    if not stats.qualifies:
        return None
    binding = CardBinding(
        facts={
            "habit_completion_rate": stats.habit_completion_rate,
            "habit_completion_percent": int(round(stats.habit_completion_rate * 100)),
            "weekly_journal_counts": list(stats.weekly_journal_counts),
            "window_days": stats.window_days,
        }
    )
    return RuleMatch(CardType.WINNING, 8, binding)


def _partial_data(snapshot: StateSnapshot) -> Optional[RuleMatch]:
    if snapshot.populated_kinds not in (1, 2):
        return None
    if snapshot.has_journal and not snapshot.has_goals and not snapshot.has_habits:
        card_type = CardType.NUDGE_JOURNAL_ONLY
    elif snapshot.has_goals and snapshot.has_habits:
        card_type = CardType.NUDGE_START_JOURNALING
    elif snapshot.has_goals:
        card_type = CardType.NUDGE_ADD_HABITS
    else:
        card_type = CardType.NUDGE_ADD_GOALS
    return RuleMatch(card_type, 9, CardBinding(facts=_count_facts(snapshot)))


def _balanced(snapshot: StateSnapshot) -> Optional[RuleMatch]:
    return RuleMatch(CardType.BALANCED, 10, CardBinding(facts=_count_facts(snapshot)))


def build_rule_chain(comeback_min_days: int = 3) -> Tuple[Rule, ...]:
    return (
        Rule(1, "new_user", frozenset({CardType.NEW_USER}), _new_user),
        Rule(2, "urgent_deadline", frozenset({CardType.URGENT_DEADLINE}), _urgent_deadline),
        Rule(3, "streak_at_risk", frozenset({CardType.STREAK_AT_RISK}), _streak_at_risk),
        Rule(4, "stalled_goal", frozenset({CardType.STALLED_GOAL}), _stalled_goal),
        Rule(5, "mini_win", frozenset({CardType.MINI_WIN}), _mini_win),
        Rule(6, "comeback", frozenset({CardType.COMEBACK}), _comeback_factory(comeback_min_days)),
        Rule(
            7,
            "feature_discovery",
            frozenset({CardType.DISCOVER_REFLECTION_HABIT, CardType.DISCOVER_CHAT, CardType.DISCOVER_MILESTONES}),
            _feature_discovery,
        ),
        Rule(8, "winning", frozenset({CardType.WINNING}), _winning),
        Rule(
            9,
            "partial_data",
            frozenset(
                {
                    CardType.NUDGE_JOURNAL_ONLY,
                    CardType.NUDGE_START_JOURNALING,
                    CardType.NUDGE_ADD_HABITS,
                    CardType.NUDGE_ADD_GOALS,
                }
            ),
            _partial_data,
        ),
        Rule(10, "balanced", frozenset({CardType.BALANCED}), _balanced),
    )


def _check_coverage(chain: Tuple[Rule, ...]) -> None:
    emitted = frozenset().union(*(rule.emits for rule in chain))
    missing = set(CardType) - emitted
    if missing:
        raise RuntimeError(f"Rule chain never emits card types: {sorted(card.value for card in missing)}")
    tiers = [rule.tier for rule in chain]
    if tiers != sorted(tiers) or len(set(tiers)) != len(tiers):
        raise RuntimeError("Rule chain tiers must be unique and ascending")


DEFAULT_RULE_CHAIN = build_rule_chain()
_check_coverage(DEFAULT_RULE_CHAIN)


def evaluate_rules(snapshot: StateSnapshot, chain: Optional[Tuple[Rule, ...]] = None) -> RuleMatch:
    for rule in chain or DEFAULT_RULE_CHAIN:
        match = rule.predicate(snapshot)
        if match is None:
            continue
        if match.card_type not in rule.emits:
            raise RuntimeError(f"Rule {rule.name} emitted undeclared card type {match.card_type.value}")
        logger.debug("[Rules] Tier %d (%s) matched -> %s", rule.tier, rule.name, match.card_type.value)
        return match
    raise RuntimeError("Rule chain ended without a match; the last tier must always match")

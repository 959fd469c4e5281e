import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from ..schemas.coaching import CardAction, CardBinding, CardType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CardTemplate:
    title: str
    body: str
    actions: Tuple[Tuple[str, str], ...] = ()


class _FillValues(dict):
    def __missing__(self, key: str) -> str:
        logger.debug("[Templates] No value for placeholder %s", key)
        return ""


TEMPLATES: Dict[CardType, CardTemplate] = {
    CardType.NEW_USER: CardTemplate(
        title="Welcome! Let's set your first goal",
        body="Pick one thing you want to move forward this month. A single goal is enough to start, and your mentor will build from there.",
        actions=(("Create a goal", "/goals/new"), ("Write a quick note", "/journal/new")),
    ),
    CardType.URGENT_DEADLINE: CardTemplate(
        title="{title} is due soon",
        body="About {hours_until_deadline} hours left and you're at {progress}%. What is the one step you can finish today?",
        actions=(("Open goal", "/goals/{entity_id}"),),
    ),
    CardType.STREAK_AT_RISK: CardTemplate(
        title="Keep your {streak}-day streak alive",
        body="{title} isn't checked off {period} yet. A small version still counts.",
        actions=(("Check it off", "/habits/{entity_id}"),),
    ),
    CardType.STALLED_GOAL: CardTemplate(
        title="{title} needs a nudge",
        body="It's been {days_since_created} days and progress is at {progress}%. Break it into a smaller first step you can take this week.",
        actions=(("Add a milestone", "/goals/{entity_id}/milestones"), ("Open goal", "/goals/{entity_id}")),
    ),
    CardType.MINI_WIN: CardTemplate(
        title="Try a five-minute win on {title}",
        body="Starting is the hardest part. Spend five minutes on {title} today, then jot down how it went.",
        actions=(("Open goal", "/goals/{entity_id}"), ("Write about it", "/journal/new")),
    ),
    CardType.COMEBACK: CardTemplate(
        title="Welcome back",
        body="It's been {days_since_last_journal} days since your last entry. A few lines is enough to pick the thread back up.",
        actions=(("Write an entry", "/journal/new"),),
    ),
    CardType.DISCOVER_REFLECTION_HABIT: CardTemplate(
        title="Check off {title}",
        body="You finished a guided reflection today. Mark your reflection habit as done so your streak reflects it.",
        actions=(("Check it off", "/habits/{entity_id}"),),
    ),
    CardType.DISCOVER_CHAT: CardTemplate(
        title="Talk it through with your mentor",
        body="Your mentor can see your goals and recent entries. Ask for a plan, a pep talk, or a second opinion.",
        actions=(("Open chat", "/chat"),),
    ),
    CardType.DISCOVER_MILESTONES: CardTemplate(
        title="Break goals into milestones",
        body="Milestones turn a big goal into checkpoints you can actually finish. Add two or three to your most important goal.",
        actions=(("View goals", "/goals"),),
    ),
    CardType.WINNING: CardTemplate(
        title="You're on a roll",
        body="Habits at {habit_completion_percent}% and steady journaling for the last {window_days} days. Consider raising the bar on one goal.",
        actions=(("Review goals", "/goals"), ("Reflect on it", "/journal/new")),
    ),
    CardType.NUDGE_JOURNAL_ONLY: CardTemplate(
        title="Turn reflections into a goal",
        body="You've been writing consistently. Is there a theme in your entries worth turning into a goal?",
        actions=(("Create a goal", "/goals/new"),),
    ),
    CardType.NUDGE_START_JOURNALING: CardTemplate(
        title="Start a journal habit",
        body="Your goals and habits are set up. A short daily entry helps you see what's working and what isn't.",
        actions=(("Write an entry", "/journal/new"),),
    ),
    CardType.NUDGE_ADD_HABITS: CardTemplate(
        title="Add a habit to power your goals",
        body="Goals move when small actions repeat. Add one daily habit that feeds your top goal.",
        actions=(("Add a habit", "/habits/new"),),
    ),
    CardType.NUDGE_ADD_GOALS: CardTemplate(
        title="Give your habits a direction",
        body="Your habits are running. Link them to a goal so you can see what they're building toward.",
        actions=(("Create a goal", "/goals/new"),),
    ),
    CardType.BALANCED: CardTemplate(
        title="Keep the momentum",
        body="Goals, habits and journaling are all in motion. Check in with your mentor to plan the week ahead.",
        actions=(("Open chat", "/chat"), ("Write an entry", "/journal/new")),
    ),
}


def _check_templates() -> None:
    missing = [card_type.value for card_type in CardType if card_type not in TEMPLATES]
    if missing:
        raise RuntimeError(f"Card types without a template: {missing}")


_check_templates()


def fill_values(binding: CardBinding) -> Dict[str, Any]:
    values: Dict[str, Any] = _FillValues(binding.facts)
    values["title"] = binding.title or ""
    values["entity_id"] = binding.entity_id or ""
    return values


def render(card_type: CardType, binding: CardBinding) -> Tuple[str, str, List[CardAction]]:
    template = TEMPLATES[card_type]
    values = fill_values(binding)
    actions = [CardAction(label=label, destination=destination.format_map(values)) for label, destination in template.actions]
    return template.title.format_map(values), template.body.format_map(values), actions

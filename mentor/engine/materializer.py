"""
Card materialization.

Template fill always succeeds. Card types configured for generation also ask
the external generator for a body, bounded by a timeout; when that fails the
template card is returned marked as ``fallback``.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from ..config import GenerationSettings
from ..schemas.coaching import CoachingCard, RuleMatch
from ..utils.strings import collapse_whitespace, safe_slice
from .templates import render

logger = logging.getLogger(__name__)

Generator = Callable[[str], Awaitable[str]]

MAX_GENERATED_CHARS = 600


@dataclass(frozen=True)
class Materialized:
    card: CoachingCard
    error: Optional[str] = None


def template_card(match: RuleMatch, now: datetime) -> CoachingCard:
    title, body, actions = render(match.card_type, match.binding)
    return CoachingCard(
        type=match.card_type,
        tier=match.tier,
        title=title,
        body=body,
        source="template",
        binding=match.binding,
        actions=actions,
        created_at=now,
    )


def build_generation_prompt(match: RuleMatch, draft: CoachingCard) -> str:
    binding = match.binding
    lines = [
        "You are a warm, practical personal-growth mentor.",
        "Rewrite the coaching card body below in at most two sentences.",
        "Stay specific to the user's data, do not invent facts, and reply with the body text only.",
        "",
        f"Card: {match.card_type.value}",
    ]
    if binding.kind != "none" and binding.title:
        lines.append(f'Focus: {binding.kind} "{binding.title}"')
    if binding.facts:
        lines.append("Facts:")
        lines.extend(f"- {name}: {binding.facts[name]}" for name in sorted(binding.facts))
    lines.append(f"Title: {draft.title}")
    lines.append(f"Draft: {draft.body}")
    return "\n".join(lines)


class CardMaterializer:
    def __init__(self, settings: Optional[GenerationSettings] = None, generator: Optional[Generator] = None) -> None:
        self.settings = settings or GenerationSettings()
        self.generator = generator

    def wants_generation(self, match: RuleMatch) -> bool:
        return self.generator is not None and match.card_type in self.settings.generated_types

    async def materialize(self, match: RuleMatch, now: datetime) -> Materialized:
        draft = template_card(match, now)
        if not self.wants_generation(match):
            return Materialized(card=draft)

        prompt = build_generation_prompt(match, draft)
        try:
            text = await asyncio.wait_for(self.generator(prompt), timeout=self.settings.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("[Materializer] Generation for %s timed out after %.1fs", match.card_type.value, self.settings.timeout_seconds)
            return Materialized(card=draft.model_copy(update={"source": "fallback"}), error="timeout")
        except Exception as error:
            logger.warning("[Materializer] Generation for %s failed: %s", match.card_type.value, error)
            return Materialized(card=draft.model_copy(update={"source": "fallback"}), error=type(error).__name__)

        body = safe_slice(collapse_whitespace(text if isinstance(text, str) else ""), MAX_GENERATED_CHARS)
        if not body:
            logger.warning("[Materializer] Generator returned no text for %s", match.card_type.value)
            return Materialized(card=draft.model_copy(update={"source": "fallback"}), error="empty")
        return Materialized(card=draft.model_copy(update={"body": body, "source": "generated"}))

"""
Coaching engine pipeline.

Phase one (``evaluate``) is synchronous: snapshot plus rule chain. Phase two
(``get_card``) looks the fingerprint up in the engine's cache and only on a
miss evaluates, materializes and stores the card.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from ..config import EngineSettings
from ..schemas.coaching import DISCOVERY_CARD_TYPES, CardType, CoachingCard, RuleMatch
from ..schemas.entities import FeatureUsage, Goal, Habit, JournalEntry
from ..utils.dates import resolve_now
from .cache import CardCache
from .discovery import DiscoveryState, FeatureDiscovery
from .fingerprint import Fingerprint, compute_fingerprint
from .materializer import CardMaterializer, Generator, Materialized
from .rules import build_rule_chain, evaluate_rules
from .snapshot import StateSnapshot, build_snapshot
from .telemetry import Telemetry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Evaluation:
    snapshot: StateSnapshot
    match: RuleMatch


@dataclass(frozen=True)
class CardResult:
    card: CoachingCard
    cache_hit: bool
    fingerprint: Fingerprint
    trace_id: str


class MentorEngine:
    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        generator: Optional[Generator] = None,
        cache: Optional[CardCache] = None,
        discovery: Optional[FeatureDiscovery] = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.cache = cache or CardCache(max_entries=self.settings.cache.max_entries)
        self.discovery = discovery or FeatureDiscovery()
        self.materializer = CardMaterializer(self.settings.generation, generator)
        self._chain = build_rule_chain(self.settings.thresholds.comeback_min_days)
        self._last: Optional[Tuple[str, CoachingCard]] = None
        self._last_trace: Optional[Tuple[CardType, str]] = None

    def _discovery_inputs(
        self, features: Optional[FeatureUsage], discovered: Optional[Iterable[CardType]]
    ) -> Tuple[FeatureUsage, Tuple[CardType, ...]]:
        state = self.discovery.peek()
        resolved_features = features if features is not None else state.features
        resolved_discovered = tuple(discovered) if discovered is not None else tuple(state.discovered)
        return resolved_features, resolved_discovered

    def evaluate(
        self,
        goals: Sequence[Goal],
        habits: Sequence[Habit],
        journal_entries: Sequence[JournalEntry],
        now: Optional[datetime] = None,
        features: Optional[FeatureUsage] = None,
        discovered: Optional[Iterable[CardType]] = None,
    ) -> Evaluation:
        resolved_features, resolved_discovered = self._discovery_inputs(features, discovered)
        snapshot = build_snapshot(
            goals,
            habits,
            journal_entries,
            now=now,
            features=resolved_features,
            discovered=resolved_discovered,
            thresholds=self.settings.thresholds,
        )
        return Evaluation(snapshot=snapshot, match=evaluate_rules(snapshot, self._chain))

    def fingerprint(
        self,
        goals: Sequence[Goal],
        habits: Sequence[Habit],
        journal_entries: Sequence[JournalEntry],
        now: Optional[datetime] = None,
        features: Optional[FeatureUsage] = None,
        discovered: Optional[Iterable[CardType]] = None,
    ) -> Fingerprint:
        resolved_features, resolved_discovered = self._discovery_inputs(features, discovered)
        return compute_fingerprint(goals, habits, journal_entries, now=now, features=resolved_features, discovered=resolved_discovered)

    async def get_card(
        self,
        goals: Sequence[Goal],
        habits: Sequence[Habit],
        journal_entries: Sequence[JournalEntry],
        now: Optional[datetime] = None,
        features: Optional[FeatureUsage] = None,
        discovered: Optional[Iterable[CardType]] = None,
    ) -> CardResult:
        started_at = int(time.time() * 1000)
        current = resolve_now(now)
        resolved_features, resolved_discovered = self._discovery_inputs(features, discovered)
        fingerprint = compute_fingerprint(
            goals, habits, journal_entries, now=current, features=resolved_features, discovered=resolved_discovered
        )
        outcome: List[Materialized] = []

        async def compute() -> CoachingCard:
            evaluation = self.evaluate(goals, habits, journal_entries, now=current, features=resolved_features, discovered=resolved_discovered)
            materialized: Materialized = await self.materializer.materialize(evaluation.match, current)
            outcome.append(materialized)
            return materialized.card

        card, cache_hit = await self.cache.get_or_compute(fingerprint, compute, live=fingerprint.counts)
        self._last = (fingerprint.key, card)

        error = outcome[0].error if outcome else None
        trace_id = await Telemetry.record(
            {
                "cardType": card.type.value,
                "tier": card.tier,
                "cacheHit": cache_hit,
                "source": card.source,
                "fingerprint": fingerprint.digest[:12],
                "error": error,
                "startedAt": started_at,
            }
        )
        self._last_trace = (card.type, trace_id)
        logger.info("[MentorEngine] Card %s (tier %d, %s, cache %s)", card.type.value, card.tier, card.source, "hit" if cache_hit else "miss")
        return CardResult(card=card, cache_hit=cache_hit, fingerprint=fingerprint, trace_id=trace_id)

    def current_card(
        self,
        goals: Sequence[Goal],
        habits: Sequence[Habit],
        journal_entries: Sequence[JournalEntry],
        now: Optional[datetime] = None,
        features: Optional[FeatureUsage] = None,
        discovered: Optional[Iterable[CardType]] = None,
    ) -> Optional[CoachingCard]:
        """Last card served, or a cached one, if it still matches the live data."""
        fingerprint = self.fingerprint(goals, habits, journal_entries, now=now, features=features, discovered=discovered)
        if self._last is not None and self._last[0] == fingerprint.key:
            return self._last[1]
        return self.cache.peek(fingerprint)

    async def acknowledge(self, card_type: CardType) -> DiscoveryState:
        if self._last_trace is not None and self._last_trace[0] == card_type:
            await Telemetry.update(self._last_trace[1], {"acknowledged": True})
        if card_type in DISCOVERY_CARD_TYPES:
            await self.discovery.mark_discovered(card_type)
        return await self.discovery.mark_used("has_viewed_coaching_card")

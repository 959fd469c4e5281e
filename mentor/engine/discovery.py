import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import BaseModel, Field, ValidationError

from ..schemas.coaching import DISCOVERY_CARD_TYPES, CardType
from ..schemas.entities import FeatureUsage
from ..utils.dates import utc_now

logger = logging.getLogger(__name__)

STORAGE_VERSION = 1


class DiscoveryState(BaseModel):
    version: int = STORAGE_VERSION
    features: FeatureUsage = Field(default_factory=FeatureUsage)
    discovered: List[CardType] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utc_now)


Listener = Callable[[DiscoveryState], None]


def _clone_state(state: DiscoveryState) -> DiscoveryState:
    return DiscoveryState.model_validate(state.model_dump())


def _normalize_state(candidate: Optional[Dict[str, Any]]) -> DiscoveryState:
    if not candidate:
        return DiscoveryState()
    try:
        return DiscoveryState.model_validate(candidate)
    except ValidationError as error:
        logger.warning("[Discovery] Discarding unreadable discovery state: %s", error)
        return DiscoveryState()


class FeatureDiscovery:
    """Feature usage flags plus the set of discovery cards already shown.

    The surrounding app persists ``snapshot()`` and hands it back through
    ``load()``; this class only keeps the in-memory copy consistent.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._state = _normalize_state(initial)
        self._listeners: Set[Listener] = set()
        self._lock = asyncio.Lock()

    def peek(self) -> DiscoveryState:
        return _clone_state(self._state)

    async def snapshot(self) -> DiscoveryState:
        async with self._lock:
            return _clone_state(self._state)

    async def load(self, stored: Optional[Dict[str, Any]]) -> DiscoveryState:
        async with self._lock:
            self._state = _normalize_state(stored)
            current = _clone_state(self._state)
        self._notify(current)
        return current

    async def update(self, patch: Dict[str, Any]) -> DiscoveryState:
        async with self._lock:
            merged = self._state.model_dump()
            merged["features"] = {**merged["features"], **(patch.get("features") or {})}
            discovered = {CardType(item) for item in merged["discovered"]}
            discovered.update(CardType(item) for item in patch.get("discovered") or [])
            merged["discovered"] = sorted(discovered, key=lambda card_type: card_type.value)
            merged["updated_at"] = utc_now()
            try:
                self._state = DiscoveryState.model_validate(merged)
            except ValidationError as error:
                raise ValueError(f"Invalid discovery update: {error}") from error
            current = _clone_state(self._state)
        self._notify(current)
        return current

    async def mark_used(self, flag: str) -> DiscoveryState:
        if flag not in FeatureUsage.model_fields:
            raise ValueError(f"Unknown feature flag: {flag}")
        return await self.update({"features": {flag: True}})

    async def mark_discovered(self, card_type: CardType) -> DiscoveryState:
        if card_type not in DISCOVERY_CARD_TYPES:
            raise ValueError(f"{card_type.value} is not a discovery card")
        return await self.update({"discovered": [card_type]})

    async def reset(self) -> DiscoveryState:
        return await self.load(None)

    def subscribe(self, on_change: Listener) -> Callable[[], None]:
        self._listeners.add(on_change)

        def unsubscribe() -> None:
            self._listeners.discard(on_change)

        return unsubscribe

    def _notify(self, state: DiscoveryState) -> None:
        for listener in list(self._listeners):
            try:
                listener(_clone_state(state))
            except Exception:
                logger.exception("[Discovery] Listener failed")

from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException

from ..config import load_settings
from ..engine.pipeline import MentorEngine
from ..engine.telemetry import Telemetry
from .payloads import parse_card_type, parse_discovered, parse_entities, parse_features

router = APIRouter(prefix="/coaching", tags=["coaching"])

_engine: Optional[MentorEngine] = None


def get_engine() -> MentorEngine:
    global _engine
    if _engine is None:
        _engine = MentorEngine(load_settings())
    return _engine


def set_engine(engine: Optional[MentorEngine]) -> None:
    global _engine
    _engine = engine


@router.post("/card")
async def coaching_card(body: Dict[str, Any]) -> Dict[str, Any]:
    entities = parse_entities(body)
    result = await get_engine().get_card(
        entities["goals"],
        entities["habits"],
        entities["journal_entries"],
        now=entities["now"],
        features=parse_features(body),
        discovered=parse_discovered(body),
    )
    return {**result.card.model_dump(mode="json"), "cacheHit": result.cache_hit, "traceId": result.trace_id}


@router.post("/acknowledge")
async def acknowledge(body: Dict[str, Any]) -> Dict[str, Any]:
    raw_type = body.get("type") or body.get("cardType")
    if not raw_type:
        raise HTTPException(status_code=400, detail="type required")
    state = await get_engine().acknowledge(parse_card_type(raw_type))
    return state.model_dump(mode="json")


@router.get("/traces")
async def traces(limit: int = 20) -> Any:
    return Telemetry.recent(limit)

from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar

from fastapi import HTTPException
from pydantic import BaseModel, TypeAdapter, ValidationError

from ..schemas.coaching import CardType
from ..schemas.entities import FeatureUsage, Goal, Habit, JournalEntry, PulseEntry
from ..utils.dates import ensure_aware

M = TypeVar("M", bound=BaseModel)

_datetime = TypeAdapter(datetime)


def _first(body: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in body and body[key] is not None:
            return body[key]
    return None


def parse_list(body: Dict[str, Any], model: Type[M], *keys: str) -> List[M]:
    raw = _first(body, *keys) or []
    if not isinstance(raw, list):
        raise HTTPException(status_code=400, detail=f"{keys[0]} must be a list")
    try:
        return [model.model_validate(item) for item in raw]
    except (ValidationError, ValueError) as error:
        raise HTTPException(status_code=400, detail=f"invalid {keys[0]}: {error}") from error


def parse_now(body: Dict[str, Any]) -> Optional[datetime]:
    raw = body.get("now")
    if raw is None:
        return None
    try:
        return ensure_aware(_datetime.validate_python(raw))
    except ValidationError as error:
        raise HTTPException(status_code=400, detail="now must be an ISO-8601 timestamp") from error


def parse_features(body: Dict[str, Any]) -> Optional[FeatureUsage]:
    raw = body.get("features")
    if raw is None:
        return None
    try:
        return FeatureUsage.model_validate(raw)
    except ValidationError as error:
        raise HTTPException(status_code=400, detail=f"invalid features: {error}") from error


def parse_card_type(value: Any) -> CardType:
    try:
        return CardType(value)
    except ValueError as error:
        raise HTTPException(status_code=400, detail=f"unknown card type: {value}") from error


def parse_discovered(body: Dict[str, Any]) -> Optional[List[CardType]]:
    raw = body.get("discovered")
    if raw is None:
        return None
    if not isinstance(raw, list):
        raise HTTPException(status_code=400, detail="discovered must be a list")
    return [parse_card_type(item) for item in raw]


def parse_entities(body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "goals": parse_list(body, Goal, "goals"),
        "habits": parse_list(body, Habit, "habits"),
        "journal_entries": parse_list(body, JournalEntry, "journalEntries", "journal_entries"),
        "now": parse_now(body),
    }

from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from ..context.builder import build_context
from ..context.prompts import build_mentor_prompt
from ..schemas.coaching import BoundedContext
from ..schemas.entities import PulseEntry
from .coaching import get_engine
from .payloads import parse_entities, parse_list

router = APIRouter(prefix="/context", tags=["context"])


def _bounded_context(body: Dict[str, Any]) -> BoundedContext:
    entities = parse_entities(body)
    budget = body.get("tokenBudget")
    if budget is not None and (not isinstance(budget, int) or budget <= 0):
        raise HTTPException(status_code=400, detail="tokenBudget must be a positive integer")
    try:
        return build_context(
            entities["goals"],
            entities["habits"],
            entities["journal_entries"],
            parse_list(body, PulseEntry, "pulseEntries", "pulse_entries"),
            backend=body.get("backend"),
            now=entities["now"],
            settings=get_engine().settings,
            token_budget=budget,
        )
    except ValueError as error:
        raise HTTPException(status_code=400, detail=str(error)) from error


@router.post("/build")
async def context_build(body: Dict[str, Any]) -> Dict[str, Any]:
    return _bounded_context(body).model_dump(mode="json")


@router.post("/prompt")
async def context_prompt(body: Dict[str, Any]) -> Dict[str, Any]:
    user_message = body.get("userMessage")
    if not isinstance(user_message, str) or not user_message.strip():
        raise HTTPException(status_code=400, detail="userMessage required")
    history = body.get("history") or []
    if not isinstance(history, list) or not all(isinstance(turn, dict) for turn in history):
        raise HTTPException(status_code=400, detail="history must be a list of turn objects")
    context = _bounded_context(body)
    return {"prompt": build_mentor_prompt(user_message, context, history), "context": context.model_dump(mode="json")}

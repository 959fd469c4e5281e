from typing import Any, Dict, List, Optional, Sequence

from ..schemas.coaching import BoundedContext

HISTORY_TURNS = 6
START_OF_CONVERSATION = "(This is the start of the conversation)"

PERSONA = (
    "You are a supportive, encouraging personal mentor helping the user achieve their goals "
    "and become their best self."
)
TONE = "Your tone is: warm, supportive, direct but not harsh, encouraging but not saccharine."
GUIDANCE = (
    "Respond as their mentor. Be specific and reference their actual data (goals, habits, progress) "
    "when relevant. Keep responses concise (2-3 sentences max unless explaining something complex)."
)


def _speaker(turn: Dict[str, Any]) -> str:
    role = str(turn.get("role") or turn.get("sender") or "").lower()
    if turn.get("isFromUser") is True or role == "user":
        return "User"
    return "Mentor"


def format_history(history: Optional[Sequence[Dict[str, Any]]], turns: int = HISTORY_TURNS) -> str:
    recent = [turn for turn in history or [] if str(turn.get("content") or "").strip()][-turns:]
    if not recent:
        return START_OF_CONVERSATION
    return "\n".join(f"{_speaker(turn)}: {str(turn['content']).strip()}" for turn in recent)


def build_mentor_prompt(user_message: str, context: BoundedContext, history: Optional[Sequence[Dict[str, Any]]] = None) -> str:
    message = user_message.strip()
    if not message:
        raise ValueError("user message is empty")
    sections: List[str] = [
        PERSONA,
        TONE,
        f"Context about the user:\n{context.text}",
        f"Recent conversation:\n{format_history(history)}",
        f"User's message: {message}",
        GUIDANCE,
    ]
    return "\n\n".join(sections)

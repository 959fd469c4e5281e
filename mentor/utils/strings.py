import re
from typing import Optional


WHITESPACE = re.compile(r"\s+")


def collapse_whitespace(value: str) -> str:
    if not value:
        return ""
    return WHITESPACE.sub(" ", value).strip()


def safe_slice(value: Optional[str], length: int) -> str:
    if not value:
        return ""
    return value if len(value) <= length else f"{value[: length - 1]}…"


def preview(value: Optional[str], length: int) -> str:
    return safe_slice(collapse_whitespace(value or ""), length)

"""
Engine configuration.

Every threshold the rule chain uses and both token budgets live here so
callers and tests can override them. Values load from a YAML file (path
argument or ``MENTOR_SETTINGS_PATH``) merged over the defaults below.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .schemas.coaching import Backend, CardType

logger = logging.getLogger(__name__)

SETTINGS_ENV = "MENTOR_SETTINGS_PATH"


class RuleThresholds(BaseModel):
    urgent_deadline_hours: float = Field(default=24, gt=0)
    streak_at_risk_min_days: int = Field(default=7, ge=1)
    stalled_goal_min_age_days: int = Field(default=3, ge=0)
    stalled_goal_max_progress: int = Field(default=10, ge=0, le=100)
    mini_win_min_age_days: int = Field(default=3, ge=0)
    mini_win_max_progress: int = Field(default=5, ge=0, le=100)
    comeback_min_days: int = Field(default=3, ge=1)
    winning_completion_rate: float = Field(default=0.8, ge=0, le=1)
    winning_journals_per_week: int = Field(default=4, ge=0)
    winning_window_days: int = Field(default=14, ge=7)


class TokenBudgets(BaseModel):
    remote: int = Field(default=2000, gt=0)
    local: int = Field(default=400, gt=0)


class ContextLimits(BaseModel):
    journal_limit: int = Field(ge=0)
    pulse_limit: int = Field(ge=0)
    preview_chars: int = Field(ge=16)


class ContextSettings(BaseModel):
    remote: ContextLimits = ContextLimits(journal_limit=10, pulse_limit=7, preview_chars=200)
    local: ContextLimits = ContextLimits(journal_limit=3, pulse_limit=3, preview_chars=80)
    tokens_per_word: float = Field(default=1.3, gt=0)

    def limits_for(self, backend: Backend) -> ContextLimits:
        return self.remote if backend == "remote" else self.local


class GenerationSettings(BaseModel):
    timeout_seconds: float = Field(default=8.0, gt=0)
    generated_types: List[CardType] = Field(
        default_factory=lambda: [
            CardType.STALLED_GOAL,
            CardType.COMEBACK,
            CardType.WINNING,
            CardType.BALANCED,
        ]
    )


class CacheSettings(BaseModel):
    max_entries: int = Field(default=32, ge=1)


class EngineSettings(BaseModel):
    thresholds: RuleThresholds = Field(default_factory=RuleThresholds)
    budgets: TokenBudgets = Field(default_factory=TokenBudgets)
    context: ContextSettings = Field(default_factory=ContextSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)

    def budget_for(self, backend: Backend) -> int:
        return self.budgets.remote if backend == "remote" else self.budgets.local


def _deep_merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def settings_from_dict(patch: Optional[Dict[str, Any]]) -> EngineSettings:
    defaults = EngineSettings().model_dump(mode="json")
    try:
        return EngineSettings.model_validate(_deep_merge(defaults, patch or {}))
    except ValidationError as error:
        raise ValueError(f"Invalid mentor settings: {error}") from error


def load_settings(path: Optional[Path] = None) -> EngineSettings:
    resolved = path or os.environ.get(SETTINGS_ENV)
    if not resolved:
        return EngineSettings()
    file_path = Path(resolved)
    if not file_path.exists():
        logger.warning("[Config] Settings file %s not found, using defaults", file_path)
        return EngineSettings()
    try:
        parsed = yaml.safe_load(file_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as error:
        raise ValueError(f"Settings file {file_path} is not valid YAML") from error
    if parsed is None:
        return EngineSettings()
    if not isinstance(parsed, dict):
        raise ValueError(f"Settings file {file_path} did not produce a mapping")
    settings = settings_from_dict(parsed)
    logger.info("[Config] Loaded settings from %s", file_path)
    return settings

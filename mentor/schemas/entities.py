from datetime import date, datetime
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from ..utils.dates import ensure_aware, iso_week, resolve_now
from ..utils.nanoid import nanoid

GoalStatus = Literal["active", "backlog", "completed", "abandoned"]
GoalCategory = Literal["health", "fitness", "career", "learning", "relationships", "finance", "personal", "other"]
AwareDatetime = Annotated[datetime, AfterValidator(ensure_aware)]
HabitFrequency = Literal["daily", "weekly"]
JournalVariant = Literal["quick_note", "guided", "structured"]

LEGACY_VARIANTS = {
    "quickNote": "quick_note",
    "guidedJournal": "guided",
    "structuredJournal": "structured",
}

MOOD_SCALE = {"veryBad": 1, "bad": 2, "neutral": 3, "good": 4, "excellent": 5}


def _strip_enum_prefix(value: Any) -> Any:
    # Older exports stored enums as "GoalStatus.active".
    if isinstance(value, str) and "." in value:
        return value.rsplit(".", 1)[1]
    return value


class Milestone(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: nanoid("ms"))
    title: str
    completed: bool = Field(default=False, validation_alias=AliasChoices("completed", "isCompleted"))
    target_date: Optional[AwareDatetime] = Field(default=None, validation_alias=AliasChoices("target_date", "targetDate"))
    completed_at: Optional[AwareDatetime] = Field(default=None, validation_alias=AliasChoices("completed_at", "completedDate"))


class Goal(BaseModel):
    """A user goal.

    ``is_active`` is derived from ``status`` and cannot be set. Legacy
    documents that only carry the old flag are upgraded on load.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: nanoid("goal"))
    title: str
    description: str = ""
    category: GoalCategory = "other"
    status: GoalStatus = "active"
    progress: int = Field(default=0, validation_alias=AliasChoices("progress", "currentProgress"))
    created_at: AwareDatetime = Field(validation_alias=AliasChoices("created_at", "createdAt"))
    updated_at: AwareDatetime = Field(validation_alias=AliasChoices("updated_at", "updatedAt"))
    deadline: Optional[AwareDatetime] = Field(default=None, validation_alias=AliasChoices("deadline", "targetDate"))
    milestones: List[Milestone] = Field(default_factory=list, validation_alias=AliasChoices("milestones", "milestonesDetailed"))

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        payload = dict(data)
        legacy_flags = [payload.pop(key) for key in ("is_active", "isActive") if key in payload]
        status = _strip_enum_prefix(payload.get("status"))
        if status is None and legacy_flags:
            status = "active" if legacy_flags[0] else "backlog"
        if status is not None:
            payload["status"] = status
        if "category" in payload:
            payload["category"] = _strip_enum_prefix(payload["category"])
        if not payload.get("updated_at") and not payload.get("updatedAt"):
            payload["updated_at"] = payload.get("created_at") or payload.get("createdAt")
        return payload

    @field_validator("progress", mode="before")
    @classmethod
    def _clamp_progress(cls, value: Any) -> int:
        try:
            numeric = int(round(float(value)))
        except (TypeError, ValueError):
            return 0
        return max(0, min(100, numeric))

    @computed_field  # type: ignore[misc]
    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def has_milestones(self) -> bool:
        return bool(self.milestones)

    def with_status(self, status: GoalStatus, now: Optional[datetime] = None) -> "Goal":
        return Goal.model_validate({**self.model_dump(exclude={"is_active"}), "status": status, "updated_at": resolve_now(now)})

    def with_progress(self, progress: int, now: Optional[datetime] = None) -> "Goal":
        return Goal.model_validate({**self.model_dump(exclude={"is_active"}), "progress": progress, "updated_at": resolve_now(now)})


class Habit(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: nanoid("habit"))
    title: str
    frequency: HabitFrequency = "daily"
    status: GoalStatus = "active"
    current_streak: int = Field(default=0, validation_alias=AliasChoices("current_streak", "currentStreak"))
    completion_dates: List[date] = Field(default_factory=list, validation_alias=AliasChoices("completion_dates", "completionDates"))
    created_at: AwareDatetime = Field(validation_alias=AliasChoices("created_at", "createdAt"))
    updated_at: AwareDatetime = Field(validation_alias=AliasChoices("updated_at", "updatedAt"))
    goal_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("goal_id", "linkedGoalId"))
    tracks_reflection: bool = False

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        payload = dict(data)
        payload.pop("is_active", None)
        payload.pop("isActive", None)
        if "status" in payload:
            payload["status"] = _strip_enum_prefix(payload["status"])
        if not payload.get("updated_at") and not payload.get("updatedAt"):
            payload["updated_at"] = payload.get("created_at") or payload.get("createdAt")
        return payload

    @field_validator("current_streak", mode="before")
    @classmethod
    def _non_negative(cls, value: Any) -> int:
        return max(0, int(value or 0))

    @field_validator("completion_dates")
    @classmethod
    def _dedupe_dates(cls, value: List[date]) -> List[date]:
        return sorted(set(value))

    @computed_field  # type: ignore[misc]
    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def completed_in_period(self, day: date) -> bool:
        if self.frequency == "weekly":
            week = iso_week(day)
            return any(iso_week(done) == week for done in self.completion_dates)
        return day in self.completion_dates

    def completions_between(self, start: date, end: date) -> int:
        return len([done for done in self.completion_dates if start <= done <= end])


class QAPair(BaseModel):
    model_config = ConfigDict(frozen=True)

    question: str
    answer: str


def derive_structured_content(structured_data: Dict[str, Any], template_name: Optional[str] = None, template_emoji: Optional[str] = None) -> str:
    lines: List[str] = []
    header = f"{template_emoji or ''} {template_name or ''}".strip()
    if header:
        lines.append(header)
    for key, value in structured_data.items():
        if value is None or str(value).strip() == "":
            continue
        lines.append(f"{key}: {value}")
    if len(lines) == (1 if header else 0):
        return ""
    return "\n\n".join(lines)


class JournalEntry(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: nanoid("entry"))
    created_at: AwareDatetime = Field(validation_alias=AliasChoices("created_at", "createdAt"))
    updated_at: Optional[AwareDatetime] = Field(default=None, validation_alias=AliasChoices("updated_at", "updatedAt"))
    variant: JournalVariant = Field(default="quick_note", validation_alias=AliasChoices("variant", "type"))
    content: str = ""
    qa_pairs: List[QAPair] = Field(default_factory=list, validation_alias=AliasChoices("qa_pairs", "qaPairs"))
    structured_data: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("structured_data", "structuredData"))
    template_name: Optional[str] = None
    template_emoji: Optional[str] = None
    reflection_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("reflection_type", "reflectionType"))
    goal_ids: List[str] = Field(default_factory=list, validation_alias=AliasChoices("goal_ids", "goalIds"))

    @model_validator(mode="before")
    @classmethod
    def _derive_content(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        payload = dict(data)
        raw_variant = payload.get("variant", payload.get("type"))
        if raw_variant is not None:
            payload["variant"] = LEGACY_VARIANTS.get(raw_variant, raw_variant)
            payload.pop("type", None)
        if payload.get("content") is None:
            payload["content"] = ""
        if payload.get("variant") == "structured" and not str(payload["content"]).strip():
            structured = payload.get("structured_data") or payload.get("structuredData") or {}
            derived = derive_structured_content(structured, payload.get("template_name"), payload.get("template_emoji"))
            if not derived:
                raise ValueError("structured journal entry needs content or non-empty field data")
            payload["content"] = derived
        return payload

    @property
    def touched_at(self) -> datetime:
        return self.updated_at or self.created_at

    def text(self) -> str:
        if self.variant == "guided" and self.qa_pairs:
            return "\n\n".join(f"{pair.question}\n{pair.answer}" for pair in self.qa_pairs)
        return self.content


class PulseEntry(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: nanoid("pulse"))
    timestamp: AwareDatetime
    custom_metrics: Dict[str, int] = Field(default_factory=dict, validation_alias=AliasChoices("custom_metrics", "customMetrics"))
    notes: Optional[str] = None
    journal_entry_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("journal_entry_id", "journalEntryId"))

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy_metrics(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if data.get("custom_metrics") is not None or data.get("customMetrics") is not None:
            return data
        payload = {key: value for key, value in data.items() if key not in ("mood", "energyLevel", "energy_level")}
        metrics: Dict[str, int] = {}
        raw_mood = _strip_enum_prefix(data.get("mood"))
        mood = MOOD_SCALE.get(raw_mood) if isinstance(raw_mood, str) else None
        if mood:
            metrics["Mood"] = mood
        energy = data.get("energyLevel", data.get("energy_level")) or 0
        if isinstance(energy, int) and energy > 0:
            metrics["Energy"] = energy
        payload["custom_metrics"] = metrics
        return payload

    @field_validator("custom_metrics")
    @classmethod
    def _scale(cls, value: Dict[str, int]) -> Dict[str, int]:
        for name, score in value.items():
            if not 1 <= score <= 5:
                raise ValueError(f"metric {name} must be on a 1-5 scale, got {score}")
        return value

    def summary(self) -> str:
        if not self.custom_metrics:
            return "Pulse check"
        return ", ".join(f"{name} {self.custom_metrics[name]}/5" for name in sorted(self.custom_metrics))


def _flag(legacy_key: str) -> Any:
    return Field(default=False, validation_alias=AliasChoices(legacy_key))


class FeatureUsage(BaseModel):
    """Discovery flags. Accepts the camelCase keys the mobile app stores."""

    model_config = ConfigDict(populate_by_name=True)

    has_opened_chat: bool = _flag("hasOpenedChatScreen")
    has_completed_guided_reflection: bool = _flag("hasCompletedGuidedReflection")
    has_checked_off_reflection_habit: bool = _flag("hasCheckedOffReflectionHabit")
    has_tried_pulse_check: bool = _flag("hasTriedPulseCheck")
    has_created_milestone: bool = _flag("hasCreatedMilestone")
    has_viewed_coaching_card: bool = _flag("hasViewedCoachingCard")
    has_linked_habit_to_goal: bool = _flag("hasLinkedHabitToGoal")
    has_exported_data: bool = _flag("hasExportedData")
    has_used_ai_analysis: bool = _flag("hasUsedAIAnalysis")

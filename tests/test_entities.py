import pathlib
import sys
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from builders import NOW, entry, goal  # noqa: E402
from mentor.schemas.entities import FeatureUsage, Goal, Habit, JournalEntry, PulseEntry  # noqa: E402


def test_legacy_is_active_maps_to_status():
    active = Goal.model_validate({"title": "Read more", "isActive": True, "createdAt": "2025-01-01T00:00:00Z"})
    parked = Goal.model_validate({"title": "Learn piano", "isActive": False, "createdAt": "2025-01-01T00:00:00Z"})
    assert active.status == "active" and active.is_active
    assert parked.status == "backlog" and not parked.is_active


def test_explicit_status_wins_over_legacy_flag():
    loaded = Goal.model_validate({"title": "Read more", "status": "completed", "is_active": True, "created_at": NOW})
    assert loaded.status == "completed"
    assert loaded.is_active is False


def test_is_active_follows_status_changes():
    original = goal(status="active")
    finished = original.with_status("completed", now=NOW)
    assert original.is_active
    assert not finished.is_active
    assert finished.updated_at == NOW
    assert finished.id == original.id


def test_goal_is_frozen():
    with pytest.raises(ValidationError):
        goal().status = "abandoned"  # type: ignore[misc]


def test_enum_prefixed_values_and_progress_clamp():
    loaded = Goal.model_validate(
        {"title": "Save", "status": "GoalStatus.active", "category": "GoalCategory.finance", "currentProgress": 140, "createdAt": NOW}
    )
    assert loaded.status == "active"
    assert loaded.category == "finance"
    assert loaded.progress == 100
    assert goal(progress=-5).progress == 0


def test_updated_at_defaults_to_created_at():
    loaded = Goal.model_validate({"title": "Save", "created_at": "2025-02-01T08:00:00"})
    assert loaded.updated_at == loaded.created_at
    assert loaded.created_at.tzinfo is not None


def test_habit_completion_dates_dedupe_and_weekly_period():
    monday = datetime(2025, 3, 10, tzinfo=timezone.utc).date()
    habit = Habit.model_validate(
        {"title": "Long run", "frequency": "weekly", "completionDates": [monday, monday], "createdAt": NOW}
    )
    assert habit.completion_dates == [monday]
    assert habit.completed_in_period(NOW.date())
    assert not habit.completed_in_period(datetime(2025, 3, 17, tzinfo=timezone.utc).date())


def test_structured_entry_derives_content():
    loaded = JournalEntry.model_validate(
        {
            "createdAt": NOW,
            "type": "structuredJournal",
            "structuredData": {"Wins": "Shipped the draft", "Blockers": "", "Mood": "calm"},
            "template_name": "Daily Review",
            "template_emoji": "📝",
        }
    )
    assert loaded.variant == "structured"
    assert loaded.content == "📝 Daily Review\n\nWins: Shipped the draft\n\nMood: calm"


def test_structured_entry_without_fields_is_rejected():
    with pytest.raises(ValidationError):
        JournalEntry.model_validate({"created_at": NOW, "variant": "structured", "structured_data": {"Wins": "  "}})


def test_guided_entry_text_joins_pairs():
    guided = entry(
        variant="guided",
        content="",
        qa_pairs=[{"question": "What went well?", "answer": "Morning run"}, {"question": "What next?", "answer": "Rest"}],
    )
    assert guided.text() == "What went well?\nMorning run\n\nWhat next?\nRest"


def test_pulse_metrics_are_bounded():
    with pytest.raises(ValidationError):
        PulseEntry.model_validate({"timestamp": NOW, "customMetrics": {"Mood": 6}})
    reading = PulseEntry.model_validate({"timestamp": NOW, "customMetrics": {"Mood": 4, "Energy": 2}})
    assert reading.summary() == "Energy 2/5, Mood 4/5"


def test_feature_usage_accepts_stored_camel_case_keys():
    stored = FeatureUsage.model_validate({"hasOpenedChatScreen": True, "hasUsedAIAnalysis": True, "hasTriedPulseCheck": False})
    assert stored.has_opened_chat
    assert stored.has_used_ai_analysis
    assert not stored.has_tried_pulse_check
    assert FeatureUsage.model_validate({"has_created_milestone": True}).has_created_milestone


def test_legacy_pulse_mood_and_energy_become_metrics():
    legacy = PulseEntry.model_validate({"timestamp": "2025-03-10T08:00:00Z", "mood": "MoodRating.good", "energyLevel": 4})
    assert legacy.custom_metrics == {"Mood": 4, "Energy": 4}
    assert legacy.summary() == "Energy 4/5, Mood 4/5"

    unset = PulseEntry.model_validate({"timestamp": "2025-03-10T08:00:00Z", "mood": "MoodRating.notSet", "energyLevel": 0})
    assert unset.custom_metrics == {}

    current = PulseEntry.model_validate({"timestamp": "2025-03-10T08:00:00Z", "mood": "MoodRating.bad", "customMetrics": {"Focus": 2}})
    assert current.custom_metrics == {"Focus": 2}

import pathlib
import sys
from datetime import timedelta

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from builders import NOW, entry, goal, habit, pulse  # noqa: E402
from mentor.config import settings_from_dict  # noqa: E402
from mentor.context.builder import NO_DATA_TEXT, TRIMMED_TEXT, build_context, normalize_backend  # noqa: E402
from mentor.context.prompts import START_OF_CONVERSATION, build_mentor_prompt, format_history  # noqa: E402
from mentor.context.tokens import estimate_tokens  # noqa: E402
from mentor.schemas.entities import JournalEntry  # noqa: E402


def _journal_lines(text: str):
    block = text.split("Recent Journal Entries:\n", 1)[1].split("\n\n", 1)[0]
    return block.splitlines()


def test_empty_input_gives_minimal_context():
    context = build_context([], [], [], [], backend="remote", now=NOW)
    assert context.text == NO_DATA_TEXT
    assert context.included == {"goals": 0, "habits": 0, "journal": 0, "pulse": 0}
    assert not context.truncated


def test_token_estimate_uses_word_count():
    assert estimate_tokens("") == 0
    assert estimate_tokens("one two three four five six seven eight nine ten") == 13
    assert estimate_tokens("one", tokens_per_word=1.3) == 2


def test_sections_are_ordered_and_sorted():
    goals = [
        goal("Stale goal", days_old=20, updated_days_ago=10),
        goal("Fresh goal", days_old=20, updated_days_ago=1),
        goal("Parked goal", status="backlog", updated_days_ago=0),
    ]
    habits = [habit("Short streak", streak=2), habit("Long streak", streak=21)]
    entries = [entry(5, content="older note"), entry(1, content="newest note"), entry(3, content="middle note")]
    context = build_context(goals, habits, entries, [pulse(2)], backend="remote", now=NOW)
    text = context.text

    assert text.index("Active Goals:") < text.index("Habits:") < text.index("Recent Journal Entries:") < text.index("Recent Pulse Checks:")
    assert text.index("Fresh goal") < text.index("Stale goal")
    assert "Parked goal" not in text
    assert text.index("Long streak") < text.index("Short streak")
    assert text.index("newest note") < text.index("middle note") < text.index("older note")
    assert context.included == {"goals": 2, "habits": 2, "journal": 3, "pulse": 1}


def test_journal_recency_prefers_update_time():
    edited = entry(9, content="edited yesterday", updated_days_ago=1)
    recent = entry(2, content="written two days ago")
    context = build_context([], [], [recent, edited], backend="remote", now=NOW)
    assert _journal_lines(context.text)[0].endswith("edited yesterday")


def test_fifty_journals_with_budget_for_five():
    entries = [entry(index * 0.1, content=f"note number {index}", entry_id=f"entry_{index:02d}") for index in range(50)]
    five_cap = settings_from_dict({"context": {"remote": {"journal_limit": 5}}})
    five_only = build_context([], [], entries, backend="remote", now=NOW, settings=five_cap, token_budget=100000)
    assert five_only.included["journal"] == 5

    context = build_context([], [], list(reversed(entries)), backend="remote", now=NOW, token_budget=five_only.estimated_tokens)
    assert context.included["journal"] == 5
    assert context.dropped["journal"] == 45
    assert context.truncated
    assert _journal_lines(context.text) == _journal_lines(five_only.text)
    assert [line.rsplit(" ", 1)[1] for line in _journal_lines(context.text)] == ["0", "1", "2", "3", "4"]


def test_pulse_is_dropped_before_journal():
    goals = [goal("Run a 10k")]
    entries = [entry(1, content="good run"), entry(2, content="rest day")]
    pulses = [pulse(1, notes="newer pulse"), pulse(4, notes="older pulse")]
    full = build_context(goals, [], entries, pulses, backend="remote", now=NOW)
    trimmed = build_context(goals, [], entries, pulses, backend="remote", now=NOW, token_budget=full.estimated_tokens - 1)
    assert trimmed.dropped == {"goals": 0, "habits": 0, "journal": 0, "pulse": 1}
    assert "newer pulse" in trimmed.text
    assert "older pulse" not in trimmed.text


def test_goals_survive_until_everything_else_is_gone():
    goals = [goal("Run a 10k"), goal("Learn Spanish")]
    goals_only = build_context(goals, [], [], backend="remote", now=NOW)
    context = build_context(
        goals,
        [habit("Meditate", streak=3), habit("Stretch", streak=1)],
        [entry(1), entry(2)],
        [pulse(1)],
        backend="remote",
        now=NOW,
        token_budget=goals_only.estimated_tokens,
    )
    assert context.included == {"goals": 2, "habits": 0, "journal": 0, "pulse": 0}
    assert context.text == goals_only.text

    squeezed = build_context(goals, [], [], backend="remote", now=NOW, token_budget=goals_only.estimated_tokens - 1)
    assert squeezed.included["goals"] == 1
    assert squeezed.dropped["goals"] == 1


def test_local_backend_uses_small_caps():
    entries = [entry(index, content=f"note {index}") for index in range(6)]
    context = build_context([], [], entries, [pulse(index) for index in range(5)], backend="local", now=NOW)
    assert context.backend == "local"
    assert context.token_budget == 400
    assert context.included["journal"] == 3
    assert context.dropped["journal"] == 3
    assert context.included["pulse"] == 3


def test_previews_are_clipped_per_backend():
    long_text = "word " * 200
    context = build_context([], [], [entry(1, content=long_text)], backend="local", now=NOW)
    line = _journal_lines(context.text)[0]
    assert line.endswith("…")
    assert len(line.split(": ", 1)[1]) == 80


def test_building_twice_is_byte_identical():
    goals = [goal("Run a 10k", deadline_in=timedelta(days=10), milestones=3)]
    habits = [habit("Meditate", streak=4)]
    entries = [entry(index, content=f"note {index}") for index in range(8)]
    first = build_context(goals, habits, entries, [pulse(1)], backend="remote", now=NOW)
    second = build_context(goals, habits, entries, [pulse(1)], backend="remote", now=NOW)
    assert first.text == second.text
    assert first.model_dump() == second.model_dump()


def test_backend_aliases():
    assert normalize_backend("cloud") == "remote"
    assert normalize_backend("LOCAL") == "local"
    assert normalize_backend(None) == "remote"
    with pytest.raises(ValueError):
        normalize_backend("mainframe")


def test_history_keeps_last_six_turns():
    history = [{"role": "user" if index % 2 == 0 else "assistant", "content": f"turn {index}"} for index in range(10)]
    rendered = format_history(history)
    assert rendered.splitlines()[0] == "User: turn 4"
    assert rendered.splitlines()[-1] == "Mentor: turn 9"
    assert len(rendered.splitlines()) == 6
    assert format_history([]) == START_OF_CONVERSATION


def test_mentor_prompt_embeds_context_and_message():
    context = build_context([goal("Run a 10k")], [], [], backend="local", now=NOW)
    prompt = build_mentor_prompt("How am I doing?", context, [])
    assert "Context about the user:\nActive Goals:" in prompt
    assert "User's message: How am I doing?" in prompt
    assert START_OF_CONVERSATION in prompt
    with pytest.raises(ValueError):
        build_mentor_prompt("   ", context)


def test_budget_that_removes_everything_says_so():
    context = build_context([goal("Run a 10k")], [], [], backend="remote", now=NOW, token_budget=1)
    assert context.text == TRIMMED_TEXT
    assert context.included["goals"] == 0
    assert context.dropped["goals"] == 1
    assert context.truncated


def test_journal_line_shows_reflection_type():
    checkin = JournalEntry.model_validate(
        {"createdAt": NOW, "type": "guidedJournal", "reflectionType": "checkin", "qaPairs": [{"question": "How was today?", "answer": "Calm"}]}
    )
    context = build_context([], [], [checkin], backend="remote", now=NOW)
    assert _journal_lines(context.text)[0].startswith("- Today (guided reflection, checkin): ")

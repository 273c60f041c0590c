import pytest

from conftest import word
from models import GenerationRequest
from orchestration import act_flow
from orchestration.models import Act, GenerationJob
from profiles import GenreProfile


@pytest.mark.parametrize(
    "words, mode, expected",
    [
        (1800, "short", 1),
        (4000, "short-multi-act", 2),
        (2300, "short-multi-act", 2),
        (7000, "short-multi-act", 3),
        (9500, "long", 4),
    ],
)
def test_act_count(words, mode, expected):
    assert act_flow.act_count(words, mode) == expected


def test_act_temperature_by_progress(mystery):
    assert act_flow.act_temperature(1, 5, mystery) == 0.7
    assert act_flow.act_temperature(3, 5, mystery) == 0.75
    assert act_flow.act_temperature(4, 4, mystery) == 0.65


def test_act_temperature_without_genre_temps():
    plain = GenreProfile(code="plain", name="Plain")
    assert act_flow.act_temperature(1, 2, plain) == 0.7
    assert act_flow.act_temperature(1, 5, plain) == 0.8
    assert act_flow.act_temperature(5, 5, plain) == 0.65


def test_act_summary_keeps_leading_words():
    text = " ".join(word(i) for i in range(100))
    summary = act_flow.act_summary(text, "en-US")
    assert summary == " ".join(word(i) for i in range(15)) + "..."


def test_cumulative_context():
    acts = [
        Act(index=1, word_budget=3000, text="first act text", summary="S1"),
        Act(index=2, word_budget=3000, text="second act text", summary="S2"),
    ]
    context = act_flow.cumulative_context(acts)
    assert "PREVIOUS ACTS SUMMARY" in context
    assert "ACT 1 SUMMARY:\nS1" in context
    assert "ACT 2 SUMMARY" not in context
    assert "ACT 2 - FULL TEXT (continue from here)" in context
    assert "second act text" in context
    assert "Write Act 3" in context
    single = act_flow.cumulative_context(acts[:1])
    assert "PREVIOUS ACTS SUMMARY" not in single


def test_narrator_name():
    assert act_flow.narrator_name("Told from Mara's perspective.", "first") == "Mara"
    assert act_flow.narrator_name("narrator: Jonas", "first") == "Jonas"
    assert act_flow.narrator_name("Told from Mara's perspective.", "third") is None
    assert act_flow.narrator_name("A harbor theft.", "first") is None


def test_span_and_transitions():
    assert act_flow.time_span(4000) == "24-48 hours"
    assert act_flow.time_span(12000) == "1-2 weeks"
    assert act_flow.max_transitions(6000) == "3-5"
    assert act_flow.max_transitions(25000) == "7-10"


def test_chapter_count(mystery):
    assert act_flow.chapter_count(3500, mystery, "short") == 10
    assert act_flow.chapter_count(3000, mystery, "long", 1, 4) == 5
    assert act_flow.chapter_count(3000, mystery, "long", 2, 4) == 4
    assert act_flow.chapter_count(500, mystery, "long", 2, 4) == 3


def _job(en, mystery, premise, pov="first"):
    request = GenerationRequest(genre="mystery", target_words=2000, pov=pov, premise=premise)
    return GenerationJob(
        request=request,
        language=en,
        genre=mystery,
        target_words=2000,
        mode="short",
        premise=premise,
    )


def test_planner_prompt_single_act(en, mystery):
    job = _job(en, mystery, "Told from Mara's perspective, a harbor theft.")
    system, user = act_flow.build_planner_prompt(job, target_words=2000)
    assert "Use ONLY Mara as narrator" in system
    assert "a harbor theft" in user
    assert "6 chapters" in user
    assert "CONTINUATION MODE" not in user


def test_planner_prompt_for_later_act(en, mystery):
    job = _job(en, mystery, "A harbor theft.", pov="third")
    _, user = act_flow.build_planner_prompt(
        job,
        target_words=1000,
        act_number=2,
        total_acts=3,
        context_summary="PREVIOUS ACT ENDING:\nThe tide turned.",
    )
    assert "CONTINUATION MODE - ACT 2 of 3" in user
    assert "The tide turned." in user
    assert "(FINAL ACT)" not in user

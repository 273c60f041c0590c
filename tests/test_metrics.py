import pytest

from processing.metrics import (
    analyze_pacing,
    avg_sentence_length,
    bigram_repetition,
    check_length,
    count_rhetorical,
    dialogue_stats,
    has_hook,
    missing_hooks,
    pov_drift,
    sensory_triplet,
)


def test_bigram_repetition_counts_repeats_per_thousand(en):
    text = "harbor light " * 10
    stats = bigram_repetition(text, en)
    # 20 tokens, 19 bigrams: "harbor light" x10 and "light harbor" x9.
    assert stats.repeated == 17
    assert stats.rate == pytest.approx(17 / 19 * 1000)
    assert stats.high_frequency[0] == ("harbor light", 10)
    assert stats.top(1) == [{"bigram": "harbor light", "count": 10}]


def test_bigram_repetition_ignores_stopwords_and_short_text(en):
    assert bigram_repetition("the and the and", en).rate == 0.0
    assert bigram_repetition("", en).high_frequency == []


def test_has_hook():
    assert has_hook("Quiet night.\n\nWho was at the door?")
    assert has_hook("The lights went out. Then she heard footsteps")
    assert not has_hook("The lights went out. The end.")


def test_missing_hooks():
    markdown = "# One\n\nWho knocked?\n\n# Two\n\nThe end.\n\n# Three\n\nShe realized too late."
    assert missing_hooks(markdown) == (1, 3)


@pytest.mark.parametrize(
    "actual, needs_adjustment",
    [(890, True), (950, False), (1100, False), (1101, True)],
)
def test_check_length_tolerance(actual, needs_adjustment):
    result = check_length("w " * actual, 1000, 0.10)
    assert result.needs_adjustment is needs_adjustment
    assert result.difference == actual - 1000


def test_check_length_suggestion():
    result = check_length("w " * 500, 1000, 0.10)
    assert result.ratio == 0.5
    assert result.suggestion == "expand by approximately 500 words"
    assert result.as_dict()["percent_diff"] == -50.0


def test_pov_drift_third_person_with_first_person_narration(en):
    text = "I walked. My hands shook. I waited. I left. Me again. I stayed."
    result = pov_drift(text, "third", en)
    assert result["drift"] is True
    assert result["first"] == 6


def test_pov_drift_ignores_dialogue(en):
    text = 'He waited. "I know, I know, I did it, my fault, me," she said. He left.'
    assert pov_drift(text, "third", en)["drift"] is False


def test_pov_drift_without_pov(en):
    assert pov_drift("I me my", None, en)["drift"] is False


def test_analyze_pacing_flags_missing_hook():
    flags = analyze_pacing("# One\n\nThe end.")
    assert flags == ["Chapter 1: Missing soft hook at end"]


def test_avg_sentence_length_excludes_dialogue():
    avg, count = avg_sentence_length('One two three. "Ignored words here." Four five six seven. ')
    assert count == 2
    assert avg == 3.5


def test_count_rhetorical():
    assert count_rhetorical("Why now? Was it fate?\nNo.") == 2


def test_dialogue_stats():
    long_line = '"' + " ".join(["word"] * 25) + '"'
    stats = dialogue_stats(f'"Short."\n{long_line}\nNarration.')
    assert stats == {"total_turns": 2, "long_turns": 1}


def test_sensory_triplet():
    assert sensory_triplet("A low hum. Cold air. The corridor.") == {
        "sound": True,
        "touch": True,
        "space": True,
    }
    assert not any(sensory_triplet("Nothing here.").values())

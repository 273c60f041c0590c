from conftest import make_story

from processing import quality_gate
from processing.quality_gate import (
    GateConfig,
    evaluate,
    expected_chapters,
    generate_quality_report,
    repetition_threshold,
    validate_patch_response,
)


def _codes(report):
    return [failure.split(":")[0] for failure in report.failures]


def test_clean_story_passes(en, mystery):
    config = GateConfig.for_genre(mystery, premise="A harbor case", pov="third")
    report = evaluate(make_story(2000), 2000, config, en, mystery)
    assert report.passed, report.failures
    for key in (
        "truncated",
        "length_ratio",
        "repetition_rate",
        "high_frequency_bigrams",
        "motif_density",
        "dialogue_ratio",
        "pov",
    ):
        assert key in report.metrics


def test_short_text_reports_truncation_and_length(en, mystery):
    report = evaluate(make_story(1000), 2000, GateConfig(), en, mystery)
    codes = _codes(report)
    assert "text_truncated" in codes
    assert "length_too_short" in codes


def test_text_far_over_target_fails(en, mystery):
    report = evaluate(make_story(2600), 2000, GateConfig(), en, mystery)
    assert "length_too_long" in _codes(report)


def test_slightly_long_text_is_accepted(en, mystery):
    report = evaluate(make_story(2300), 2000, GateConfig(), en, mystery)
    assert "length_too_long" not in _codes(report)


def test_high_repetition(en, mystery):
    text = make_story(1800) + "\n\n" + " ".join(["harbor light"] * 100)
    report = evaluate(text, 2000, GateConfig(repetition_max=38), en, mystery)
    assert "high_repetition" in _codes(report)
    assert report.metrics["high_frequency_bigrams"][0]["bigram"] == "harbor light"


def test_motif_count_and_spacing_have_separate_codes(en, mystery):
    text = make_story(2000) + "\n\nThe camera, the camera, the camera, the camera, the camera."
    report = evaluate(text, 2000, GateConfig(), en, mystery)
    codes = _codes(report)
    assert "motif_count_exceeded" in codes
    assert "motif_spacing_violation" in codes
    assert report.metrics["motif_violations"]


def test_premise_motif_budget(en, mystery):
    text = make_story(2000) + "\n\n" + " ".join(["rainbell"] * 4)
    config = GateConfig(check_motifs=True, premise="MOTIFS: [rainbell]")
    report = evaluate(text, 2000, config, en, mystery)
    assert "motif_budget_exceeded" in _codes(report)


def test_low_dialogue_ratio(en, mystery):
    narration = "\n\n".join(
        line for line in make_story(2000).split("\n\n") if not line.startswith('"')
    )
    report = evaluate(narration, 1000, GateConfig(check_dialogue=True), en, mystery)
    assert "low_dialogue_ratio" in _codes(report)
    assert report.metrics["dialogue_ratio"] < 0.36


def test_pov_drift(en, mystery):
    text = make_story(2000) + "\n\n" + "I ran. I hid. I waited. My breath. Me alone. I slept."
    report = evaluate(text, 2000, GateConfig(check_pov=True, pov="third"), en, mystery)
    assert "pov_drift" in _codes(report)


def test_style_policy_checks(en, mystery):
    report = evaluate(make_story(2000), 2000, GateConfig(style_policy=True), en, mystery)
    assert "sensory_triplet_missing" in _codes(report)
    assert "avg_sentence" in report.metrics
    assert report.metrics["dialogue_stats"]["long_turns"] == 0


def test_content_safety_failure(en, romance):
    text = make_story(2000) + "\n\n" + " ".join(["naked"] * 20)
    config = GateConfig(check_content_safety=True)
    report = evaluate(text, 2000, config, en, romance)
    assert "content_safety_fail" in _codes(report)
    assert report.metrics["content_safety"]["status"] == "fail"
    assert report.metrics["content_safety"]["needs_patch"]


def test_audio_mode_requires_transitions(en, mystery):
    report = evaluate(make_story(2000), 2000, GateConfig(audio_mode=True), en, mystery)
    assert "audio_missing_transitions" in _codes(report)
    assert "audio" in report.metrics


def test_hooks_checked_only_when_required(en, mystery):
    text = make_story(2000).replace("?", ".")
    assert "missing_hooks" not in _codes(
        evaluate(text, 2000, GateConfig(require_hooks=False), en, mystery)
    )
    report = evaluate(text, 2000, GateConfig(require_hooks=True), en, mystery)
    assert "missing_hooks" in _codes(report)
    assert report.metrics["missing_hooks_count"] == 6


def test_for_genre_enables_quiet_noir_checks(romance, mystery):
    config = GateConfig.for_genre(romance)
    assert config.check_visible_price and config.check_anchors
    assert config.check_content_safety
    assert config.repetition_max == 65
    plain = GateConfig.for_genre(mystery)
    assert not plain.check_visible_price
    assert not plain.check_content_safety


def test_repetition_threshold_and_expected_chapters(mystery):
    assert repetition_threshold(mystery) == 38
    assert repetition_threshold("comedy") == 30
    assert repetition_threshold("unknown") == quality_gate.DEFAULT_REPETITION_THRESHOLD
    assert expected_chapters(2000) == 6
    assert expected_chapters(500) == 3
    assert expected_chapters(20000) == 12


def test_validate_patch_response_accepts_chapters():
    body = make_story(1000, chapters=3)
    assert validate_patch_response(f"<<<CHAPTERS>>>\n⟪CHAPTERS⟫\n{body}", 500) is None


def test_validate_patch_response_rejections():
    body = make_story(1000, chapters=3)
    assert validate_patch_response(None) == "does_not_start_with_chapter_heading"
    assert validate_patch_response("Here is the rewrite:\n" + body) == (
        "does_not_start_with_chapter_heading"
    )
    assert validate_patch_response(body + "\nLet me know if you need more.") == (
        'contains_meta_phrase: "let me know"'
    )
    assert validate_patch_response(body, 5000).startswith("too_short:")
    single = make_story(1000, chapters=1)
    assert validate_patch_response(single, 100) == "too_few_chapters: 1 (min: 2)"


def test_generate_quality_report(en):
    report = generate_quality_report(make_story(2000), 2000, en)
    assert report["overall_quality"] == "good"
    assert report["pacing"]["acceptable"]
    assert report["length"]["within_range"]
    short = generate_quality_report(make_story(1000), 2000, en)
    assert short["overall_quality"] == "needs_review"


def test_rhetorical_allowance_counts_spaceless_scripts(en, mystery):
    paragraphs = ["静かな港の夜だった。" * 10 for _ in range(40)]
    text = "\n\n".join(paragraphs + ["誰が来たのか?"] * 3)
    report = evaluate(text, 1500, GateConfig(style_policy=True), en, mystery)
    assert report.metrics["rhetorical"] == 3
    assert "rhetorical" not in _codes(report)

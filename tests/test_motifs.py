import string

from processing.motifs import (
    DEFAULT_QUIET_NOIR_MOTIFS,
    check_character_anchors,
    check_motif_budget,
    check_visible_price,
    dialogue_ratio,
    extract_motifs_from_prompt,
    motif_density,
)


def _filler(index: int) -> str:
    letters = string.ascii_lowercase
    return letters[index // 676 % 26] + letters[index // 26 % 26] + letters[index % 26]


def _text_with(motif: str, positions: list[int], total: int = 2000) -> str:
    words = [_filler(i) for i in range(total)]
    for pos in positions:
        words[pos] = motif
    return " ".join(words)


def test_three_spaced_appearances_pass():
    result = motif_density(_text_with("camera", [100, 800, 1500]), 2000)
    assert result["passed"]
    assert result["max_per_motif"] == 3
    assert result["details"]["camera"]["word_positions"] == [100, 800, 1500]


def test_fourth_appearance_is_a_count_violation():
    result = motif_density(_text_with("camera", [100, 600, 1100, 1600]), 2000)
    assert not result["passed"]
    assert len(result["count_violations"]) == 1
    assert result["spacing_violations"] == []


def test_close_pair_is_a_spacing_violation():
    result = motif_density(_text_with("letter", [100, 200]), 2000)
    assert not result["passed"]
    assert result["count_violations"] == []
    assert result["spacing_violations"] == [
        "letter: appearances 1 and 2 too close (100w apart, need ≥250w)"
    ]


def test_ceiling_scales_with_length():
    result = motif_density(_text_with("remote", [100, 400, 700, 1000, 1300], 4000), 2000)
    assert result["max_per_motif"] == 6
    assert result["passed"]


def test_extract_motifs_from_prompt():
    assert extract_motifs_from_prompt("MOTIFS: [rain, bell ]") == ["rain", "bell"]
    assert extract_motifs_from_prompt("no list") == DEFAULT_QUIET_NOIR_MOTIFS
    assert extract_motifs_from_prompt(None) == DEFAULT_QUIET_NOIR_MOTIFS


def test_check_motif_budget():
    text = " ".join(["timestamp"] * 5 + ["filler"] * 995)
    result = check_motif_budget(text, ["timestamp", "countdown"], 3)
    assert result["exceeded"]
    assert result["violations"] == [
        {"motif": "timestamp", "count": 5, "limit": 3, "excess": 2}
    ]


def test_dialogue_ratio():
    text = '"Hello," she said.\nHe nodded.\n\n«Bonjour»\n— Yes.'
    result = dialogue_ratio(text)
    assert result["dialogue_lines"] == 3
    assert result["total_lines"] == 4
    assert result["ratio"] == 0.75


def test_check_visible_price():
    assert check_visible_price("In spring she started therapy.")["found"]
    assert not check_visible_price("Nothing changed.")["found"]


def test_check_character_anchors():
    result = check_character_anchors("He remembered the pier. Years ago it was busy.")
    assert result["count"] == 2
    assert result["sufficient"]
    assert not check_character_anchors("Plain.")["found"]

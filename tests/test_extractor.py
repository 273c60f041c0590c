from parsing import (
    extract,
    parse_assembler_response,
    parse_outline_json,
    parse_planner_response,
    parse_polish_response,
    scan_json_span,
)

BODY = "# Chapter 1: Harbor\n\nThe harbor lay still under a grey sky while the night crew counted crates along the pier and nobody spoke.\n\n# Chapter 2: Pier\n\nThe harbor lay still under a grey sky while the night crew counted crates along the pier and nobody spoke."


def test_extract_ascii_pair():
    raw = f"<<<CHAPTERS>>>\n{BODY}\n<<<END_CHAPTERS>>>"
    assert extract(raw, "CHAPTERS") == BODY


def test_extract_unicode_pair():
    raw = "⟪TITLES⟫\n- One\n- Two\n⟪/TITLES⟫"
    assert extract(raw, "TITLES") == "- One\n- Two"


def test_extract_nested_markers_are_unwrapped():
    raw = f"<<<CHAPTERS>>>\n⟪CHAPTERS⟫\n{BODY}\n⟪/CHAPTERS⟫\n<<<END_CHAPTERS>>>"
    assert extract(raw, "CHAPTERS") == BODY


def test_extract_unterminated_stops_at_next_section():
    raw = f"<<<CHAPTERS>>>\n{BODY}\n<<<TITLES>>>\n- One\n<<<END_TITLES>>>"
    assert extract(raw, "CHAPTERS") == BODY


def test_extract_body_falls_back_to_first_chapter_heading():
    raw = f"Sure, here is the story you asked for.\n\n{BODY}"
    assert extract(raw, "CHAPTERS") == BODY


def test_extract_missing_section_returns_none():
    assert extract(None, "CHAPTERS") is None
    assert extract("", "TITLES") is None
    assert extract("plain text without markers", "SYNOPSIS") is None


def test_extract_is_case_insensitive_on_markers():
    raw = "<<<synopsis>>>\nA short case.\n<<<end_synopsis>>>"
    assert extract(raw, "SYNOPSIS") == "A short case."


def test_parse_planner_response_fills_defaults():
    output = parse_planner_response(f"<<<CHAPTERS>>>\n{BODY}\n<<<END_CHAPTERS>>>")
    assert output.chapters == BODY
    assert output.titles == ["Untitled Story"]
    assert output.synopsis == "Synopsis unavailable"
    assert output.outline == {"beats": [], "chapters": []}
    assert output.checklist == []


def test_parse_planner_response_reads_all_sections():
    raw = (
        "<<<OUTLINE_JSON>>>\n[{\"beat\": \"hook\"}]\n<<<END_OUTLINE_JSON>>>\n"
        "<<<CHECKLIST>>>\n- Who sent the note\n- The missing key\n<<<END_CHECKLIST>>>\n"
        f"<<<CHAPTERS>>>\n{BODY}\n<<<END_CHAPTERS>>>\n"
        "<<<TITLES>>>\n- Low Tide\n<<<END_TITLES>>>\n"
        "<<<SYNOPSIS>>>\nA dockworker finds a key.\n<<<END_SYNOPSIS>>>"
    )
    output = parse_planner_response(raw)
    assert output.outline["beats"] == [{"beat": "hook"}]
    assert output.checklist == ["Who sent the note", "The missing key"]
    assert output.titles == ["Low Tide"]
    assert output.synopsis == "A dockworker finds a key."


def test_parse_outline_json_tolerates_fences_and_trailing_commas():
    parsed = parse_outline_json('```json\n{"beats": [1, 2,], "chapters": [3,],}\n```')
    assert parsed == {"beats": [1, 2], "chapters": [3]}


def test_parse_outline_json_invalid_returns_empty():
    assert parse_outline_json("{not json") == {"beats": [], "chapters": []}
    assert parse_outline_json('{"other": 1}') == {"beats": [], "chapters": []}


def test_scan_json_span_ignores_brackets_in_strings():
    assert scan_json_span('prefix {"a": "]}", "b": [1]} tail') == '{"a": "]}", "b": [1]}'
    assert scan_json_span("no json") is None
    assert scan_json_span("[1, [2") is None


def test_parse_polish_response_notes():
    raw = (
        f"<<<CHAPTERS>>>\n{BODY}\n<<<END_CHAPTERS>>>\n"
        "<<<NOTES>>>\n"
        "repetition_rate_bigrams: 3.5\n"
        "pacing_flags: none\n"
        "checklist_resolution: [Who sent the note: resolved, The missing key: open]\n"
        "<<<END_NOTES>>>"
    )
    output = parse_polish_response(raw)
    assert output.chapters == BODY
    assert output.notes.repetition_rate_bigrams == 3.5
    assert output.notes.pacing_flags == []
    assert output.notes.checklist_resolution == [
        "Who sent the note: resolved",
        "The missing key: open",
    ]


def test_parse_assembler_response_blocks():
    raw = f'```markdown\n{BODY}\n```\n```json\n{{"synopsis": "Two nights."}}\n```'
    output = parse_assembler_response(raw)
    assert output.markdown == BODY
    assert output.metadata == {"synopsis": "Two nights."}


def test_parse_assembler_response_without_fence_uses_heading():
    output = parse_assembler_response(f"Here you go.\n\n{BODY}")
    assert output.markdown == BODY
    assert output.metadata == {}


def test_parse_assembler_response_empty():
    assert parse_assembler_response("  ").markdown == ""

# ==============================
# Tests: Record Bodies + Dedup
# ==============================
from __future__ import annotations

import pytest

from kbcore.errors import ValidationError
from kbcore.knowledge.body import (
    NameDescriptionBody,
    QuestionAnswerBody,
    TitleContentBody,
    display_title,
    flatten_text,
    normalize_body,
    parse_body,
)
from kbcore.knowledge.dedup import DuplicateDetector, canonical_text
from kbcore.utils.text import levenshtein, normalize_text, similarity_ratio


def test_known_shapes_normalize_to_title_and_text() -> None:
    tc = parse_body({"title": " Loop ", "content": "Use the Loop activity."})
    qa = parse_body({"question": "How to loop?", "answer": "Use a Loop."})
    nd = parse_body({"name": "Commit", "description": "Persist changes."})

    assert isinstance(tc, TitleContentBody)
    assert isinstance(qa, QuestionAnswerBody)
    assert isinstance(nd, NameDescriptionBody)
    assert normalize_body({"title": " Loop ", "content": "Use the Loop activity."}).joined() == "Loop Use the Loop activity."
    assert qa.canonical().title == "How to loop?"
    assert nd.canonical().text == "Persist changes."


@pytest.mark.parametrize(
    "body",
    [
        "not an object",
        {"foo": "bar"},
        {"title": "Only a title"},
        {"title": "Empty", "text": "   "},
        {"question": "Q?", "answer": 3},
    ],
)
def test_invalid_bodies_are_rejected(body) -> None:
    with pytest.raises(ValidationError) as exc:
        parse_body(body)
    assert exc.value.field == "body"


def test_flatten_text_keeps_extra_string_leaves() -> None:
    body = {
        "title": "Retrieve",
        "text": "Use XPath constraints.",
        "code": "[Status = 'Open']",
        "tags": ["xpath", "database"],
        "meta": {"level": 3, "note": "avoid in loops"},
    }
    flat = flatten_text(body)
    assert flat.startswith("Retrieve Use XPath constraints.")
    assert "[Status = 'Open']" in flat
    assert "xpath database" in flat
    assert "avoid in loops" in flat
    assert display_title(body) == "Retrieve"
    assert display_title({"question": "Why?", "answer": "Because."}) == "Why?"


def test_levenshtein_basics_and_early_exit() -> None:
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("", "abc") == 3
    assert levenshtein("same", "same") == 0
    assert levenshtein("kitten", "sitting", max_distance=1) == 2
    assert levenshtein("a", "abcdef", max_distance=2) == 3


def test_similarity_ratio_and_normalization() -> None:
    assert similarity_ratio("", "") == 1.0
    assert similarity_ratio("abcdefghij", "abcdefghix") == pytest.approx(0.9)
    # two edits over ten characters sits exactly on a 0.8 bound
    assert similarity_ratio("abcdefghij", "abcdefghxy", min_ratio=0.8) == pytest.approx(0.8)
    assert similarity_ratio("abcdefghij", "abcdefgxyz", min_ratio=0.8) == 0.0
    assert normalize_text("  Loop   OVER\ta List ") == "loop over a list"


def test_duplicate_detector_picks_best_match(make_record) -> None:
    detector = DuplicateDetector(0.8)
    close = make_record("kr_b", "Loop over a list", "Use the Loop activity with an IterableList source.")
    closer = make_record("kr_c", "Loop over a list", "Use the Loop activity with an IterableList source!")
    far = make_record("kr_a", "Commit objects", "Commit after the loop, not inside it.")

    candidate = canonical_text({"title": "Loop over a list", "text": "Use the Loop activity with an IterableList source!"})
    match = detector.find(candidate, [far, close, closer])

    assert match is not None
    record, ratio = match
    assert record.id == "kr_c"
    assert ratio == pytest.approx(1.0)
    assert detector.find(candidate, [far]) is None
    assert detector.find(candidate, [closer], exclude_id="kr_c") is None


def test_duplicate_detector_tie_resolves_to_lowest_id(make_record) -> None:
    detector = DuplicateDetector(0.8)
    one = make_record("kr_2", "Same", "identical body text")
    two = make_record("kr_1", "Same", "identical body text")
    record, _ = detector.find("same identical body text", [one, two])
    assert record.id == "kr_1"


def test_duplicate_detector_threshold_bounds() -> None:
    with pytest.raises(ValueError):
        DuplicateDetector(1.5)
    assert DuplicateDetector(0.8).similarity("ABC", "abc") == 1.0

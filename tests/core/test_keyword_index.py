# ==============================
# Tests: Keyword Index
# ==============================
from __future__ import annotations

import pytest

from kbcore.config.schema import SearchConfig
from kbcore.errors import IndexCorruption
from kbcore.knowledge.corpus import Corpus
from kbcore.search.keyword_index import IndexSnapshot, KeywordIndex, Posting


@pytest.fixture
def keyword_corpus(make_record) -> Corpus:
    return Corpus(
        [
            make_record("kr_a", "Loop over a list", "Use the Loop activity with an IterableList source.", quality=0.52),
            make_record("kr_b", "Commit objects", "Commit after the loop, not inside it.", quality=0.6),
            make_record(
                "kr_c",
                "Retrieve from database",
                "Use XPath constraints to filter the retrieve.",
                file="performance",
                category="data",
                quality=0.4,
            ),
        ]
    )


@pytest.fixture
def index(keyword_corpus: Corpus) -> KeywordIndex:
    idx = KeywordIndex(keyword_corpus)
    idx.rebuild()
    return idx


def test_rebuild_is_idempotent(index: KeywordIndex) -> None:
    before = index.export_postings()
    stats = index.rebuild()
    assert index.export_postings() == before
    assert stats.entries == 3
    assert stats.skipped == 0
    assert index.postings("loop")[0] == Posting("kr_a", (0, 3))


def test_partial_overlap_clears_min_score(index: KeywordIndex) -> None:
    hits = index.search("iterate over a list")
    assert [h.record.id for h in hits] == ["kr_a"]
    assert hits[0].matched_terms == ["list"]
    # coverage 1/2, no proximity, quality 0.52
    assert hits[0].score == pytest.approx(0.5 * 0.5 + 0.2 * 0.52)


def test_adjacent_terms_score_proximity(index: KeywordIndex) -> None:
    hits = index.search("loop activity")
    assert [h.record.id for h in hits] == ["kr_a", "kr_b"]
    assert hits[0].score == pytest.approx(0.5 + 0.3 + 0.2 * 0.52)
    assert hits[1].score == pytest.approx(0.25 + 0.2 * 0.6)


def test_single_typo_falls_back_to_fuzzy(index: KeywordIndex) -> None:
    hits = index.search("activty")
    assert [h.record.id for h in hits] == ["kr_a"]
    assert hits[0].fuzzy_terms == ["activty"]
    assert hits[0].score == pytest.approx(0.5 * 0.8 + 0.3 + 0.2 * 0.52)
    assert hits[0].score >= index.config.min_score


def test_fuzzy_can_be_disabled(keyword_corpus: Corpus) -> None:
    idx = KeywordIndex(keyword_corpus, SearchConfig(fuzzy_enabled=False))
    idx.rebuild()
    assert idx.search("activty") == []


@pytest.mark.parametrize("query", ["", "   ", "the and of", "a"])
def test_empty_queries_return_nothing(index: KeywordIndex, query: str) -> None:
    assert index.search(query) == []


def test_filters_and_thresholds(index: KeywordIndex) -> None:
    assert {h.record.id for h in index.search("use")} == {"kr_a", "kr_c"}
    assert [h.record.id for h in index.search("use", file_filter="performance")] == ["kr_c"]
    assert [h.record.id for h in index.search("use", category_filter="data")] == ["kr_c"]
    assert index.search("use", min_score=0.99) == []
    assert len(index.search("use", max_results=1)) == 1


def test_equal_scores_break_ties_by_id(make_record) -> None:
    corpus = Corpus(
        [
            make_record("kr_y", "Nanoflow", "Runs on the client.", quality=0.5),
            make_record("kr_x", "Nanoflow", "Runs on the client.", quality=0.5),
        ]
    )
    idx = KeywordIndex(corpus)
    idx.rebuild()
    assert [h.record.id for h in idx.search("nanoflow client")] == ["kr_x", "kr_y"]


def test_term_expansions_count_toward_the_query_term(make_record) -> None:
    corpus = Corpus([make_record("kr_m", "Microflow basics", "Server side logic.", quality=0.5)])
    idx = KeywordIndex(corpus, SearchConfig(term_expansions={"mf": ["microflow"]}))
    idx.rebuild()
    hits = idx.search("mf")
    assert [h.record.id for h in hits] == ["kr_m"]
    assert hits[0].matched_terms == ["mf"]


def test_malformed_records_are_skipped(make_record) -> None:
    idx = KeywordIndex(Corpus())
    good = make_record("kr_ok", "Pages", "Layouts and widgets.")
    empty = good.model_copy(update={"id": "kr_empty", "body": {"misc": 3}})
    stats = idx.index([good, {"id": "kr_broken"}, empty])

    assert stats.entries == 1
    assert stats.skipped == 2
    assert [h.record.id for h in idx.search("widgets")] == ["kr_ok"]


def test_corrupt_build_is_rebuilt_from_corpus(index: KeywordIndex, monkeypatch: pytest.MonkeyPatch) -> None:
    real_build = index._build
    calls = []

    def flaky_build(records):
        calls.append(len(records))
        if len(calls) == 1:
            return IndexSnapshot(postings={"ghost": (Posting("kr_missing", (0,)),)}, records={})
        return real_build(records)

    monkeypatch.setattr(index, "_build", flaky_build)
    stats = index.index([])

    assert calls == [0, 3]
    assert stats.entries == 3
    assert index.search("activity")[0].record.id == "kr_a"


def test_verify_detects_inconsistencies(make_record) -> None:
    record = make_record("kr_1", "T", "text body")
    with pytest.raises(IndexCorruption):
        KeywordIndex.verify(IndexSnapshot(postings={"text": (Posting("kr_2", (0,)),)}, records={"kr_1": record}))
    with pytest.raises(IndexCorruption):
        KeywordIndex.verify(IndexSnapshot(postings={"text": (Posting("kr_1", (3, 1)),)}, records={"kr_1": record}))
    with pytest.raises(IndexCorruption):
        KeywordIndex.verify(IndexSnapshot(postings={}, records={"kr_1": record}))


def test_misses_feed_analytics(index: KeywordIndex) -> None:
    index.search("nanoflow widgets")
    index.search("loop")
    gaps = index.analytics.knowledge_gaps()
    assert gaps.missed_queries == ["nanoflow widgets"]
    assert gaps.miss_rate == 0.5
    assert {t.term for t in index.analytics.top_terms()} == {"nanoflow", "widgets", "loop"}


def test_inflected_forms_share_a_posting(make_record) -> None:
    corpus = Corpus([make_record("kr_e", "Domain model", "Each entity has attributes.", quality=0.5)])
    idx = KeywordIndex(corpus)
    idx.rebuild()

    hits = idx.search("entities")
    assert [h.record.id for h in hits] == ["kr_e"]
    assert hits[0].matched_terms == ["entity"]
    assert hits[0].fuzzy_terms == []
    assert hits[0].score == pytest.approx(0.5 + 0.3 + 0.2 * 0.5)
    assert idx.postings("entities") == ()
    assert idx.analytics.top_terms()[0].term == "entities"

    unstemmed = KeywordIndex(corpus, SearchConfig(stemming=False))
    unstemmed.rebuild()
    assert unstemmed.search("entities") == []

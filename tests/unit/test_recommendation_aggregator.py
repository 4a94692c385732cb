from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st

from bookworm.application.services.recommendation_aggregator import RecommendationAggregator
from bookworm.domain.crawl import ListReason, RecommendationCandidate


def _candidate(key, count=1, list_name="L", calibre_id=1):
    return RecommendationCandidate(
        key=key,
        book={"id": key, "title": f"Book {key}"},
        count=count,
        reasons=[ListReason(list_name=list_name, calibre_id=calibre_id)],
    )


def test_counts_are_summed_and_reasons_concatenated():
    agg = RecommendationAggregator()
    agg.add([_candidate("10", list_name="Best SF", calibre_id=1)])
    agg.add([_candidate("10", list_name="Best SF", calibre_id=2), _candidate("11")])

    results = agg.results()
    assert [c.key for c in results] == ["10", "11"]
    assert results[0].count == 2
    # identical reasons are kept, not deduplicated
    assert [r.calibre_id for r in results[0].reasons] == [1, 2]
    assert len(agg) == 2


def test_keys_compare_case_insensitively_and_blank_keys_are_dropped():
    agg = RecommendationAggregator()
    added = agg.add([_candidate("dune-messiah"), _candidate(" Dune-Messiah "), _candidate("  ")])
    assert added == 2
    assert len(agg) == 1
    assert agg.results()[0].count == 2


def test_ties_keep_first_encounter_order():
    agg = RecommendationAggregator()
    agg.add([_candidate("c"), _candidate("a"), _candidate("b"), _candidate("a")])
    assert [c.key for c in agg.results()] == ["a", "c", "b"]


def test_reason_text_names_the_list_and_owner():
    assert ListReason(list_name="Best SF", owner_name="arrakis").to_dict()["text"] == "found in list Best SF by arrakis"
    assert ListReason(list_slug="best-sf").describe() == "found in list best-sf"


def test_base_genres_fall_back_to_cached_tags():
    agg = RecommendationAggregator()
    candidate = RecommendationCandidate(
        key="7",
        book={"id": 7, "cached_tags": {"Genre": [{"tag": "Fantasy"}]}},
        count=1,
    )
    agg.add([candidate])
    assert agg.results()[0].base_genres == ["Fantasy"]


occurrences = st.tuples(st.sampled_from([str(i) for i in range(8)]), st.integers(min_value=1, max_value=3))
batches_of_occurrences = st.lists(st.lists(occurrences, max_size=6), max_size=12)


def _aggregate(batches):
    agg = RecommendationAggregator()
    for calibre_id, batch in batches:
        agg.add([_candidate(key, count=count, calibre_id=calibre_id) for key, count in batch])
    return agg.results()


@given(batches_of_occurrences)
def test_counts_are_the_sum_of_every_occurrence(batches):
    expected = {}
    for batch in batches:
        for key, count in batch:
            expected[key] = expected.get(key, 0) + count

    results = _aggregate(list(enumerate(batches)))

    assert {c.key: c.count for c in results} == expected
    assert sum(len(c.reasons) for c in results) == sum(len(b) for b in batches)


@given(batches_of_occurrences)
def test_results_are_ordered_by_descending_count(batches):
    counts = [c.count for c in _aggregate(list(enumerate(batches)))]
    assert counts == sorted(counts, reverse=True)


@given(st.data())
def test_batch_order_does_not_change_totals(data):
    batches = list(enumerate(data.draw(batches_of_occurrences)))
    shuffled = data.draw(st.permutations(batches))

    totals = {c.key: c.count for c in _aggregate(batches)}
    assert {c.key: c.count for c in _aggregate(shuffled)} == totals

from __future__ import annotations

import itertools
import random

import pytest

from conftest import mention
from entitynet.services.cooccurrence import (
    NetworkEdge,
    canonical_pair,
    compute_edges,
    weight_distribution,
)


def test_compute_edges_scenario_a(scenario_a_mentions) -> None:
    edges = compute_edges(scenario_a_mentions)

    assert [(edge.source, edge.target, edge.weight) for edge in edges] == [
        ("X", "Y", 1),
        ("X", "Z", 1),
    ]
    assert edges[0].shared_feature_ids == frozenset({1})
    assert edges[1].shared_feature_ids == frozenset({2})


def test_compute_edges_is_independent_of_input_order(newsroom_mentions) -> None:
    expected = compute_edges(newsroom_mentions)
    rng = random.Random(42)
    for _ in range(10):
        shuffled = list(newsroom_mentions)
        rng.shuffle(shuffled)
        assert compute_edges(shuffled) == expected


def test_compute_edges_counts_shared_features_not_repeat_mentions() -> None:
    mentions = [
        mention("Ada", "PERSON", 1),
        mention("Ada", "PERSON", 1),
        mention("Ada", "PERSON", 1),
        mention("Ben", "PERSON", 1),
        mention("Ben", "PERSON", 1),
        mention("Ada", "PERSON", 2),
        mention("Ben", "PERSON", 2),
    ]

    (edge,) = compute_edges(mentions)

    assert edge.key == ("Ada", "Ben")
    assert edge.weight == 2
    assert edge.shared_feature_ids == frozenset({1, 2})


def test_pair_increments_follow_k_choose_two() -> None:
    mentions = [mention(f"E{index}", "PERSON", 7) for index in range(5)]
    mentions += [mention("Solo", "PERSON", 8)]
    mentions += [mention("Dup", "PERSON", 9), mention("Dup", "PERSON", 9)]

    edges = compute_edges(mentions)

    assert sum(edge.weight for edge in edges) == 10
    assert len(edges) == 10
    assert all(edge.shared_feature_ids == frozenset({7}) for edge in edges)


def test_emitted_pairs_are_canonical_and_unique(newsroom_mentions) -> None:
    edges = compute_edges(newsroom_mentions)
    keys = {edge.key for edge in edges}

    assert all(source < target for source, target in keys)
    for source, target in keys:
        assert (target, source) not in keys
    assert len(keys) == len(edges) == 8


def test_canonical_pair_orders_names() -> None:
    assert canonical_pair("b", "a") == ("a", "b")
    assert canonical_pair("a", "b") == ("a", "b")
    with pytest.raises(ValueError):
        canonical_pair("a", "a")


def test_edge_other_endpoint() -> None:
    edge = NetworkEdge(source="a", target="b", weight=1, shared_feature_ids=frozenset({1}))
    assert edge.other("a") == "b"
    assert edge.other("b") == "a"
    assert edge.id == "a|b"
    with pytest.raises(ValueError):
        edge.other("c")


def test_large_feature_group_still_produces_every_pair(caplog) -> None:
    mentions = [mention(f"N{index:02d}", "ORG", 1) for index in range(6)]

    with caplog.at_level("WARNING"):
        edges = compute_edges(mentions, max_group_size=4)

    assert len(edges) == 15
    assert {edge.key for edge in edges} == set(itertools.combinations(sorted(m.entity_name for m in mentions), 2))
    assert "6 distinct entities" in caplog.text


def test_empty_mentions_produce_no_edges() -> None:
    assert compute_edges([]) == []


def test_weight_distribution_buckets(newsroom_mentions) -> None:
    assert weight_distribution(compute_edges(newsroom_mentions)) == {"1": 7, "2-5": 1, "6+": 0}

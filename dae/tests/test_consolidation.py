"""Tests for pairwise and centroid consolidation."""

import numpy as np
import pytest

from dae.core.consolidation import (
    CentroidConsolidation,
    ConsolidationConfig,
    ConsolidationPolicy,
    PairwiseConsolidation,
)
from dae.core.manifold import Quaternion
from dae.core.memory import Episode, Neighborhood, Occurrence
from dae.core.phasor import Phasor
from dae.core.query_engine import QueryEngine
from dae.core.system import DAESystem


@pytest.fixture(autouse=True)
def seeded():
    np.random.seed(42)


def _uniform_weight(word):
    return 1.0


def _activations(*neighborhoods):
    return {n.id: n.total_activation for n in neighborhoods}


def _large_system(n_neighborhoods=25, words_per=10):
    """Every occurrence activated once: share 1/words_per, all mobile."""
    system = DAESystem()
    episode = Episode(name="big")
    for i in range(n_neighborhoods):
        tokens = [f"w{i}_{j}" for j in range(words_per)]
        neighborhood = Neighborhood.from_tokens(tokens)
        for occ in neighborhood.occurrences:
            occ.activate()
        episode.add_neighborhood(neighborhood)
    system.add_episode(episode)
    return system


# ── Policy ───────────────────────────────────────────────────────────────────


def test_policy_switches_at_batch_threshold():
    policy = ConsolidationPolicy(_uniform_weight)
    assert policy.strategy_for(2).name == "pairwise"
    assert policy.strategy_for(199).name == "pairwise"
    assert policy.strategy_for(200).name == "centroid"
    assert policy.strategy_for(250).name == "centroid"


def test_policy_threshold_configurable():
    policy = ConsolidationPolicy(_uniform_weight, ConsolidationConfig(batch_threshold=3))
    assert isinstance(policy.strategy_for(3), CentroidConsolidation)
    assert isinstance(policy.strategy_for(2), PairwiseConsolidation)


def test_250_mobile_uses_centroid_and_stays_unit(monkeypatch):
    """Large batch goes through the centroid path; positions stay on S³."""
    system = _large_system()
    engine = QueryEngine(system)
    occurrences = list(system.all_occurrences())
    before = [o.position.components for o in occurrences]

    used = []
    original = engine.policy.strategy_for

    def spy(n):
        strategy = original(n)
        used.append(strategy.name)
        return strategy

    monkeypatch.setattr(engine.policy, "strategy_for", spy)

    moved = engine.drift_and_consolidate(occurrences)

    assert moved == 250
    assert used == ["centroid"]
    for occ in occurrences:
        assert abs(occ.position.norm - 1.0) < 1e-9
    assert any(
        not np.allclose(b, o.position.components) for b, o in zip(before, occurrences)
    )


def test_centroid_excludes_self():
    """Leave-one-out target for i is the normalized sum of the others."""
    occs = [
        Occurrence("a", Quaternion(1, 0, 0, 0), Phasor(0)),
        Occurrence("b", Quaternion(0, 1, 0, 0), Phasor(0)),
        Occurrence("c", Quaternion(0, 0, 1, 0), Phasor(0)),
    ]
    weights = np.array([1.0, 1.0, 1.0])
    targets = CentroidConsolidation(_uniform_weight).leave_one_out_targets(occs, weights)

    s = 1 / np.sqrt(2)
    np.testing.assert_allclose(targets[0].components, [0, s, s, 0], atol=1e-12)
    np.testing.assert_allclose(targets[1].components, [s, 0, s, 0], atol=1e-12)
    np.testing.assert_allclose(targets[2].components, [s, s, 0, 0], atol=1e-12)


def test_centroid_weighted_target():
    occs = [
        Occurrence("a", Quaternion(1, 0, 0, 0), Phasor(0)),
        Occurrence("b", Quaternion(0, 1, 0, 0), Phasor(0)),
        Occurrence("c", Quaternion(0, 0, 1, 0), Phasor(0)),
    ]
    weights = np.array([1.0, 3.0, 1.0])
    targets = CentroidConsolidation(_uniform_weight).leave_one_out_targets(occs, weights)
    expected = np.array([0, 3, 1, 0]) / np.sqrt(10)
    np.testing.assert_allclose(targets[0].components, expected, atol=1e-12)


def test_centroid_degenerate_target_skipped():
    """Opposite points cancel; the third has no usable centroid and stays put."""
    occs = [
        Occurrence("a", Quaternion(1, 0, 0, 0), Phasor(0)),
        Occurrence("b", Quaternion(-1, 0, 0, 0), Phasor(0)),
        Occurrence("c", Quaternion(0, 1, 0, 0), Phasor(0)),
    ]
    targets = CentroidConsolidation(_uniform_weight).leave_one_out_targets(
        occs, np.ones(3),
    )
    assert targets[2] is None
    assert targets[0] is not None


# ── Pairwise ─────────────────────────────────────────────────────────────────


def test_pairwise_moves_pair_closer():
    n1 = Neighborhood.from_tokens(["x", "y", "z", "w"])
    n2 = Neighborhood.from_tokens(["x", "p", "q", "r"])
    a, b = n1.occurrences[0], n2.occurrences[0]
    a.activate()
    b.activate()
    for occ in (n1.occurrences[1], n2.occurrences[1]):
        occ.activate()

    before = a.position.geodesic_distance(b.position)
    PairwiseConsolidation(_uniform_weight).consolidate([a, b], _activations(n1, n2))
    after = a.position.geodesic_distance(b.position)

    assert after < before
    assert abs(a.position.norm - 1.0) < 1e-9
    assert abs(b.position.norm - 1.0) < 1e-9


def test_pairwise_phases_converge():
    n = Neighborhood.from_tokens(["a", "b", "c", "d"])
    a, b = n.occurrences[0], n.occurrences[1]
    a.phasor, b.phasor = Phasor(0.0), Phasor(1.0)
    a.activate()
    b.activate()
    n.occurrences[2].activate()
    n.occurrences[3].activate()

    PairwiseConsolidation(_uniform_weight).consolidate([a, b], _activations(n))

    gap = abs(b.phasor.theta - a.phasor.theta)
    assert gap < 1.0


def test_pairwise_zero_rate_pair_is_untouched():
    """Silent containers give both sides rate 0: no movement, no division."""
    n = Neighborhood.from_tokens(["a", "b"])
    a, b = n.occurrences
    pa, pb = a.position, b.position
    PairwiseConsolidation(_uniform_weight).consolidate([a, b], _activations(n))
    assert a.position is pa
    assert b.position is pb


# ── Anchoring ────────────────────────────────────────────────────────────────


def test_anchored_occurrence_never_moves():
    """Share > 0.5 of its neighborhood's activation pins an occurrence."""
    system = DAESystem()
    episode = Episode()
    n1 = Neighborhood.from_tokens(["anchor", "light", "other"])
    n2 = Neighborhood.from_tokens(["mover", "free", "loose"])
    episode.add_neighborhood(n1)
    episode.add_neighborhood(n2)
    system.add_episode(episode)

    anchor = n1.occurrences[0]
    anchor.activation_count = 10
    n1.occurrences[1].activation_count = 1
    n1.occurrences[2].activation_count = 1
    for occ in n2.occurrences:
        occ.activation_count = 1

    pinned = anchor.position.components
    engine = QueryEngine(system)
    for _ in range(5):
        engine.drift_and_consolidate(list(system.all_occurrences()))

    np.testing.assert_array_equal(anchor.position.components, pinned)


def test_anchored_invariant_across_distributions():
    rng = np.random.RandomState(0)
    for _ in range(20):
        system = DAESystem()
        episode = Episode()
        for _ in range(4):
            n = Neighborhood.from_tokens(["a", "b", "c", "d"])
            for occ in n.occurrences:
                occ.activation_count = int(rng.randint(0, 20))
            episode.add_neighborhood(n)
        system.add_episode(episode)

        anchored = []
        for n in episode.neighborhoods:
            total = n.total_activation
            for occ in n.occurrences:
                if occ.is_anchored(total):
                    anchored.append((occ, occ.position.components))

        QueryEngine(system).drift_and_consolidate(list(system.all_occurrences()))

        for occ, pos in anchored:
            np.testing.assert_array_equal(occ.position.components, pos)


def test_fewer_than_two_mobile_is_noop():
    system = _large_system(n_neighborhoods=1, words_per=4)
    engine = QueryEngine(system)
    occ = next(system.all_occurrences())
    assert engine.drift_and_consolidate([]) == 0
    assert engine.drift_and_consolidate([occ]) == 0

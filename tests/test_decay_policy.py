from __future__ import annotations

import random

import pytest

from conftest import ScriptedRandom
from memory_palace.domain.memory.decay_policy import DecayPolicy


class TestComputeFade:
    def test_newest_is_fully_remembered(self):
        assert DecayPolicy().compute_fade(0) == 1.0

    def test_one_step_back(self):
        assert DecayPolicy().compute_fade(1) == pytest.approx(0.85)

    def test_floor_is_zero(self):
        policy = DecayPolicy()
        assert policy.compute_fade(7) == 0.0
        assert policy.compute_fade(100) == 0.0

    def test_monotonic_in_distance(self):
        policy = DecayPolicy()
        levels = [policy.compute_fade(d) for d in range(12)]
        assert levels == sorted(levels, reverse=True)
        assert all(0.0 <= level <= 1.0 for level in levels)

    def test_negative_distance_rejected(self):
        with pytest.raises(ValueError):
            DecayPolicy().compute_fade(-1)

    def test_custom_rate(self):
        assert DecayPolicy(decay_rate=0.5).compute_fade(1) == pytest.approx(0.5)
        assert DecayPolicy(decay_rate=0.5).compute_fade(2) == 0.0


class TestCorruption:
    def test_strong_levels_are_never_corrupted(self, always_corrupt):
        policy = DecayPolicy()
        assert policy.apply_corruption(0.85, always_corrupt) == 0.85
        assert policy.apply_corruption(0.5, always_corrupt) == 0.5
        # threshold check short-circuits before drawing
        assert always_corrupt.calls == 0

    def test_weak_level_loses_penalty_when_draw_hits(self, always_corrupt):
        assert DecayPolicy().apply_corruption(0.4, always_corrupt) == pytest.approx(0.2)

    def test_weak_level_untouched_when_draw_misses(self, never_corrupt):
        assert DecayPolicy().apply_corruption(0.4, never_corrupt) == 0.4

    def test_corruption_clamps_at_zero(self, always_corrupt):
        assert DecayPolicy().apply_corruption(0.1, always_corrupt) == 0.0

    def test_probability_boundary(self):
        policy = DecayPolicy()
        assert policy.apply_corruption(0.4, ScriptedRandom([0.29])) == pytest.approx(0.2)
        assert policy.apply_corruption(0.4, ScriptedRandom([0.3])) == 0.4

    def test_never_increases(self):
        policy = DecayPolicy()
        rng = random.Random(1234)
        for distance in range(15):
            base = policy.compute_fade(distance)
            for _ in range(20):
                assert policy.apply_corruption(base, rng) <= base


class TestShouldCorrupt:
    def test_only_below_garble_threshold(self, always_corrupt):
        policy = DecayPolicy()
        assert policy.should_corrupt(0.3, always_corrupt) is False
        assert policy.should_corrupt(0.29, always_corrupt) is True

    def test_needs_draw_to_succeed(self, never_corrupt):
        assert DecayPolicy().should_corrupt(0.0, never_corrupt) is False

    def test_without_corruption_disables_both_draws(self, always_corrupt):
        policy = DecayPolicy.without_corruption()
        assert policy.apply_corruption(0.1, always_corrupt) == 0.1
        assert policy.should_corrupt(0.1, always_corrupt) is False

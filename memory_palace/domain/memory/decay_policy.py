"""Fade curve and stochastic corruption for stored messages.

The base curve is linear in the distance from the newest message and clamped
at zero. Messages that are already weak (below ``corruption_threshold``) may
lose an extra ``corruption_penalty`` on any pass, which makes forgetting
bursty instead of smooth. All randomness comes from the ``RandomSource``
passed in by the caller.
"""
from dataclasses import dataclass
from typing import Protocol


class RandomSource(Protocol):
    """Anything with a ``random()`` returning a uniform float in [0, 1).

    ``random.Random`` instances qualify.
    """

    def random(self) -> float:
        ...


def clamp(level: float) -> float:
    return max(0.0, min(1.0, level))


@dataclass(frozen=True)
class DecayPolicy:
    decay_rate: float = 0.15
    corruption_threshold: float = 0.5
    corruption_probability: float = 0.3
    corruption_penalty: float = 0.2
    garble_threshold: float = 0.3
    garble_probability: float = 0.5

    def compute_fade(self, distance: int) -> float:
        """Base fade level for a message ``distance`` positions behind the newest."""
        if distance < 0:
            raise ValueError(f"distance must be non-negative, got {distance}")
        return clamp(1.0 - distance * self.decay_rate)

    def apply_corruption(self, level: float, rng: RandomSource) -> float:
        """Possibly knock an extra penalty off a weak level. Never increases it."""
        if level < self.corruption_threshold and rng.random() < self.corruption_probability:
            return clamp(level - self.corruption_penalty)
        return clamp(level)

    def should_corrupt(self, level: float, rng: RandomSource) -> bool:
        """Advisory flag for cosmetic text garbling; does not touch the level."""
        return level < self.garble_threshold and rng.random() < self.garble_probability

    def fade(self, distance: int, rng: RandomSource) -> float:
        return self.apply_corruption(self.compute_fade(distance), rng)

    @classmethod
    def without_corruption(cls, decay_rate: float = 0.15) -> "DecayPolicy":
        return cls(decay_rate=decay_rate, corruption_probability=0.0, garble_probability=0.0)

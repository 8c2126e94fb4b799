"""
Algorithm Policy

Selects zero or one algorithm id from a project's registered set.

GUARANTEES:
===========
1. Stateless: every call re-evaluates the policy
2. Randomness comes only from the injected RandomSource
3. Ids no longer registered are never returned
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Tuple
import random

from .contracts import AlgorithmPolicy, DefaultAlgorithm, NoAlgorithm, WeightedPolicy


class RandomSource(ABC):
    """Abstract provider of uniform draws in [0, 1)."""

    @abstractmethod
    def uniform(self) -> float:
        pass


class SystemRandomSource(RandomSource):
    """RandomSource backed by a private random.Random instance."""

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)

    def uniform(self) -> float:
        return self._rng.random()


def select_algorithm(
    policy: AlgorithmPolicy,
    available_ids: Iterable[str],
    random_source: RandomSource
) -> Optional[str]:
    """Apply a policy to the currently registered algorithm ids."""
    available = frozenset(available_ids)

    if isinstance(policy, NoAlgorithm):
        return None

    if isinstance(policy, DefaultAlgorithm):
        return policy.algorithm_id if policy.algorithm_id in available else None

    if isinstance(policy, WeightedPolicy):
        return _weighted_draw(policy, available, random_source)

    return None


def _weighted_draw(
    policy: WeightedPolicy,
    available: frozenset,
    random_source: RandomSource
) -> Optional[str]:
    candidates: List[Tuple[str, float]] = [
        (algorithm_id, weight)
        for algorithm_id, weight in policy.weights
        if algorithm_id in available
    ]
    if not candidates:
        return None

    total = sum(weight for _, weight in candidates)
    draw = random_source.uniform() * total

    cumulative = 0.0
    for algorithm_id, weight in candidates:
        cumulative += weight
        if draw < cumulative:
            return algorithm_id

    # draw == total only through float rounding
    return candidates[-1][0]

"""Seeded random permutations shared by match and peptide shuffling."""

from typing import MutableSequence, Optional, Union

import numpy as np

RandomSource = Union[None, int, np.random.Generator]


def make_rng(seed: RandomSource = None, *keys: int) -> np.random.Generator:
    """
    Build a numpy Generator.

    A Generator is returned unchanged.  An integer seed is combined with the
    optional integer keys (e.g. scan number and charge), so that each unit of
    work gets its own reproducible stream regardless of processing order.
    """
    if isinstance(seed, np.random.Generator):
        return seed
    if seed is None:
        return np.random.default_rng()
    return np.random.default_rng([int(seed), *[int(k) for k in keys]])


def fisher_yates(items: MutableSequence, start: int = 0, end: Optional[int] = None,
                 rng: RandomSource = None) -> MutableSequence:
    """
    Shuffle items[start:end] in place with an unbiased Fisher-Yates shuffle.

    end is one past the last element to shuffle; elements outside
    [start, end) never move.

    Returns:
        The same sequence, for chaining
    """
    if end is None:
        end = len(items)
    if start < 0 or end > len(items) or start > end:
        raise IndexError(f"Invalid shuffle range [{start}, {end}) for {len(items)} items")

    rng = make_rng(rng)
    for i in range(end - 1, start, -1):
        j = int(rng.integers(start, i + 1))
        items[i], items[j] = items[j], items[i]
    return items

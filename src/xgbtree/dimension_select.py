"""
Dimension selectors: which dimensions a node examines when searching for a split.

A selector is iterable; each fresh iteration yields the candidate dimensions
for one node, so the same instance can be shared across a whole tree.
"""

from typing import Iterator, Optional

import numpy as np


class AllDimensionSelect:
    """Yield every dimension once, in ascending order."""

    def __init__(self, dimensions: int = 0):
        self.dimensions = dimensions

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.dimensions))

    def __repr__(self) -> str:
        return f"AllDimensionSelect(dimensions={self.dimensions})"


class RandomDimensionSelect:
    """
    Yield a random subset of ``n_select`` distinct dimensions.

    A new subset is drawn every time iteration restarts, so each node of a
    tree sees its own sample. Dimensions within a subset are yielded in
    ascending order.

    Parameters
    ----------
    n_select : int
        Number of dimensions per node. Capped at ``dimensions``.
    dimensions : int
        Total number of dimensions; usually set by the tree before growth.
    random_state : int, optional
        Seed for reproducible subsets.
    """

    def __init__(self, n_select: int, dimensions: int = 0, random_state: Optional[int] = None):
        if n_select < 1:
            raise ValueError(f"n_select must be >= 1, got {n_select}")
        self.n_select = n_select
        self.dimensions = dimensions
        self.random_state = random_state
        self._rng = np.random.default_rng(random_state)

    def __iter__(self) -> Iterator[int]:
        k = min(self.n_select, self.dimensions)
        chosen = self._rng.choice(self.dimensions, size=k, replace=False)
        return iter(int(dim) for dim in np.sort(chosen))

    def __repr__(self) -> str:
        return (f"RandomDimensionSelect(n_select={self.n_select}, "
                f"dimensions={self.dimensions}, random_state={self.random_state})")

"""
Feature importance ledger.

Tracks, per dimension, how many times it was chosen for a split
(frequency) and the total gain improvement those splits brought (cover).
One ledger is shared by every node of a tree during growth; nodes only add
to it.
"""

from collections import defaultdict
from typing import Dict, Optional

import numpy as np
import pandas as pd


class FeatureImportance:
    """Per-dimension split frequency and cumulative cover."""

    def __init__(self):
        self._frequency: Dict[int, int] = defaultdict(int)
        self._cover: Dict[int, float] = defaultdict(float)

    def increase_feature_frequency(self, dim: int, amount: int = 1) -> None:
        self._frequency[dim] += amount

    def increase_feature_cover(self, dim: int, amount: float) -> None:
        self._cover[dim] += amount

    def frequency(self, dim: int) -> int:
        return self._frequency.get(dim, 0)

    def cover(self, dim: int) -> float:
        return self._cover.get(dim, 0.0)

    @property
    def dimensions(self):
        return sorted(set(self._frequency) | set(self._cover))

    def merge(self, other: "FeatureImportance") -> "FeatureImportance":
        """Add every entry of ``other`` into this ledger. Returns self."""
        for dim in other.dimensions:
            self.increase_feature_frequency(dim, other.frequency(dim))
            self.increase_feature_cover(dim, other.cover(dim))
        return self

    def to_frame(self) -> pd.DataFrame:
        """
        Snapshot of the ledger.

        Returns
        -------
        pd.DataFrame
            Indexed by dimension, with columns ``frequency`` and ``cover``.
            Later changes to the ledger do not affect the returned frame.
        """
        dims = self.dimensions
        frame = pd.DataFrame(
            {
                "frequency": [self.frequency(d) for d in dims],
                "cover": [self.cover(d) for d in dims],
            },
            index=pd.Index(dims, name="dimension"),
        )
        return frame.astype({"frequency": np.int64, "cover": np.float64})

    def normalized_cover(self, n_dimensions: Optional[int] = None) -> np.ndarray:
        """Cover per dimension as an array summing to 1 (zeros if nothing was split)."""
        dims = self.dimensions
        if n_dimensions is None:
            n_dimensions = dims[-1] + 1 if dims else 0
        values = np.zeros(n_dimensions)
        for d in dims:
            if d < n_dimensions:
                values[d] = self.cover(d)
        total = values.sum()
        if total > 0:
            values /= total
        return values

    def __len__(self) -> int:
        return len(self.dimensions)

    def __repr__(self) -> str:
        entries = ", ".join(
            f"{d}: ({self.frequency(d)}, {self.cover(d):.4g})" for d in self.dimensions
        )
        return f"FeatureImportance({{{entries}}})"

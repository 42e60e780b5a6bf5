"""
Dataset metadata for tree growth.

The tree works on a dimensions x samples matrix together with a
``DatasetInfo`` describing, for each dimension, whether it is numeric or
categorical and how many categories a categorical dimension has.
"""

from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple
import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class Datatype(Enum):
    """Type tag of a single dimension."""
    NUMERIC = "numeric"
    CATEGORICAL = "categorical"


class DatasetInfo:
    """
    Per-dimension type information.

    Parameters
    ----------
    dimensionality : int
        Number of dimensions (rows of the feature matrix).
    categorical : mapping, optional
        Maps a dimension index to its number of categories. Dimensions not
        listed are numeric.
    """

    def __init__(self, dimensionality: int, categorical: Optional[Mapping[int, int]] = None):
        if dimensionality < 1:
            raise ValueError(f"dimensionality must be >= 1, got {dimensionality}")
        self.dimensionality = int(dimensionality)
        self._categories: Dict[int, int] = {}
        for dim, n_categories in (categorical or {}).items():
            if not 0 <= dim < self.dimensionality:
                raise ValueError(
                    f"categorical dimension {dim} out of range for "
                    f"dimensionality {self.dimensionality}"
                )
            if n_categories < 1:
                raise ValueError(f"dimension {dim} must have at least one category")
            self._categories[int(dim)] = int(n_categories)

    def type(self, dim: int) -> Datatype:
        if dim in self._categories:
            return Datatype.CATEGORICAL
        return Datatype.NUMERIC

    def num_mappings(self, dim: int) -> int:
        """Number of categories of ``dim`` (0 for numeric dimensions)."""
        return self._categories.get(dim, 0)

    @property
    def categorical_dimensions(self) -> List[int]:
        return sorted(self._categories)

    def __eq__(self, other) -> bool:
        if not isinstance(other, DatasetInfo):
            return NotImplemented
        return (self.dimensionality == other.dimensionality
                and self._categories == other._categories)

    def __repr__(self) -> str:
        return f"DatasetInfo(dimensionality={self.dimensionality}, categorical={self._categories})"


def encode_frame(
    frame: pd.DataFrame,
    categorical_columns: Optional[Sequence[str]] = None
) -> Tuple[np.ndarray, DatasetInfo, Dict[str, list]]:
    """
    Encode a data frame for tree growth.

    Categorical columns are mapped to codes ``0..k-1`` in order of first
    appearance; all other columns are converted to float.

    Parameters
    ----------
    frame : pd.DataFrame
        Samples in rows, features in columns.
    categorical_columns : sequence of str, optional
        Column names to treat as categorical. Columns with a non-numeric
        dtype (strings, objects, ``category``) are always categorical.

    Returns
    -------
    data : np.ndarray, shape (n_features, n_samples)
        Encoded matrix, one dimension per row.
    info : DatasetInfo
        Type information for each row of ``data``.
    labels : dict
        For each categorical column, the original labels indexed by code.
    """
    requested = set(categorical_columns or [])
    unknown = requested.difference(frame.columns)
    if unknown:
        raise ValueError(f"unknown categorical columns: {sorted(unknown)}")

    data = np.empty((frame.shape[1], frame.shape[0]), dtype=np.float64)
    categorical: Dict[int, int] = {}
    labels: Dict[str, list] = {}

    for dim, column in enumerate(frame.columns):
        series = frame[column]
        is_categorical = (
            column in requested
            or not pd.api.types.is_numeric_dtype(series.dtype)
            or isinstance(series.dtype, pd.CategoricalDtype)
        )
        if is_categorical:
            if series.isna().any():
                raise ValueError(f"categorical column {column!r} contains missing values")
            codes, uniques = pd.factorize(series, sort=False)
            data[dim] = codes
            categorical[dim] = len(uniques)
            labels[column] = list(uniques)
        else:
            data[dim] = series.to_numpy(dtype=np.float64)

    logger.debug(
        "Encoded frame with %d columns (%d categorical)", frame.shape[1], len(categorical)
    )
    return data, DatasetInfo(frame.shape[1], categorical), labels

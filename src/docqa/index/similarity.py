"""Vector similarity scoring."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from docqa.errors import DimensionMismatchError


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Cosine of the angle between two vectors, in [-1, 1].

    Raises DimensionMismatchError when the lengths differ. A zero vector has
    no direction and scores 0.0.
    """
    vec_a = np.asarray(a, dtype=np.float64).ravel()
    vec_b = np.asarray(b, dtype=np.float64).ravel()
    if vec_a.shape[0] != vec_b.shape[0]:
        raise DimensionMismatchError(vec_a.shape[0], vec_b.shape[0])

    norm = float(np.linalg.norm(vec_a)) * float(np.linalg.norm(vec_b))
    if norm == 0.0:
        return 0.0
    similarity = float(np.dot(vec_a, vec_b)) / norm
    return max(-1.0, min(1.0, similarity))

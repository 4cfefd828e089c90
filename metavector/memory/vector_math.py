"""Similarity and rescaling helpers shared by the memory core."""

import math
from typing import Optional, Sequence


def normalize(value: float, min_value: float, max_value: float) -> float:
    """Rescale ``value`` from [min_value, max_value] into [0, 1], clamped.

    A degenerate range (``max_value == min_value``) yields 0.
    """
    if max_value == min_value:
        return 0.0
    scaled = (value - min_value) / (max_value - min_value)
    return max(0.0, min(1.0, scaled))


def cosine(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """Cosine similarity clamped to [-1, 1].

    Returns 0 for missing, empty or mismatched vectors and for zero-norm
    vectors instead of raising. Missing components count as 0.
    """
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = norm_a = norm_b = 0.0
    for x, y in zip(a, b):
        x = x or 0.0
        y = y or 0.0
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    if math.isnan(similarity):
        return 0.0
    return max(-1.0, min(1.0, similarity))

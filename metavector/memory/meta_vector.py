"""Flatten a structured affective/cognitive scoring object into a meta-vector."""

from typing import Any, List, Mapping

from metavector.memory.vector_math import normalize

META_VECTOR_LENGTH = 14

# (section, field, normalization range or None for raw 0..1 scores)
META_VECTOR_FIELDS = (
    ("brainDominance", "leftBrain", None),
    ("brainDominance", "rightBrain", None),
    ("processingStyle", "reflexive", None),
    ("processingStyle", "reasoning", None),
    ("emotionalAnalysis", "joy", None),
    ("emotionalAnalysis", "intensity", None),
    ("emotionalAnalysis", "engagement", None),
    ("emotionalAnalysis", "complexity", None),
    ("emotionalAnalysis", "sentiment", (-1, 1)),
    ("conversationMetrics", "depth", (0, 100)),
    ("conversationMetrics", "coherence", (0, 100)),
    ("conversationMetrics", "engagement", (0, 100)),
    ("conversationMetrics", "topicStability", (0, 100)),
    ("cognitiveStyle", "strength", (0, 100)),
)


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0.0
    return 0.0


def build_meta_vector(meta: Any) -> List[float]:
    """Build the 14-element meta-vector from a scoring payload.

    Missing sections, missing sub-scores and non-numeric values all fall
    back to 0 (before normalization), so this never raises.
    """
    if not isinstance(meta, Mapping):
        meta = {}

    vector = []
    for section_name, field_name, bounds in META_VECTOR_FIELDS:
        section = meta.get(section_name)
        if not isinstance(section, Mapping):
            section = {}
        value = _number(section.get(field_name, 0))
        if bounds is not None:
            value = normalize(value, *bounds)
        vector.append(value)
    return vector

"""Tests for meta-vector construction."""

import pytest

from conftest import SAMPLE_META
from metavector.memory.meta_vector import META_VECTOR_LENGTH, build_meta_vector


def test_full_payload_field_order():
    vector = build_meta_vector(SAMPLE_META)

    assert len(vector) == META_VECTOR_LENGTH
    assert vector[:8] == pytest.approx([0.7, 0.3, 0.2, 0.8, 0.6, 0.4, 0.5, 0.3])
    assert vector[8] == pytest.approx(0.75)  # sentiment 0.5 in [-1, 1]
    assert vector[9:] == pytest.approx([0.6, 0.8, 0.7, 0.9, 0.5])


def test_empty_payload_uses_zero_defaults():
    vector = build_meta_vector({})

    assert len(vector) == META_VECTOR_LENGTH
    assert vector[:8] == [0.0] * 8
    # Sentiment 0 sits in the middle of its [-1, 1] range
    assert vector[8] == pytest.approx(0.5)
    assert vector[9:] == [0.0] * 5


@pytest.mark.parametrize("payload", [None, "not a dict", 42, [], {"brainDominance": "oops"}])
def test_never_raises_on_malformed_payload(payload):
    vector = build_meta_vector(payload)
    assert len(vector) == META_VECTOR_LENGTH


def test_partial_section_and_string_numbers():
    vector = build_meta_vector({"brainDominance": {"leftBrain": "0.9"}, "cognitiveStyle": {"strength": 250}})

    assert vector[0] == pytest.approx(0.9)
    assert vector[1] == 0.0
    assert vector[13] == 1.0  # clamped


def test_engagement_appears_raw_and_normalized():
    vector = build_meta_vector(
        {"emotionalAnalysis": {"engagement": 0.4}, "conversationMetrics": {"engagement": 40}}
    )
    assert vector[6] == pytest.approx(0.4)
    assert vector[11] == pytest.approx(0.4)

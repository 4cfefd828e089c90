"""Split raw text into bounded-length units suitable for embedding."""

import re
from typing import List

MAX_CHUNK_LEN = 1000
MIN_CHUNK_LEN = 50
# Paragraphs up to this multiple of MAX_CHUNK_LEN are kept whole
PARAGRAPH_SLACK = 1.2

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_SENTENCE = re.compile(r"[^.!?]+(?:[.!?]|\Z)\s*")


def _split_sentences(paragraph: str) -> List[str]:
    return _SENTENCE.findall(paragraph) or [paragraph]


def chunk_text(text: str, max_len: int = MAX_CHUNK_LEN, min_len: int = MIN_CHUNK_LEN) -> List[str]:
    """Split text into chunks of at least ``min_len`` and (roughly) at most ``max_len`` chars.

    Paragraphs (blank-line separated) within PARAGRAPH_SLACK * max_len are
    kept whole. Longer paragraphs are split into sentences which are packed
    greedily; a sentence longer than ``max_len`` is hard-split. Fragments
    shorter than ``min_len`` are dropped.

    Args:
        text: Raw text
        max_len: Target maximum chunk length
        min_len: Minimum chunk length; shorter fragments are discarded

    Returns:
        Ordered list of chunks (empty for empty or non-string input)
    """
    if not isinstance(text, str) or not text.strip():
        return []

    paragraphs = [p.strip() for p in _PARAGRAPH_BREAK.split(text)]
    chunks: List[str] = []

    for paragraph in paragraphs:
        if not paragraph:
            continue

        if len(paragraph) <= max_len * PARAGRAPH_SLACK:
            if len(paragraph) >= min_len:
                chunks.append(paragraph)
            continue

        current = ""
        for sentence in _split_sentences(paragraph):
            sentence = sentence.strip()
            if not sentence:
                continue

            separator = 1 if current else 0
            if len(current) + separator + len(sentence) <= max_len:
                current = f"{current} {sentence}" if current else sentence
                continue

            if len(current) >= min_len:
                chunks.append(current)

            if len(sentence) <= max_len:
                current = sentence
            else:
                for start in range(0, len(sentence), max_len):
                    piece = sentence[start : start + max_len].strip()
                    if len(piece) >= min_len:
                        chunks.append(piece)
                current = ""

        if len(current) >= min_len:
            chunks.append(current)

    return [c for c in chunks if len(c) >= min_len]

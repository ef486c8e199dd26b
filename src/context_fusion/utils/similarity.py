"""Similarity helpers shared by scoring and fusion."""

import re

import numpy as np

_WORD_RE = re.compile(r"\w+", re.UNICODE)
_NUMBER_RE = re.compile(r"(?<![\w.])-?\d+(?:[.,]\d+)*(?:\.\d+)?%?")


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens of a text."""
    return _WORD_RE.findall(text.lower())


def word_set(text: str) -> frozenset[str]:
    return frozenset(tokenize(text))


def jaccard(a: frozenset[str] | set[str], b: frozenset[str] | set[str]) -> float:
    """Jaccard similarity of two sets (0.0 when both are empty)."""
    if not a and not b:
        return 0.0
    return len(a & b) / len(a | b)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 for zero vectors or mismatched dimensions.
    """
    if len(a) != len(b) or not a:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def numeric_claims(text: str) -> frozenset[str]:
    """Numbers stated in a text, normalized for comparison."""
    return frozenset(match.replace(",", "") for match in _NUMBER_RE.findall(text))

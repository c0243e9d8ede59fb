from __future__ import annotations

from collections.abc import Sequence

from .types import ClassificationResult


def decode(scores: Sequence[float]) -> ClassificationResult:
    """Pick the highest score; ties resolve to the lowest index."""
    if len(scores) == 0:
        raise ValueError("cannot decode an empty score vector")
    top_idx = 0
    best = float(scores[0])
    for i in range(1, len(scores)):
        if scores[i] > best:
            best = float(scores[i])
            top_idx = i
    return ClassificationResult(label=top_idx, confidence=best)

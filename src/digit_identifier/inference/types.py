from __future__ import annotations

from dataclasses import dataclass

# Per-class scores, index = class label
ScoreVector = tuple[float, ...]


@dataclass(frozen=True)
class ClassificationResult:
    label: int
    # Raw score of the winning class, not necessarily a calibrated probability
    confidence: float

    def text(self) -> str:
        return f"Predicted: {self.label}\nConfidence: {self.confidence}"


@dataclass(frozen=True)
class LoadedModel:
    model_id: str
    input_width: int
    input_height: int
    n_classes: int

    @property
    def input_size(self) -> int:
        return self.input_width * self.input_height

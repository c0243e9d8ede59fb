from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final

MANIFEST_FILENAME: Final[str] = "manifest.json"
_ALLOWED_SCHEMA_VERSIONS: Final[tuple[str, ...]] = ("v1",)


@dataclass(frozen=True)
class ModelManifest:
    """Shape contract stored inside a model artifact.

    ``input_shape`` is batch-first ``[1, width, height, 1]`` and
    ``output_shape`` is ``[1, n_classes]``.
    """

    schema_version: str
    model_id: str
    input_shape: tuple[int, int, int, int]
    output_shape: tuple[int, int]
    created_at: datetime

    @property
    def input_width(self) -> int:
        return self.input_shape[1]

    @property
    def input_height(self) -> int:
        return self.input_shape[2]

    @property
    def n_classes(self) -> int:
        return self.output_shape[1]

    @staticmethod
    def from_json(s: str) -> ModelManifest:
        obj: object = json.loads(s)
        if not isinstance(obj, dict):
            raise ValueError("manifest must be a JSON object")
        data: dict[str, object] = {str(k): v for k, v in obj.items()}
        return ModelManifest.from_dict(data)

    @staticmethod
    def from_dict(d: dict[str, object]) -> ModelManifest:
        schema_version = str(d.get("schema_version", "")).strip()
        model_id = str(d.get("model_id", "")).strip()
        if not schema_version or not model_id:
            raise ValueError("manifest is missing required fields")
        if schema_version not in _ALLOWED_SCHEMA_VERSIONS:
            raise ValueError("unsupported manifest schema version")
        inp = _shape(d.get("input_shape"), "input_shape")
        out = _shape(d.get("output_shape"), "output_shape")
        if len(inp) != 4:
            raise ValueError("input_shape must be [batch, width, height, channels]")
        if inp[0] != 1 or inp[3] != 1:
            raise ValueError("input_shape must have batch 1 and a single channel")
        if len(out) != 2 or out[0] != 1:
            raise ValueError("output_shape must be [1, n_classes]")
        if out[1] < 2:
            raise ValueError("n_classes must be >= 2")
        created_at_str = str(d["created_at"]) if "created_at" in d else ""
        created = datetime.fromisoformat(created_at_str) if created_at_str else datetime.now(UTC)
        return ModelManifest(
            schema_version=schema_version,
            model_id=model_id,
            input_shape=(inp[0], inp[1], inp[2], inp[3]),
            output_shape=(out[0], out[1]),
            created_at=created,
        )

    @staticmethod
    def for_digits(
        model_id: str, width: int = 28, height: int = 28, n_classes: int = 10
    ) -> ModelManifest:
        return ModelManifest(
            schema_version=_ALLOWED_SCHEMA_VERSIONS[0],
            model_id=model_id,
            input_shape=(1, width, height, 1),
            output_shape=(1, n_classes),
            created_at=datetime.now(UTC),
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "schema_version": self.schema_version,
                "model_id": self.model_id,
                "input_shape": list(self.input_shape),
                "output_shape": list(self.output_shape),
                "created_at": self.created_at.isoformat(),
            }
        )


def _shape(raw: object, name: str) -> tuple[int, ...]:
    if not isinstance(raw, list) or not raw:
        raise ValueError(f"{name} must be a non-empty list")
    dims: list[int] = []
    for v in raw:
        if isinstance(v, bool) or not isinstance(v, int) or v <= 0:
            raise ValueError(f"{name} dimensions must be positive integers")
        dims.append(v)
    return tuple(dims)

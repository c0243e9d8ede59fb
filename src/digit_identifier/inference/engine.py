from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Final

import torch
from torch import Tensor

from ..config import Settings
from ..errors import ClassificationError, InitializationError
from ..logging import get_logger, log_event
from .manifest import MANIFEST_FILENAME, ModelManifest
from .types import LoadedModel, ScoreVector

_PARSE_ERRORS: Final[tuple[type[BaseException], ...]] = (
    OSError,
    ValueError,
    RuntimeError,
    EOFError,
)
_RUN_ERRORS: Final[tuple[type[BaseException], ...]] = (
    RuntimeError,
    ValueError,
    TypeError,
    torch.jit.Error,
)


class InferenceEngine:
    """Owns one TorchScript digit model and its input buffer.

    ``run`` holds a lock across buffer allocation, copy-in, execution and
    read-out, so concurrent callers never share an in-flight buffer.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings if settings is not None else Settings.default()
        self._logger = get_logger()
        self._lock = threading.Lock()
        self._module: torch.jit.ScriptModule | None = None
        self._manifest: ModelManifest | None = None
        self._input: Tensor | None = None
        torch.set_num_threads(int(self._settings.model.threads))

    @property
    def ready(self) -> bool:
        return self._module is not None and self._manifest is not None

    @property
    def manifest(self) -> ModelManifest | None:
        return self._manifest

    @property
    def model_id(self) -> str | None:
        return self._manifest.model_id if self._manifest is not None else None

    def load(self, model_path: Path) -> LoadedModel:
        name = model_path.name
        if not model_path.is_file():
            self._logger.info("model_load_failed reason=missing name=%s", name)
            raise InitializationError.invalid_model(name)
        extra: dict[str, object] = {MANIFEST_FILENAME: ""}
        try:
            module = torch.jit.load(model_path.as_posix(), map_location="cpu", _extra_files=extra)
            manifest = ModelManifest.from_json(_extra_text(extra[MANIFEST_FILENAME]))
        except _PARSE_ERRORS:
            self._logger.info("model_load_failed reason=unparsable name=%s", name)
            raise InitializationError.invalid_model(name) from None
        module.eval()
        try:
            _check_topology(module)
            probe = torch.zeros(manifest.input_shape, dtype=torch.float32)
            with self._lock:
                _ = _execute(module, manifest, self._allocate(manifest), probe)
        except _RUN_ERRORS as exc:
            self._logger.info("model_load_failed reason=rejected name=%s error=%s", name, exc)
            raise InitializationError.internal(exc) from exc
        with self._lock:
            self._module = module
            self._manifest = manifest
        log_event(
            "model_loaded",
            {
                "model_id": manifest.model_id,
                "width": manifest.input_width,
                "height": manifest.input_height,
            },
        )
        return LoadedModel(
            model_id=manifest.model_id,
            input_width=manifest.input_width,
            input_height=manifest.input_height,
            n_classes=manifest.n_classes,
        )

    def run(self, tensor: Tensor) -> ScoreVector:
        t0 = time.perf_counter()
        with self._lock:
            module = self._module
            man = self._manifest
            if module is None or man is None:
                raise ClassificationError.not_ready()
            expected = man.input_width * man.input_height
            if int(tensor.numel()) != expected:
                raise ClassificationError.internal(
                    ValueError(f"input length {int(tensor.numel())} != {expected}")
                )
            try:
                scores = _execute(module, man, self._allocate(man), tensor)
            except _RUN_ERRORS as exc:
                self._logger.info("inference_failed error=%s", exc)
                raise ClassificationError.internal(exc) from exc
        dt_ms = int((time.perf_counter() - t0) * 1000.0)
        self._logger.debug("inference_finished latency_ms=%d", dt_ms)
        return scores

    def close(self) -> None:
        with self._lock:
            self._module = None
            self._manifest = None
            self._input = None

    def _allocate(self, man: ModelManifest) -> Tensor:
        # Reuses the buffer while the declared shape is unchanged
        buf = self._input
        if buf is None or tuple(buf.shape) != man.input_shape:
            buf = torch.zeros(man.input_shape, dtype=torch.float32)
            self._input = buf
        return buf


def _execute(
    module: torch.jit.ScriptModule, man: ModelManifest, buf: Tensor, tensor: Tensor
) -> ScoreVector:
    buf.copy_(tensor.reshape(man.input_shape))
    with torch.inference_mode():
        out: object = module(buf)
    if not isinstance(out, Tensor):
        raise TypeError("model must return a single tensor")
    if tuple(out.shape) != man.output_shape:
        raise ValueError(f"output shape {tuple(out.shape)} != declared {man.output_shape}")
    flat = out.detach().to(dtype=torch.float32).reshape(-1)
    return tuple(float(v) for v in flat.tolist())


def _check_topology(module: torch.jit.ScriptModule) -> None:
    schema = module.forward.schema
    # First argument is the module itself
    inputs = list(schema.arguments)[1:]
    if len(inputs) != 1:
        raise TypeError(f"model must take exactly one input tensor, got {len(inputs)}")
    if str(inputs[0].type) != "Tensor":
        raise TypeError(f"model input must be a Tensor, got {inputs[0].type}")
    if len(schema.returns) != 1:
        raise TypeError("model must return exactly one output")


def _extra_text(raw: object) -> str:
    if isinstance(raw, bytes | bytearray):
        return bytes(raw).decode("utf-8")
    return str(raw)


def save_artifact(module: torch.nn.Module, manifest: ModelManifest, path: Path) -> Path:
    """Write ``module`` as a self-contained TorchScript file with ``manifest`` embedded."""
    scripted = module if isinstance(module, torch.jit.ScriptModule) else torch.jit.script(module)
    path.parent.mkdir(parents=True, exist_ok=True)
    torch.jit.save(scripted, path.as_posix(), _extra_files={MANIFEST_FILENAME: manifest.to_json()})
    get_logger().info("artifact_saved model_id=%s path=%s", manifest.model_id, path.as_posix())
    return path

from __future__ import annotations

import asyncio
import os
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from types import TracebackType

from .config import Settings
from .errors import ClassificationError, InitializationError, PreprocessError
from .inference.decode import decode
from .inference.engine import InferenceEngine
from .inference.types import ClassificationResult, LoadedModel
from .logging import get_logger, log_event
from .preprocess import RawImage, normalize
from .request_context import call_id_var


class ServiceState(str, Enum):
    uninitialized = "uninitialized"
    ready = "ready"


class ClassificationService:
    """Front door for digit classification.

    Model loading and every classification run on a background pool and are
    reported through ``concurrent.futures.Future`` objects. A future resolves
    with either the result or one of the tagged errors from ``errors``:
    ``InitializationError`` for ``initialize`` and ``ClassificationError`` for
    ``classify``. Completions of concurrent calls arrive in no particular order,
    and calls cannot be cancelled or timed out once started.
    """

    def __init__(
        self, settings: Settings | None = None, engine: InferenceEngine | None = None
    ) -> None:
        self._settings = settings if settings is not None else Settings.load()
        self._engine = engine if engine is not None else InferenceEngine(self._settings)
        self._logger = get_logger()
        self._lock = threading.Lock()
        self._pool: ThreadPoolExecutor | None = None
        self._state = ServiceState.uninitialized
        self._model: LoadedModel | None = None
        self._init_future: Future[InferenceEngine] | None = None
        # Bumped by shutdown so loads started earlier cannot mark the service ready
        self._generation = 0

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def engine(self) -> InferenceEngine:
        return self._engine

    @property
    def model(self) -> LoadedModel | None:
        return self._model

    def initialize(self) -> Future[InferenceEngine]:
        with self._lock:
            pending = self._init_future
            if pending is not None and (not pending.done() or pending.exception() is None):
                return pending
            fut = self._ensure_pool().submit(self._initialize_impl, self._generation)
            self._init_future = fut
            return fut

    def classify(self, image: RawImage) -> Future[ClassificationResult]:
        with self._lock:
            model = self._model
            if self._state is not ServiceState.ready or model is None or self._pool is None:
                self._logger.info("classify_rejected reason=not_ready")
                rejected: Future[ClassificationResult] = Future()
                rejected.set_exception(ClassificationError.not_ready())
                return rejected
            call_id = uuid.uuid4().hex[:12]
            return self._pool.submit(self._classify_impl, image, model, call_id)

    async def ainitialize(self) -> InferenceEngine:
        return await asyncio.wrap_future(self.initialize())

    async def aclassify(self, image: RawImage) -> ClassificationResult:
        return await asyncio.wrap_future(self.classify(image))

    def shutdown(self) -> None:
        with self._lock:
            self._state = ServiceState.uninitialized
            self._model = None
            self._init_future = None
            self._generation += 1
            pool = self._pool
            self._pool = None
        if pool is not None:
            pool.shutdown(wait=True)
        self._engine.close()
        self._logger.info("service_shutdown")

    def __enter__(self) -> ClassificationService:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.shutdown()

    def _ensure_pool(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = _make_pool(self._settings)
        return self._pool

    def _initialize_impl(self, generation: int) -> InferenceEngine:
        path = self._settings.model_path()
        t0 = time.perf_counter()
        loaded = self._engine.load(path)
        with self._lock:
            stale = generation != self._generation
            if not stale:
                self._model = loaded
                self._state = ServiceState.ready
        if stale:
            # shutdown closes the engine once the pool has drained
            self._logger.info("service_load_discarded reason=shutdown model_id=%s", loaded.model_id)
            raise InitializationError.internal(RuntimeError("service shut down during load"))
        dt_ms = int((time.perf_counter() - t0) * 1000.0)
        log_event("service_ready", {"model_id": loaded.model_id, "latency_ms": dt_ms})
        return self._engine

    def _classify_impl(
        self, image: RawImage, model: LoadedModel, call_id: str
    ) -> ClassificationResult:
        token = call_id_var.set(call_id)
        t0 = time.perf_counter()
        try:
            try:
                tensor = normalize(
                    image, model.input_width, model.input_height, self._settings.model.invert
                )
            except PreprocessError as exc:
                self._logger.info("classify_failed reason=%s error=%s", exc.code.value, exc)
                raise ClassificationError.invalid_image(exc) from exc
            scores = self._engine.run(tensor)
            result = decode(scores)
            dt_ms = int((time.perf_counter() - t0) * 1000.0)
            log_event(
                "classify_finished",
                {
                    "latency_ms": dt_ms,
                    "label": result.label,
                    "confidence": result.confidence,
                    "model_id": model.model_id,
                },
            )
            return result
        finally:
            call_id_var.reset(token)


def _make_pool(settings: Settings) -> ThreadPoolExecutor:
    if settings.app.threads == 0:
        size = min(8, os.cpu_count() or 1)
    else:
        size = settings.app.threads
    return ThreadPoolExecutor(max_workers=size, thread_name_prefix="classify")

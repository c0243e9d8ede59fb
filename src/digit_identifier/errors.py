from __future__ import annotations

from enum import Enum
from typing import Final


class ErrorCode(str, Enum):
    invalid_model = "invalid_model"
    internal_error = "internal_error"
    invalid_image = "invalid_image"
    orientation_failed = "orientation_failed"
    resample_failed = "resample_failed"
    service_not_ready = "service_not_ready"


_DEFAULT_DETAIL: Final[dict[ErrorCode, str]] = {
    ErrorCode.invalid_model: "Model artifact is missing or malformed.",
    ErrorCode.internal_error: "Inference runtime error.",
    ErrorCode.invalid_image: "Image could not be converted to model input.",
    ErrorCode.orientation_failed: "Failed to correct image orientation.",
    ErrorCode.resample_failed: "Failed to resample image.",
    ErrorCode.service_not_ready: "Model not loaded. Initialize the service first.",
}

# Fixed text the presentation layer shows per error family
INIT_FAILED_MESSAGE: Final[str] = "Failed to initialize."
CLASSIFY_FAILED_MESSAGE: Final[str] = "Failed to classify the image captured."


class DigitError(Exception):
    def __init__(
        self,
        code: ErrorCode,
        message: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        msg = message if message is not None else _DEFAULT_DETAIL.get(code, "")
        super().__init__(msg)
        self.code = code
        self.message = msg
        self.cause = cause


class InitializationError(DigitError):
    """Model could not be loaded; terminal for the service instance."""

    @classmethod
    def invalid_model(cls, name: str) -> InitializationError:
        return cls(ErrorCode.invalid_model, f"Invalid model: {name}")

    @classmethod
    def internal(cls, cause: BaseException) -> InitializationError:
        return cls(ErrorCode.internal_error, f"Runtime rejected model: {cause}", cause)


class ClassificationError(DigitError):
    @classmethod
    def invalid_image(cls, cause: BaseException | None = None) -> ClassificationError:
        return cls(ErrorCode.invalid_image, cause=cause)

    @classmethod
    def internal(cls, cause: BaseException | None = None) -> ClassificationError:
        detail = f"Inference failed: {cause}" if cause is not None else None
        return cls(ErrorCode.internal_error, detail, cause)

    @classmethod
    def not_ready(cls) -> ClassificationError:
        return cls(ErrorCode.service_not_ready)


class PreprocessError(DigitError):
    pass


def message_for(err: BaseException) -> str:
    if isinstance(err, InitializationError):
        return INIT_FAILED_MESSAGE
    return CLASSIFY_FAILED_MESSAGE

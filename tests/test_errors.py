from __future__ import annotations

from digit_identifier.errors import (
    CLASSIFY_FAILED_MESSAGE,
    INIT_FAILED_MESSAGE,
    ClassificationError,
    DigitError,
    ErrorCode,
    InitializationError,
    PreprocessError,
    message_for,
)


def test_initialization_error_variants() -> None:
    e1 = InitializationError.invalid_model("mnist.pt")
    assert e1.code is ErrorCode.invalid_model
    assert "mnist.pt" in e1.message
    cause = RuntimeError("unsupported op")
    e2 = InitializationError.internal(cause)
    assert e2.code is ErrorCode.internal_error
    assert e2.cause is cause


def test_classification_error_variants() -> None:
    pre = PreprocessError(ErrorCode.resample_failed)
    assert ClassificationError.invalid_image(pre).code is ErrorCode.invalid_image
    assert ClassificationError.invalid_image(pre).cause is pre
    assert ClassificationError.internal(ValueError("x")).code is ErrorCode.internal_error
    assert ClassificationError.not_ready().code is ErrorCode.service_not_ready


def test_default_messages_and_families() -> None:
    err = PreprocessError(ErrorCode.orientation_failed)
    assert isinstance(err, DigitError)
    assert err.message == str(err)
    assert err.message != ""


def test_message_for_families() -> None:
    assert message_for(InitializationError.invalid_model("m")) == INIT_FAILED_MESSAGE
    assert message_for(ClassificationError.not_ready()) == CLASSIFY_FAILED_MESSAGE
    assert message_for(ClassificationError.invalid_image()) == CLASSIFY_FAILED_MESSAGE

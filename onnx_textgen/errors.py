from __future__ import annotations

"""
Exception types raised by the runtime, the engines and the pipelines.

Each error also derives from the builtin exception callers would naturally
catch (ValueError for bad input, RuntimeError for bad state). Failures coming
from the artifact fetcher or from ONNX Runtime itself are never wrapped.
"""


class TextGenError(Exception):
    """Base class for all onnx_textgen errors."""


class ConfigError(TextGenError, ValueError):
    """The model configuration descriptor is malformed or inconsistent."""


class SessionUndefinedError(TextGenError, RuntimeError):
    def __init__(self, message: str = "Session is undefined") -> None:
        super().__init__(message)


class InvalidTensorDimensionsError(TextGenError, ValueError):
    def __init__(self, dims: object = None) -> None:
        super().__init__(f"Invalid tensor dimensions: {dims!r}")
        self.dims = dims


class NonFiniteLogitsError(TextGenError, ValueError):
    def __init__(self, index: int, value: float) -> None:
        super().__init__(f"found non-finite value in logits at index {index}: {value}")
        self.index = index
        self.value = value


class EmbeddingOutputError(TextGenError, RuntimeError):
    def __init__(self, available: object = ()) -> None:
        super().__init__(
            f"No embedding output found in model outputs (got {sorted(available)!r})"
        )


class TensorDisposedError(TextGenError, RuntimeError):
    """A device-resident tensor was used after its storage was released."""


class ExternalDataError(TextGenError, FileNotFoundError):
    """External weight data cannot be resolved next to the model file."""


class TokenizerNotInitializedError(TextGenError, RuntimeError):
    def __init__(self) -> None:
        super().__init__("Tokenizer undefined, please initialize first.")


__all__ = [
    "TextGenError",
    "ConfigError",
    "SessionUndefinedError",
    "InvalidTensorDimensionsError",
    "NonFiniteLogitsError",
    "EmbeddingOutputError",
    "TensorDisposedError",
    "ExternalDataError",
    "TokenizerNotInitializedError",
]

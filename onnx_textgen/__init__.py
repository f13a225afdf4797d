"""
onnx_textgen
------------
Greedy text generation and text embeddings for transformer models exported
to ONNX, driven through ONNX Runtime.

The package is layered:
- Configuration (ModelConfig, LoadOptions)
- Tensors with explicit host/device ownership (Tensor)
- Inference session abstraction over ONNX Runtime (OrtSession)
- Model runtime: session, feed and key/value cache (ModelRuntime)
- Engines: greedy decoding (TextGeneration) and mean-pooled embeddings (TextEmbedding)
- Pipelines pairing a tokenizer with an engine
"""

import logging

from .config import LoadOptions, ModelConfig, SessionConfig
from .errors import (
    ConfigError,
    EmbeddingOutputError,
    ExternalDataError,
    InvalidTensorDimensionsError,
    NonFiniteLogitsError,
    SessionUndefinedError,
    TensorDisposedError,
    TextGenError,
    TokenizerNotInitializedError,
)
from .tensor import Tensor, TensorLocation
from .session import InferenceSession, OrtSession
from .hub import HubFetcher, hf_url
from .kvcache import update_kv_cache
from .runtime import ModelRuntime, argmax
from .text_generation import TextGeneration
from .text_embedding import TextEmbedding
from .tokenizer import Tokenizer
from .pipelines import PipelineOptions, TextEmbeddingPipeline, TextGenerationPipeline

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ModelConfig",
    "LoadOptions",
    "SessionConfig",
    "TextGenError",
    "ConfigError",
    "SessionUndefinedError",
    "InvalidTensorDimensionsError",
    "NonFiniteLogitsError",
    "EmbeddingOutputError",
    "TensorDisposedError",
    "ExternalDataError",
    "TokenizerNotInitializedError",
    "Tensor",
    "TensorLocation",
    "InferenceSession",
    "OrtSession",
    "HubFetcher",
    "hf_url",
    "update_kv_cache",
    "ModelRuntime",
    "argmax",
    "TextGeneration",
    "TextEmbedding",
    "Tokenizer",
    "PipelineOptions",
    "TextGenerationPipeline",
    "TextEmbeddingPipeline",
]

from __future__ import annotations

"""
Text-in / text-out pipelines pairing a tokenizer with an engine.

Each pipeline is an explicit object: construct it, `init()` it with a model
name, use it, then `release()` it (or use it as a context manager).

Usage::
    with TextGenerationPipeline() as pipe:
        pipe.init("microsoft/Phi-3-mini-4k-instruct-onnx", "cpu_and_mobile/model.onnx")
        print(pipe.generate("Tell me a joke", callback=print))
"""

from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import torch

from .config import LoadOptions
from .errors import TokenizerNotInitializedError
from .runtime import DEFAULT_ONNX_FILE
from .text_embedding import TextEmbedding
from .text_generation import TextGeneration
from .tokenizer import Tokenizer

TokenizerFactory = Callable[[str], Tokenizer]

EMBEDDING_MAX_TOKENS = 512


@dataclass
class PipelineOptions(LoadOptions):
    """LoadOptions plus `show_special`: keep special tokens in decoded text."""

    show_special: bool = False


class _Pipeline:
    def __init__(self, tokenizer_factory: TokenizerFactory, options: PipelineOptions) -> None:
        self._tokenizer_factory = tokenizer_factory
        self.tokenizer: Optional[Tokenizer] = None
        self.options = options

    def _require_tokenizer(self) -> Tokenizer:
        if self.tokenizer is None:
            raise TokenizerNotInitializedError()
        return self.tokenizer

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.release()

    def release(self) -> None:  # pragma: no cover - overridden
        raise NotImplementedError


class TextGenerationPipeline(_Pipeline):
    def __init__(
        self,
        model: Optional[TextGeneration] = None,
        tokenizer_factory: TokenizerFactory = Tokenizer.from_hf_repo,
    ) -> None:
        super().__init__(tokenizer_factory, PipelineOptions())
        self.model = model if model is not None else TextGeneration()

    def init(
        self,
        model_name: str,
        onnx_path: str = DEFAULT_ONNX_FILE,
        options: Optional[PipelineOptions] = None,
    ) -> None:
        """Load the tokenizer and the model for `model_name`."""
        self.options = options if options is not None else PipelineOptions()
        self.tokenizer = self._tokenizer_factory(model_name)
        self.model.load(model_name, onnx_path, self.options)

    def token_to_text(self, tokens: Sequence[int], start: int) -> str:
        tok = self._require_tokenizer()
        return tok.decode(list(tokens)[start:], skip_special_tokens=not self.options.show_special)

    def generate(self, prompt: str, callback: Optional[Callable[[str], None]] = None) -> str:
        """
        Generate a completion for `prompt`; only newly generated text is returned.

        `callback`, if given, receives the completion decoded so far after
        every step. The cache is cleared first, so calls are independent.
        """
        tok = self._require_tokenizer()
        input_ids = tok.encode(prompt)

        self.model.initialize_feed()
        start = len(self.model.output_tokens) + len(input_ids)

        def on_step(tokens: Sequence[int]) -> None:
            if callback is not None:
                callback(self.token_to_text(tokens, start))

        output_tokens = self.model.generate(input_ids, on_step, max_tokens=self.options.max_tokens)
        return self.token_to_text(output_tokens, start)

    def stop(self) -> None:
        self.model.request_stop()

    def release(self) -> None:
        self.model.release()


class TextEmbeddingPipeline(_Pipeline):
    def __init__(
        self,
        model: Optional[TextEmbedding] = None,
        tokenizer_factory: TokenizerFactory = Tokenizer.from_hf_repo,
    ) -> None:
        super().__init__(tokenizer_factory, PipelineOptions(max_tokens=EMBEDDING_MAX_TOKENS))
        self.model = model if model is not None else TextEmbedding()

    def init(
        self,
        model_name: str,
        onnx_path: str = DEFAULT_ONNX_FILE,
        options: Optional[PipelineOptions] = None,
    ) -> None:
        self.options = options if options is not None else PipelineOptions(max_tokens=EMBEDDING_MAX_TOKENS)
        self.tokenizer = self._tokenizer_factory(model_name)
        self.model.load(model_name, onnx_path, self.options)

    def embed(self, text: str) -> torch.Tensor:
        """Embed `text`, truncated to `max_tokens` tokens."""
        tok = self._require_tokenizer()
        input_ids = tok.encode(text, max_length=self.options.max_tokens)
        return self.model.embed(input_ids)

    def release(self) -> None:
        self.model.release()


__all__ = ["PipelineOptions", "TextGenerationPipeline", "TextEmbeddingPipeline"]

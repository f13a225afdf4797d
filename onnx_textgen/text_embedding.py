from __future__ import annotations

"""
Sentence embeddings from an encoder exported to ONNX.

One forward pass over the whole token sequence, then an unweighted mean over
the per-token hidden states. Padding positions are averaged in as well, so
inputs should be passed unpadded.
"""

from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

import torch

from .config import LoadOptions, ModelConfig
from .errors import EmbeddingOutputError, InvalidTensorDimensionsError
from .runtime import DEFAULT_ONNX_FILE, ModelRuntime
from .tensor import Tensor

# Output names used by common sentence-transformer exports, in lookup order
EMBEDDING_OUTPUT_NAMES = ("last_hidden_state", "embeddings")


def find_embedding_output(outputs: Mapping[str, Optional[Tensor]]) -> Tensor:
    for name in EMBEDDING_OUTPUT_NAMES:
        t = outputs.get(name)
        if t is not None:
            return t
    raise EmbeddingOutputError(outputs.keys())


def mean_pool(hidden: Tensor) -> torch.Tensor:
    """Average a [1, T, H] hidden-state tensor over T, giving a float32 vector of length H."""
    dims = hidden.dims
    if len(dims) != 3 or dims[1] <= 0 or dims[2] <= 0:
        raise InvalidTensorDimensionsError(dims)
    seq_len, hidden_size = dims[1], dims[2]
    states = hidden.to_torch().reshape(-1)[: seq_len * hidden_size].reshape(seq_len, hidden_size)
    return states.to(torch.float64).mean(dim=0).to(torch.float32)


@dataclass
class TextEmbedding:
    runtime: ModelRuntime = field(default_factory=ModelRuntime)

    def load(
        self,
        model_id: str,
        onnx_file: str = DEFAULT_ONNX_FILE,
        options: Optional[LoadOptions] = None,
    ) -> ModelConfig:
        return self.runtime.load(model_id, onnx_file, options)

    def initialize_feed(self) -> None:
        self.runtime.initialize_feed()

    def release(self) -> None:
        self.runtime.release()

    def embed(self, tokens: Sequence[int]) -> torch.Tensor:
        """
        Embed a token sequence into a single vector of length hidden_size.

        Raises SessionUndefinedError before load / after release, and
        EmbeddingOutputError when the graph returns neither
        `last_hidden_state` nor `embeddings`.
        """
        session = self.runtime.require_session()
        ids = [int(t) for t in tokens]
        if not ids:
            raise ValueError("embed() needs at least one token")

        feed = self.runtime.feed
        feed["input_ids"] = Tensor.from_values("int64", ids, (1, len(ids)))
        feed["attention_mask"] = Tensor.from_values("int64", [1] * len(ids), (1, len(ids)))

        outputs = session.run(feed)
        return mean_pool(find_embedding_output(outputs))


__all__ = ["TextEmbedding", "mean_pool", "find_embedding_output", "EMBEDDING_OUTPUT_NAMES"]

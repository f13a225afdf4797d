from __future__ import annotations

"""
Greedy text generation on top of a `ModelRuntime`.

The prompt is prefilled in one pass; every following step feeds only the
token selected last, since the key/value cache already encodes the prefix.
Generation ends on an end-of-sequence token, when the sequence reaches
`max_tokens` (prompt included), or when `request_stop()` is called.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence

from .config import LoadOptions, ModelConfig
from .runtime import DEFAULT_ONNX_FILE, ModelRuntime, argmax
from .session import InferenceSession
from .tensor import Tensor

logger = logging.getLogger(__name__)

# End-of-turn id of the Phi-3 tokenizer family; stop on it even when the
# model config names another eos id.
DEFAULT_SECONDARY_EOS_TOKEN_ID = 32007

StepCallback = Callable[[List[int]], None]


def _int64(values: Sequence[int]) -> Tensor:
    return Tensor.from_values("int64", values, (1, len(values)))


@dataclass
class TextGeneration:
    runtime: ModelRuntime = field(default_factory=ModelRuntime)
    secondary_eos_token_id: Optional[int] = DEFAULT_SECONDARY_EOS_TOKEN_ID
    # Decoder exports in the supported family always take position_ids
    need_position_ids: bool = True

    output_tokens: List[int] = field(default_factory=list, init=False)
    stop: bool = field(default=False, init=False)

    # ----- Runtime passthroughs -----
    def load(
        self,
        model_id: str,
        onnx_file: str = DEFAULT_ONNX_FILE,
        options: Optional[LoadOptions] = None,
    ) -> ModelConfig:
        config = self.runtime.load(model_id, onnx_file, options)
        self.output_tokens = []
        return config

    def initialize_feed(self) -> None:
        """Drop the cached context and the accumulated output tokens."""
        self.runtime.initialize_feed()
        self.output_tokens = []

    def release(self) -> None:
        self.runtime.release()

    def request_stop(self) -> None:
        """Ask a running generation to finish after the current step."""
        self.stop = True

    def is_stop_token(self, token: Optional[int]) -> bool:
        if token is None:
            return False
        if token == self.runtime.eos_token_id or token == self.secondary_eos_token_id:
            return True
        # descriptors such as Llama-3 list several terminators
        config = self.runtime.config
        return config is not None and token in config.eos_token_ids

    # ----- Core API -----
    def generate(
        self,
        tokens: Sequence[int],
        on_step: Optional[StepCallback] = None,
        *,
        max_tokens: Optional[int] = None,
    ) -> List[int]:
        """Generate tokens using greedy search.

        - tokens: prompt token ids, appended to `output_tokens` before decoding
        - on_step: called after every step with the full `output_tokens` list
        - max_tokens: bound on the total sequence length, prompt included;
          defaults to the `max_tokens` given at load time

        Returns `output_tokens`. Errors from the session or from `on_step`
        abort generation and propagate; tokens produced so far stay in
        `output_tokens`.
        """
        session = self.runtime.require_session()
        steps = self._decode(session, tokens, max_tokens)
        try:
            for _ in steps:
                if on_step is not None:
                    on_step(self.output_tokens)
        finally:
            steps.close()
        return self.output_tokens

    def stream(self, tokens: Sequence[int], *, max_tokens: Optional[int] = None) -> Iterator[List[int]]:
        """Like `generate`, but yields a snapshot of `output_tokens` after each step."""
        session = self.runtime.require_session()
        return (list(self.output_tokens) for _ in self._decode(session, tokens, max_tokens))

    def _decode(
        self,
        session: InferenceSession,
        tokens: Sequence[int],
        max_tokens: Optional[int],
    ) -> Iterator[int]:
        limit = self.runtime.options.max_tokens if max_tokens is None else int(max_tokens)
        feed = self.runtime.feed
        prompt = [int(t) for t in tokens]

        feed["input_ids"] = _int64(prompt)
        self.stop = False
        self.output_tokens.extend(prompt)

        seq_len = len(self.output_tokens)
        if self.need_position_ids:
            feed["position_ids"] = _int64(range(seq_len - len(prompt), seq_len))

        last_token: Optional[int] = None
        try:
            while (
                not self.is_stop_token(last_token)
                and len(self.output_tokens) < limit
                and not self.stop
            ):
                seq_len = len(self.output_tokens)
                feed["attention_mask"] = _int64([1] * seq_len)

                outputs = session.run(feed)
                last_token = argmax(outputs.get("logits"))
                self.output_tokens.append(last_token)
                logger.debug("position %d -> token %d", seq_len, last_token)
                yield last_token

                self.runtime.update_kv_cache(outputs, feed)
                feed["input_ids"] = _int64([last_token])
                if self.need_position_ids:
                    feed["position_ids"] = _int64([seq_len])
        finally:
            if self.runtime.options.profiling:
                profile = session.end_profiling()
                logger.info("ONNX Runtime profile written to %s", profile)


__all__ = ["TextGeneration", "DEFAULT_SECONDARY_EOS_TOKEN_ID", "StepCallback"]

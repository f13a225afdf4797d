from __future__ import annotations

"""
Model runtime shared by the text generation and text embedding engines.

A `ModelRuntime` owns one inference session, the named tensor feed (which
carries the key/value cache between steps) and the few hyperparameters the
cache shape depends on. Engines hold a runtime and drive it; they never own
the session or the cache tensors themselves.
"""

import logging
from typing import Dict, Mapping, Optional, Tuple

import torch

from .config import LoadOptions, ModelConfig, SessionConfig
from .errors import InvalidTensorDimensionsError, NonFiniteLogitsError, SessionUndefinedError
from .hub import HubFetcher, resolve_artifacts
from .kvcache import Feed, empty_cache, release_feed, update_kv_cache
from .session import InferenceSession, OrtSession, SessionFactory
from .tensor import Tensor

logger = logging.getLogger(__name__)

DEFAULT_ONNX_FILE = "onnx/model.onnx"


def argmax(logits: Tensor) -> int:
    """
    Greedy token selection over the last position of a [1, T, V] logits tensor.

    Only the final row along T is scanned. Ties resolve to the lowest index.
    Any NaN or infinity in that row raises instead of being silently ranked.
    """
    dims = getattr(logits, "dims", None)
    if dims is None or len(dims) != 3 or any(int(d) <= 0 for d in dims):
        raise InvalidTensorDimensionsError(dims)

    vocab = int(dims[2])
    start = vocab * (int(dims[1]) - 1)
    flat = logits.to_torch().reshape(-1)
    if flat.numel() < start + vocab:
        raise InvalidTensorDimensionsError(dims)

    row = flat[start : start + vocab].to(torch.float64)
    finite = torch.isfinite(row)
    if not bool(finite.all()):
        bad = int(torch.nonzero(~finite)[0, 0])
        raise NonFiniteLogitsError(bad, float(row[bad]))
    # torch.argmax returns the first maximal index
    return int(torch.argmax(row))


class ModelRuntime:
    """
    Session, feed and cache bookkeeping for one ONNX model.

    Lifecycle: `load` once, `initialize_feed` between independent requests,
    `release` exactly once when done. `load` is not idempotent: loading over
    a live session leaves the old one to the garbage collector.
    """

    def __init__(
        self,
        *,
        session_factory: SessionFactory = OrtSession.create,
        dtype: str = "float32",
    ) -> None:
        self.session: Optional[InferenceSession] = None
        self.feed: Dict[str, Tensor] = {}
        self.config: Optional[ModelConfig] = None
        self.options = LoadOptions(dtype=dtype)
        self.eos_token_id: int = 2
        self.kv_dims: Tuple[int, ...] = ()
        self.num_layers: int = 0
        self.dtype = dtype
        self.session_factory = session_factory

    # ----- Loading -----
    def load(
        self,
        model_id: str,
        onnx_file: str = DEFAULT_ONNX_FILE,
        options: Optional[LoadOptions] = None,
    ) -> ModelConfig:
        """Fetch the descriptor and ONNX graph for `model_id` and open a session."""
        options = options if options is not None else LoadOptions(dtype=self.dtype)
        if self.session is not None:
            logger.warning("load() called on a runtime that already holds a session; call release() first")

        fetch = options.fetch if options.fetch is not None else HubFetcher()
        artifacts = resolve_artifacts(
            model_id,
            onnx_file,
            fetch,
            external_data=options.external_data,
            registry=options.registry,
        )
        config = ModelConfig.from_json_file(artifacts.config_path)

        session_config = SessionConfig.from_load_options(options)
        session_config.external_data = list(artifacts.external_data)
        self.session = self.session_factory(artifacts.model_path, session_config)

        self.options = options
        self.config = config
        self.dtype = options.dtype
        self.eos_token_id = config.eos_token_id
        self.kv_dims = config.kv_dims
        self.num_layers = config.num_hidden_layers
        self.initialize_feed()

        logger.info(
            "Loaded %s (%d layers, kv dims %s, eos=%d)",
            model_id,
            self.num_layers,
            list(self.kv_dims),
            self.eos_token_id,
        )
        return config

    # ----- Cache -----
    def initialize_feed(self) -> None:
        """Release device-held cache tensors and start again from an empty cache."""
        released = release_feed(self.feed)
        self.feed = empty_cache(self.num_layers, self.kv_dims, self.dtype)
        logger.debug("Initialized feed with %d cache slots (%d device tensors released)", len(self.feed), released)

    def update_kv_cache(self, outputs: Mapping[str, Optional[Tensor]], feed: Optional[Feed] = None) -> None:
        update_kv_cache(self.feed if feed is None else feed, outputs)

    @staticmethod
    def argmax(logits: Tensor) -> int:
        return argmax(logits)

    # ----- Session -----
    def require_session(self) -> InferenceSession:
        if self.session is None:
            raise SessionUndefinedError()
        return self.session

    def run(self) -> Dict[str, Optional[Tensor]]:
        return self.require_session().run(self.feed)

    def release(self) -> None:
        """Release the session. Safe to call repeatedly; engine errors propagate."""
        if self.session is None:
            return
        session, self.session = self.session, None
        try:
            session.release()
        finally:
            release_feed(self.feed)
            self.feed = {}


__all__ = ["ModelRuntime", "argmax", "DEFAULT_ONNX_FILE"]

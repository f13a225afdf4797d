from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple, Union
import json
from pathlib import Path

from .errors import ConfigError

# ONNX Runtime accepts either a provider name or a (name, provider_options) pair
ExecutionProvider = Union[str, Tuple[str, Mapping[str, Any]]]
FetchFn = Callable[[str], str]

SUPPORTED_DTYPES = ("float16", "float32")
DEFAULT_REGISTRY = "https://huggingface.co"


@dataclass(frozen=True)
class ModelConfig:
    """
    Model hyperparameters needed to drive a decoder exported to ONNX.

    Only the handful of keys that shape the key/value cache and stop decoding
    are kept. Construct from a HuggingFace-style config.json mapping via
    `from_hf_dict`, or from a file via `from_json_file`.
    """

    eos_token_id: int
    num_key_value_heads: int
    hidden_size: int
    num_attention_heads: int
    num_hidden_layers: int

    # Every eos id listed by the descriptor; eos_token_id is the first one
    eos_token_ids: Tuple[int, ...] = ()

    def __post_init__(self) -> None:
        self._validate()
        if not self.eos_token_ids:
            object.__setattr__(self, "eos_token_ids", (self.eos_token_id,))

    # --- HuggingFace loading helpers ---
    @classmethod
    def from_hf_dict(cls, data: Mapping[str, Any]) -> "ModelConfig":
        """
        Create a config from a HuggingFace-style config.json mapping.

        Unrelated keys are ignored. `eos_token_id` may be a list, as some
        chat models publish several terminators.
        """
        if not isinstance(data, Mapping):
            raise ConfigError(f"config descriptor must be a JSON object; got {type(data).__name__}")

        kwargs: dict[str, Any] = {}
        for key in (
            "eos_token_id",
            "num_key_value_heads",
            "hidden_size",
            "num_attention_heads",
            "num_hidden_layers",
        ):
            if key not in data:
                raise ConfigError(f"config descriptor is missing required field {key!r}")
            kwargs[key] = data[key]

        eos = kwargs["eos_token_id"]
        if isinstance(eos, (list, tuple)):
            if not eos:
                raise ConfigError("eos_token_id list must not be empty")
            kwargs["eos_token_ids"] = tuple(eos)
            kwargs["eos_token_id"] = eos[0]

        return cls(**kwargs)

    @classmethod
    def from_json_file(cls, path: str | Path) -> "ModelConfig":
        path = Path(path)
        with path.open("r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"config descriptor at {path} is not valid JSON: {e}") from e
        return cls.from_hf_dict(data)

    # --- Derived shape ---
    @property
    def head_dim(self) -> int:
        return self.hidden_size // self.num_attention_heads

    @property
    def kv_dims(self) -> Tuple[int, int, int, int]:
        """Shape of an empty cache slot: [batch, kv_heads, seq_len=0, head_dim]."""
        return (1, self.num_key_value_heads, 0, self.head_dim)

    # --- Validation ---
    def _validate(self) -> None:
        for name in (
            "eos_token_id",
            "num_key_value_heads",
            "hidden_size",
            "num_attention_heads",
            "num_hidden_layers",
        ):
            val = getattr(self, name)
            if isinstance(val, bool) or not isinstance(val, int):
                raise ConfigError(f"{name} must be an int; got {val!r}")
            if val < 0:
                raise ConfigError(f"{name} must be non-negative; got {val!r}")

        for tok in self.eos_token_ids:
            if isinstance(tok, bool) or not isinstance(tok, int) or tok < 0:
                raise ConfigError(f"eos_token_id entries must be non-negative ints; got {tok!r}")

        if self.num_attention_heads == 0:
            raise ConfigError("num_attention_heads must be positive")
        if self.num_key_value_heads == 0:
            raise ConfigError("num_key_value_heads must be positive")
        if self.hidden_size % self.num_attention_heads != 0:
            raise ConfigError(
                f"hidden_size={self.hidden_size} is not divisible by "
                f"num_attention_heads={self.num_attention_heads}"
            )


@dataclass
class LoadOptions:
    """
    Options accepted by `ModelRuntime.load` and the engines built on it.

    - max_tokens: ceiling on prompt + generated tokens
    - verbose: turn on ONNX Runtime's most detailed logging
    - external_data: also fetch `<onnx_file>_data` holding out-of-line weights
    - fetch: callable mapping a URL to a local path; defaults to a HubFetcher
    - execution_providers: ordered ONNX Runtime providers to request
    - profiling: enable the ONNX Runtime profiler for the session
    - dtype: element type of the key/value cache
    - registry: base URL of the model hub
    - device_outputs: keep session outputs on the accelerator (IO binding)
    """

    max_tokens: int = 9999
    verbose: bool = False
    external_data: bool = False
    fetch: Optional[FetchFn] = None
    execution_providers: Sequence[ExecutionProvider] = ("CPUExecutionProvider",)
    profiling: bool = False
    dtype: str = "float32"
    registry: str = DEFAULT_REGISTRY
    device_outputs: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.max_tokens, int) or self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be a positive int; got {self.max_tokens!r}")
        if self.dtype not in SUPPORTED_DTYPES:
            raise ValueError(f"dtype must be one of {SUPPORTED_DTYPES}; got {self.dtype!r}")
        if self.fetch is not None and not callable(self.fetch):
            raise ValueError("fetch must be callable")
        self.execution_providers = tuple(self.execution_providers)


@dataclass
class SessionConfig:
    """Engine-neutral session options, translated by the session backend."""

    execution_providers: Sequence[ExecutionProvider] = ("CPUExecutionProvider",)
    graph_optimization_level: str = "all"
    log_severity_level: Optional[int] = None
    log_verbosity_level: Optional[int] = None
    verbose: bool = False
    external_data: list[str] = field(default_factory=list)
    enable_profiling: bool = False
    device_outputs: bool = False

    @classmethod
    def from_load_options(cls, options: LoadOptions) -> "SessionConfig":
        cfg = cls(
            execution_providers=tuple(options.execution_providers),
            enable_profiling=options.profiling,
            device_outputs=options.device_outputs,
        )
        if options.verbose:
            cfg.verbose = True
            cfg.log_severity_level = 0
            cfg.log_verbosity_level = 0
        return cfg


__all__ = [
    "ModelConfig",
    "LoadOptions",
    "SessionConfig",
    "ExecutionProvider",
    "FetchFn",
    "SUPPORTED_DTYPES",
    "DEFAULT_REGISTRY",
]

import json
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest
import torch

from onnx_textgen.config import LoadOptions, ModelConfig
from onnx_textgen.runtime import ModelRuntime
from onnx_textgen.tensor import Tensor

CONFIG_PAYLOAD = {
    "eos_token_id": 2,
    "num_key_value_heads": 8,
    "hidden_size": 512,
    "num_attention_heads": 8,
    "num_hidden_layers": 12,
}


class ScriptedSession:
    """
    Stand-in for an ONNX decoder session.

    Emits logits whose last row peaks at the next scripted token id and grows
    each present.<i>.key/value by the number of input positions, mirroring
    how a real decoder export extends its cache.
    """

    def __init__(
        self,
        script: Sequence[int] = (),
        *,
        vocab_size: int = 8,
        num_layers: int = 1,
        kv_heads: int = 1,
        head_dim: int = 2,
        extra_outputs: Optional[Callable[[Dict[str, Tensor], int], Dict[str, Tensor]]] = None,
    ) -> None:
        self.script = list(script)
        self.vocab_size = vocab_size
        self.num_layers = num_layers
        self.kv_heads = kv_heads
        self.head_dim = head_dim
        self.extra_outputs = extra_outputs
        self.calls: List[Dict[str, object]] = []
        self.released = 0
        self.profiles_ended = 0

    def run(self, feed):
        step = len(self.calls)
        self.calls.append(
            {
                name: (t.tolist() if name in ("input_ids", "position_ids", "attention_mask") else t.dims)
                for name, t in feed.items()
            }
        )
        seq = feed["input_ids"].dims[1]
        logits = torch.full((1, seq, self.vocab_size), -1.0)
        logits[0, -1, self.script[step]] = 1.0
        outputs = {"logits": Tensor("float32", logits, logits.shape)}

        past = feed.get("past_key_values.0.key")
        total = (past.dims[2] if past is not None else 0) + seq
        for i in range(self.num_layers):
            for kind in ("key", "value"):
                outputs[f"present.{i}.{kind}"] = Tensor.empty(
                    "float32", (1, self.kv_heads, total, self.head_dim)
                )
        if self.extra_outputs is not None:
            outputs.update(self.extra_outputs(feed, step))
        return outputs

    def release(self):
        self.released += 1

    def end_profiling(self):
        self.profiles_ended += 1
        return "onnxruntime_profile.json"


def attach_session(
    runtime: ModelRuntime,
    session,
    *,
    eos_token_id: int = 2,
    num_layers: int = 1,
    kv_heads: int = 1,
    head_dim: int = 2,
    options: Optional[LoadOptions] = None,
) -> ModelRuntime:
    """Put `runtime` in the state `load` would leave it in, without fetching anything."""
    runtime.session = session
    runtime.config = ModelConfig(
        eos_token_id=eos_token_id,
        num_key_value_heads=kv_heads,
        hidden_size=kv_heads * head_dim,
        num_attention_heads=kv_heads,
        num_hidden_layers=num_layers,
    )
    runtime.eos_token_id = eos_token_id
    runtime.kv_dims = runtime.config.kv_dims
    runtime.num_layers = num_layers
    if options is not None:
        runtime.options = options
    runtime.initialize_feed()
    return runtime


class RecordingFactory:
    """Session factory that records what `load` asked for."""

    def __init__(self, session=None) -> None:
        self.session = session if session is not None else ScriptedSession()
        self.calls = []

    def __call__(self, model_path, config):
        self.calls.append((model_path, config))
        return self.session


@pytest.fixture
def scripted_session():
    return ScriptedSession


@pytest.fixture
def attach():
    return attach_session


@pytest.fixture
def recording_factory():
    return RecordingFactory


@pytest.fixture
def hub_files(tmp_path: Path):
    """
    Local artifacts plus a fetch callable that maps hub URLs onto them.

    Returns (fetch, fetched_urls, files) where files maps the path part after
    `resolve/main/` to the local file.
    """
    files: Dict[str, Path] = {}

    def add(relpath: str, content: str) -> Path:
        p = tmp_path / relpath
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content, encoding="utf-8")
        files[relpath] = p
        return p

    add("config.json", json.dumps(CONFIG_PAYLOAD))
    add("onnx/model.onnx", "graph")
    add("onnx/model.onnx_data", "weights")

    fetched: List[str] = []

    def fetch(url: str) -> str:
        fetched.append(url)
        relpath = url.split("/resolve/main/", 1)[1]
        return str(files[relpath])

    fetch.add = add  # type: ignore[attr-defined]
    return fetch, fetched, files

from pathlib import Path
from types import SimpleNamespace

import numpy as np
import onnxruntime as ort
import pytest

from onnx_textgen.config import SessionConfig
from onnx_textgen.errors import ExternalDataError, SessionUndefinedError, TensorDisposedError
from onnx_textgen.session import OrtSession, build_session_options, check_external_data
from onnx_textgen.tensor import Tensor


class _FakeOrtSession:
    """Duck-typed onnxruntime.InferenceSession exposing only what OrtSession uses."""

    def __init__(self, inputs, outputs):
        self._inputs = [SimpleNamespace(name=n) for n in inputs]
        self._outputs = [SimpleNamespace(name=n) for n in outputs]
        self.runs = []

    def get_inputs(self):
        return self._inputs

    def get_outputs(self):
        return self._outputs

    def get_providers(self):
        return ["CPUExecutionProvider"]

    def run(self, output_names, feed):
        self.runs.append((output_names, feed))
        return [np.full((1, 1, 4), 0.5, dtype=np.float32), np.zeros((1, 1, 1, 2), dtype=np.float16)]

    def end_profiling(self):
        return "profile.json"


def test_build_session_options_defaults():
    opts = build_session_options(SessionConfig())
    assert opts.graph_optimization_level == ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    assert not opts.enable_profiling


def test_build_session_options_verbose_and_profiling():
    opts = build_session_options(
        SessionConfig(log_severity_level=0, log_verbosity_level=0, enable_profiling=True)
    )
    assert opts.log_severity_level == 0
    assert opts.log_verbosity_level == 0
    assert opts.enable_profiling


def test_build_session_options_rejects_unknown_level():
    with pytest.raises(ValueError):
        build_session_options(SessionConfig(graph_optimization_level="max"))


def test_check_external_data(tmp_path: Path):
    model = tmp_path / "onnx" / "model.onnx"
    model.parent.mkdir()
    model.write_bytes(b"graph")
    data = tmp_path / "onnx" / "model.onnx_data"
    data.write_bytes(b"weights")
    check_external_data(model, [str(data)])

    with pytest.raises(ExternalDataError):
        check_external_data(model, [str(tmp_path / "onnx" / "missing.onnx_data")])

    elsewhere = tmp_path / "model.onnx_data"
    elsewhere.write_bytes(b"weights")
    with pytest.raises(ExternalDataError, match="next to the model"):
        check_external_data(model, [str(elsewhere)])


def test_run_filters_undeclared_inputs_and_wraps_outputs():
    fake = _FakeOrtSession(
        inputs=["input_ids", "attention_mask"],
        outputs=["logits", "present.0.key"],
    )
    session = OrtSession(fake)
    feed = {
        "input_ids": Tensor.from_values("int64", [1, 2], (1, 2)),
        "attention_mask": Tensor.from_values("int64", [1, 1], (1, 2)),
        "position_ids": Tensor.from_values("int64", [0, 1], (1, 2)),
    }

    outputs = session.run(feed)

    output_names, inputs = fake.runs[0]
    assert output_names == ["logits", "present.0.key"]
    assert sorted(inputs) == ["attention_mask", "input_ids"]
    assert inputs["input_ids"].dtype == np.int64
    assert outputs["logits"].dims == (1, 1, 4)
    assert outputs["present.0.key"].dtype == "float16"
    assert not outputs["logits"].is_device


def test_release_drops_session():
    session = OrtSession(_FakeOrtSession(inputs=[], outputs=["logits"]))
    assert session.end_profiling() == "profile.json"
    session.release()
    with pytest.raises(SessionUndefinedError):
        session.run({})
    # releasing twice is harmless
    session.release()


class _FakeOrtValue:
    def __init__(self, device):
        self._device = device

    def device_name(self):
        return self._device

    def data_type(self):
        return "tensor(float16)"

    def shape(self):
        return [1, 8, 3, 64]

    def numpy(self):
        return np.zeros((1, 8, 3, 64), dtype=np.float16)


def test_device_outputs_are_dropped_on_dispose():
    t = OrtSession._wrap_ortvalue(_FakeOrtValue("Cuda"))
    assert t.is_device
    assert t.dtype == "float16"
    assert t.dims == (1, 8, 3, 64)

    t.dispose()
    assert t.disposed
    with pytest.raises(TensorDisposedError):
        t.data


def test_cpu_ortvalues_come_back_as_host_tensors():
    t = OrtSession._wrap_ortvalue(_FakeOrtValue("Cpu"))
    assert not t.is_device
    assert t.to_torch().shape == (1, 8, 3, 64)

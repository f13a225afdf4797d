from __future__ import annotations

"""
Inference session abstraction and its ONNX Runtime implementation.

The runtime only relies on the `InferenceSession` protocol: run a named
mapping of input tensors, get a named mapping of output tensors back, and
release the session once. `OrtSession` adapts `onnxruntime.InferenceSession`
to that contract. With `device_outputs` enabled it uses IO binding so the
present key/value tensors stay in accelerator memory between steps.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

import onnxruntime as ort

from .config import SessionConfig
from .errors import ExternalDataError, SessionUndefinedError
from .tensor import Tensor

logger = logging.getLogger(__name__)

_GRAPH_OPTIMIZATION_LEVELS = {
    "disabled": ort.GraphOptimizationLevel.ORT_DISABLE_ALL,
    "basic": ort.GraphOptimizationLevel.ORT_ENABLE_BASIC,
    "extended": ort.GraphOptimizationLevel.ORT_ENABLE_EXTENDED,
    "all": ort.GraphOptimizationLevel.ORT_ENABLE_ALL,
}

# OrtValue.data_type() strings for the element types the runtime handles
_ORT_ELEMENT_TYPES = {
    "tensor(float)": "float32",
    "tensor(float16)": "float16",
    "tensor(int64)": "int64",
}

# Providers whose outputs can be left in device memory, mapped to IO binding device types
_DEVICE_TYPES = {
    "CUDAExecutionProvider": "cuda",
    "TensorrtExecutionProvider": "cuda",
    "ROCMExecutionProvider": "cuda",
    "DmlExecutionProvider": "dml",
}


class InferenceSession(Protocol):
    def run(self, feed: Mapping[str, Tensor]) -> Dict[str, Optional[Tensor]]:  # pragma: no cover
        ...

    def release(self) -> None:  # pragma: no cover
        ...

    def end_profiling(self) -> str:  # pragma: no cover
        ...


SessionFactory = Callable[[str, SessionConfig], InferenceSession]


def build_session_options(config: SessionConfig) -> ort.SessionOptions:
    """Translate a SessionConfig into `onnxruntime.SessionOptions`."""
    try:
        level = _GRAPH_OPTIMIZATION_LEVELS[config.graph_optimization_level]
    except KeyError:
        raise ValueError(
            f"Unknown graph optimization level: {config.graph_optimization_level!r}"
        ) from None

    opts = ort.SessionOptions()
    opts.graph_optimization_level = level
    if config.log_severity_level is not None:
        opts.log_severity_level = config.log_severity_level
    if config.log_verbosity_level is not None:
        opts.log_verbosity_level = config.log_verbosity_level
    if config.enable_profiling:
        opts.enable_profiling = True
    return opts


def check_external_data(model_path: str | Path, external_data: Sequence[str]) -> None:
    """
    ONNX models reference external weights by a path relative to the model
    file, so every external data file has to sit in the model's directory.
    """
    model_dir = Path(model_path).resolve().parent
    for item in external_data:
        p = Path(item)
        if not p.is_file():
            raise ExternalDataError(f"External data file not found: {p}")
        if p.resolve().parent != model_dir:
            raise ExternalDataError(
                f"External data file {p} must be located next to the model in {model_dir}"
            )


class OrtSession:
    """`InferenceSession` backed by `onnxruntime.InferenceSession`."""

    def __init__(self, session: ort.InferenceSession, *, device_outputs: bool = False) -> None:
        self._session: Optional[ort.InferenceSession] = session
        self.input_names: List[str] = [i.name for i in session.get_inputs()]
        self.output_names: List[str] = [o.name for o in session.get_outputs()]
        self._device_type = self._resolve_device_type(session) if device_outputs else None

    @classmethod
    def create(cls, model_path: str, config: SessionConfig) -> "OrtSession":
        if config.external_data:
            check_external_data(model_path, config.external_data)
        if config.verbose:
            ort.set_default_logger_severity(0)

        opts = build_session_options(config)
        logger.debug(
            "Creating ONNX Runtime session for %s with providers %s",
            model_path,
            list(config.execution_providers),
        )
        sess = ort.InferenceSession(
            str(model_path),
            sess_options=opts,
            providers=list(config.execution_providers),
        )
        return cls(sess, device_outputs=config.device_outputs)

    @staticmethod
    def _resolve_device_type(session: ort.InferenceSession) -> Optional[str]:
        for provider in session.get_providers():
            if provider in _DEVICE_TYPES:
                return _DEVICE_TYPES[provider]
        logger.warning("device_outputs requested but no accelerator provider is active")
        return None

    @property
    def session(self) -> ort.InferenceSession:
        if self._session is None:
            raise SessionUndefinedError()
        return self._session

    # ----- Core API -----
    def run(self, feed: Mapping[str, Tensor]) -> Dict[str, Optional[Tensor]]:
        sess = self.session
        # Graphs reject undeclared inputs; embedding models usually lack position_ids
        inputs = {name: t for name, t in feed.items() if name in self.input_names and t is not None}
        if self._device_type is not None:
            return self._run_with_binding(sess, inputs)

        values = sess.run(self.output_names, {name: t.to_numpy() for name, t in inputs.items()})
        return {name: Tensor.from_numpy(v) for name, v in zip(self.output_names, values)}

    def _run_with_binding(
        self, sess: ort.InferenceSession, inputs: Mapping[str, Tensor]
    ) -> Dict[str, Optional[Tensor]]:
        binding = sess.io_binding()
        for name, t in inputs.items():
            if t.is_device:
                binding.bind_ortvalue_input(name, t.data)
            else:
                binding.bind_cpu_input(name, t.to_numpy())
        for name in self.output_names:
            # logits are read on the host every step
            device = "cpu" if name == "logits" else self._device_type
            binding.bind_output(name, device_type=device)

        sess.run_with_iobinding(binding)
        outputs: Dict[str, Optional[Tensor]] = {}
        for name, value in zip(self.output_names, binding.get_outputs()):
            outputs[name] = self._wrap_ortvalue(value)
        return outputs

    @staticmethod
    def _wrap_ortvalue(value: Any) -> Tensor:
        if value.device_name().lower() == "cpu":
            return Tensor.from_numpy(value.numpy())
        dtype = _ORT_ELEMENT_TYPES.get(value.data_type(), value.data_type())
        # No releaser: dispose() drops the last reference and ORT frees the buffer with the OrtValue
        return Tensor.from_device(value, dtype, value.shape())

    def release(self) -> None:
        # onnxruntime frees native resources once the last reference is dropped
        self._session = None

    def end_profiling(self) -> str:
        return self.session.end_profiling()


__all__ = [
    "InferenceSession",
    "SessionFactory",
    "OrtSession",
    "build_session_options",
    "check_external_data",
]

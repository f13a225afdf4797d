from __future__ import annotations

"""
Named tensor values exchanged with the inference session.

Host tensors are backed by `torch.Tensor` (converted to numpy only at the
ONNX Runtime boundary). Device tensors wrap an engine-owned value, usually an
`onnxruntime.OrtValue` living in accelerator memory, and must be released
explicitly with `dispose()` before they are dropped or overwritten.
"""

import enum
import math
from typing import Any, Callable, Optional, Sequence, Tuple

import numpy as np
import torch

from .errors import TensorDisposedError

_TORCH_DTYPES = {
    "float16": torch.float16,
    "float32": torch.float32,
    "int64": torch.int64,
}


class TensorLocation(enum.Enum):
    HOST = "cpu"
    DEVICE = "gpu-buffer"


def torch_dtype(name: str) -> torch.dtype:
    try:
        return _TORCH_DTYPES[name]
    except KeyError:
        raise ValueError(f"Unsupported tensor dtype: {name!r}") from None


class Tensor:
    """
    A dtype-tagged, shape-tagged value with an explicit storage location.

    `dims` is kept separately from the payload so device values never need to
    be copied to the host just to inspect their shape.
    """

    def __init__(
        self,
        dtype: str,
        data: Any,
        dims: Sequence[int],
        *,
        location: TensorLocation = TensorLocation.HOST,
        releaser: Optional[Callable[[Any], None]] = None,
    ) -> None:
        self.dtype = dtype
        self.dims: Tuple[int, ...] = tuple(int(d) for d in dims)
        self.location = location
        self._data = data
        self._releaser = releaser
        self._disposed = False

    # ----- Construction helpers -----
    @classmethod
    def empty(cls, dtype: str, dims: Sequence[int]) -> "Tensor":
        """Zero-filled host tensor; with a zero dim this is a zero-length buffer."""
        return cls(dtype, torch.zeros(tuple(dims), dtype=torch_dtype(dtype)), dims)

    @classmethod
    def from_values(cls, dtype: str, values: Sequence[Any], dims: Sequence[int]) -> "Tensor":
        data = torch.tensor(list(values), dtype=torch_dtype(dtype)).reshape(tuple(dims))
        return cls(dtype, data, dims)

    @classmethod
    def from_numpy(cls, array: np.ndarray) -> "Tensor":
        array = np.ascontiguousarray(array)
        return cls(str(array.dtype), torch.from_numpy(array), array.shape)

    @classmethod
    def from_device(
        cls,
        value: Any,
        dtype: str,
        dims: Sequence[int],
        releaser: Optional[Callable[[Any], None]] = None,
    ) -> "Tensor":
        return cls(dtype, value, dims, location=TensorLocation.DEVICE, releaser=releaser)

    # ----- Accessors -----
    @property
    def data(self) -> Any:
        if self._disposed:
            raise TensorDisposedError(f"tensor {self.dims} was already disposed")
        return self._data

    @property
    def is_device(self) -> bool:
        return self.location is TensorLocation.DEVICE

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def size(self) -> int:
        return math.prod(self.dims)

    def to_torch(self) -> torch.Tensor:
        data = self.data
        if isinstance(data, torch.Tensor):
            return data
        # OrtValue.numpy() copies device memory back to the host
        return torch.from_numpy(np.ascontiguousarray(data.numpy()))

    def to_numpy(self) -> np.ndarray:
        return self.to_torch().detach().cpu().numpy()

    def tolist(self) -> list:
        return self.to_torch().reshape(-1).tolist()

    # ----- Lifetime -----
    def dispose(self) -> None:
        """Release device storage. Host tensors are left to the garbage collector."""
        if not self.is_device or self._disposed:
            return
        value, self._data = self._data, None
        self._disposed = True
        if self._releaser is not None:
            self._releaser(value)

    def __repr__(self) -> str:
        state = " disposed" if self._disposed else ""
        return f"Tensor(dtype={self.dtype!r}, dims={self.dims}, location={self.location.name}{state})"


def release_if_device(tensor: Any) -> bool:
    """Dispose `tensor` when it is device-resident. Returns True if released."""
    if tensor is None:
        return False
    if getattr(tensor, "location", None) is not TensorLocation.DEVICE:
        return False
    if getattr(tensor, "disposed", False):
        return False
    tensor.dispose()
    return True


__all__ = ["Tensor", "TensorLocation", "release_if_device", "torch_dtype"]

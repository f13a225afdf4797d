from __future__ import annotations

"""
Key/value cache handling for ONNX decoder graphs.

The cache lives inside the session feed: one entry per layer and per
projection, named the way decoder exports name their inputs,

  past_key_values.<layer>.key / past_key_values.<layer>.value

each shaped [1, Kvh, L, Dh] where L starts at 0 and grows with every step.
The graph returns the grown cache as `present.<layer>.key/value`; those
outputs replace the matching past entries. Device-resident entries are
released before they are overwritten or discarded.
"""

from typing import Dict, List, Mapping, MutableMapping, Optional, Sequence

from .tensor import Tensor, release_if_device

PAST_PREFIX = "past_key_values"
PRESENT_PREFIX = "present"

Feed = MutableMapping[str, Tensor]


def cache_slot_names(num_layers: int) -> List[str]:
    names: List[str] = []
    for i in range(num_layers):
        names.append(f"{PAST_PREFIX}.{i}.key")
        names.append(f"{PAST_PREFIX}.{i}.value")
    return names


def release_feed(feed: Mapping[str, Optional[Tensor]]) -> int:
    """Dispose every device-resident tensor in `feed`; returns how many were released."""
    released = 0
    for t in feed.values():
        if release_if_device(t):
            released += 1
    return released


def empty_cache(num_layers: int, kv_dims: Sequence[int], dtype: str) -> Dict[str, Tensor]:
    """Fresh cache entries of shape `kv_dims` (sequence length 0) for each layer."""
    return {name: Tensor.empty(dtype, kv_dims) for name in cache_slot_names(num_layers)}


def update_kv_cache(feed: Feed, outputs: Mapping[str, Optional[Tensor]]) -> None:
    """
    Move `present*` outputs into the matching `past_key_values*` feed slots.

    Outputs without the prefix (logits, hidden states) never enter the feed.
    A missing (None) output clears its slot.
    """
    for name, tensor in outputs.items():
        if not name.startswith(PRESENT_PREFIX):
            continue
        slot = name.replace(PRESENT_PREFIX, PAST_PREFIX, 1)
        release_if_device(feed.get(slot))
        if tensor is None:
            feed.pop(slot, None)
            continue
        feed[slot] = tensor


__all__ = [
    "PAST_PREFIX",
    "PRESENT_PREFIX",
    "cache_slot_names",
    "release_feed",
    "empty_cache",
    "update_kv_cache",
]

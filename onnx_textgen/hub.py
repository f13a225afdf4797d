from __future__ import annotations

"""
Model artifact resolution against the HuggingFace Hub.

Artifacts are addressed the way the Hub serves them:

    https://huggingface.co/<model_id>/resolve/main/<path>

`resolve_artifacts` builds those URLs for the config descriptor, the ONNX
graph and (optionally) its external weight data, and hands each one to a
fetch callable that returns a local path. The default fetch callable,
`HubFetcher`, downloads through `huggingface_hub` so files land in the shared
HF cache and are reused across runs.

Usage::
    fetch = HubFetcher(progress=lambda f: print(f"{f:.0%}"))
    artifacts = resolve_artifacts("microsoft/Phi-3-mini-4k-instruct-onnx", "model.onnx", fetch)
    print(artifacts.model_path)
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

from huggingface_hub import hf_hub_download

from .config import DEFAULT_REGISTRY, FetchFn

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"
EXTERNAL_DATA_SUFFIX = "_data"


@dataclass
class ResolvedArtifacts:
    model_id: str
    config_path: str
    model_path: str
    external_data: List[str] = field(default_factory=list)


def hf_url(model_id: str, filepath: str, registry: str = DEFAULT_REGISTRY) -> str:
    """Canonical download URL for `filepath` in `model_id` on the main branch."""
    return f"{registry.rstrip('/')}/{model_id}/resolve/main/{filepath.lstrip('/')}"


def parse_hf_url(url: str) -> Tuple[str, str, str]:
    """Split a `.../<repo_id>/resolve/<revision>/<filename>` URL into its parts."""
    parsed = urlparse(url)
    path = unquote(parsed.path).lstrip("/")
    repo_id, sep, rest = path.partition("/resolve/")
    if not sep or not repo_id:
        raise ValueError(f"Not a HuggingFace resolve URL: {url}")
    revision, _, filename = rest.partition("/")
    if not revision or not filename:
        raise ValueError(f"Not a HuggingFace resolve URL: {url}")
    return repo_id, filename, revision


def hf_endpoint(url: str) -> str:
    """Scheme and host of a resolve URL, i.e. the registry the file is served from."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def _local_path(handle: str) -> Optional[Path]:
    parsed = urlparse(handle)
    if parsed.scheme == "file":
        return Path(url2pathname(parsed.path))
    if parsed.scheme in ("http", "https"):
        return None
    p = Path(handle)
    return p if p.exists() else None


class HubFetcher:
    """
    Fetch callable that maps Hub URLs to files in the local HF cache.

    Local paths and `file://` URIs are passed through untouched. `progress`,
    if given, receives 0.0 when a download starts and 1.0 once the file is
    available locally.
    """

    def __init__(
        self,
        *,
        cache_dir: Optional[str | Path] = None,
        token: Optional[str] = None,
        local_files_only: bool = False,
        progress: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.cache_dir = cache_dir
        self.token = token
        self.local_files_only = local_files_only
        self.progress = progress

    def __call__(self, url: str) -> str:
        local = _local_path(url)
        if local is not None:
            logger.debug("Using local artifact %s", local)
            return str(local)

        repo_id, filename, revision = parse_hf_url(url)
        self._report(0.0)
        path = hf_hub_download(
            repo_id=repo_id,
            filename=filename,
            revision=revision,
            endpoint=hf_endpoint(url),
            cache_dir=self.cache_dir,
            token=self.token,
            local_files_only=self.local_files_only,
        )
        self._report(1.0)
        logger.debug("Fetched %s -> %s", url, path)
        return str(path)

    def _report(self, fraction: float) -> None:
        if self.progress is not None:
            self.progress(fraction)


def resolve_artifacts(
    model_id: str,
    onnx_file: str,
    fetch: FetchFn,
    *,
    external_data: bool = False,
    registry: str = DEFAULT_REGISTRY,
) -> ResolvedArtifacts:
    """Fetch the config descriptor, the ONNX graph and optional external data."""
    config_url = hf_url(model_id, CONFIG_FILENAME, registry)
    model_url = hf_url(model_id, onnx_file, registry)
    logger.debug("Resolving %s and %s", config_url, model_url)

    config_path = fetch(config_url)
    model_path = fetch(model_url)

    data: List[str] = []
    if external_data:
        data.append(fetch(hf_url(model_id, onnx_file + EXTERNAL_DATA_SUFFIX, registry)))

    return ResolvedArtifacts(
        model_id=model_id,
        config_path=config_path,
        model_path=model_path,
        external_data=data,
    )


__all__ = ["HubFetcher", "ResolvedArtifacts", "hf_endpoint", "hf_url", "parse_hf_url", "resolve_artifacts"]

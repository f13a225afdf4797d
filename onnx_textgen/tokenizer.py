from __future__ import annotations

"""
Tokenizer wrapper used by the pipelines.

`Tokenizer` supports two backends without depending on the Transformers
library:
- Hugging Face Tokenizers (`tokenizer.json`) via the `tokenizers` package
- SentencePiece (`tokenizer.model` / `spiece.model`) via `sentencepiece`

Special tokens are whatever the backend defines: the `tokenizers` backend
applies the post-processor stored in tokenizer.json, SentencePiece adds its
own BOS id when asked to.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
import importlib
import os


# --- Dynamic imports so only the backend in use must be installed ---
def _import_sentencepiece():
    return importlib.import_module("sentencepiece")


def _import_tokenizers():
    return importlib.import_module("tokenizers")


def _import_hf_hub():
    return importlib.import_module("huggingface_hub")


# --- File detection helpers, for HF tokenizers and spm respectively ---
_SPM_FILENAMES = ("tokenizer.model", "spiece.model")


def _is_json_tokenizer_path(path: Path) -> bool:
    return path.is_file() and path.suffix == ".json"


def _is_spm_model_path(path: Path) -> bool:
    return path.is_file() and path.suffix in {".model", ".spm"}


def _search_tokenizer_file(path: Path) -> Tuple[Optional[Path], Optional[str]]:
    """
    Searches for a tokenizer file under `path` if `path` is a directory.
    Returns (file_path, backend) if found; (None, None) otherwise.
    """
    if path.is_file():
        if _is_json_tokenizer_path(path):
            return path, "hf_tokenizers"
        if _is_spm_model_path(path):
            return path, "sentencepiece"
        return None, None

    if path.is_dir():
        # Prefer HF tokenizers JSON, then SentencePiece
        json_path = path / "tokenizer.json"
        if _is_json_tokenizer_path(json_path):
            return json_path, "hf_tokenizers"
        for name in _SPM_FILENAMES:
            spm_path = path / name
            if _is_spm_model_path(spm_path):
                return spm_path, "sentencepiece"
    return None, None


@dataclass
class Tokenizer:
    """
    Unified tokenizer wrapper.

    One of `_tok` (HF Tokenizers) or `_sp` (SentencePieceProcessor) is set
    once a backend has been loaded.
    """

    backend: Optional[str] = None

    _tok: object | None = None  # HF Tokenizers Tokenizer
    _sp: object | None = None  # SentencePieceProcessor

    # ----- Construction helpers -----
    @staticmethod
    def detect_backend(path: str | os.PathLike[str]) -> Optional[str]:
        _, b = _search_tokenizer_file(Path(path))
        return b

    @classmethod
    def from_local_path(cls, path: str | os.PathLike[str]) -> "Tokenizer":
        p = Path(path)
        file_path, backend = _search_tokenizer_file(p)
        if file_path is None or backend is None:
            raise FileNotFoundError(f"No supported tokenizer file found at {p!s}")
        tok = cls()
        tok._load_backend(file_path, backend)
        return tok

    @classmethod
    def from_hf_repo(
        cls,
        repo_id: str,
        filename: Optional[str] = None,
        revision: Optional[str] = None,
        local_files_only: bool = False,
    ) -> "Tokenizer":
        """
        Load tokenizer files from a HuggingFace repository using hf_hub.
        This requires network access unless files are cached.
        """
        hub = _import_hf_hub()
        candidate_filenames = [filename, "tokenizer.json", *_SPM_FILENAMES]
        last_err: Optional[Exception] = None
        for fname in filter(None, candidate_filenames):
            try:
                fpath = hub.hf_hub_download(
                    repo_id=repo_id,
                    filename=fname,  # type: ignore[arg-type]
                    revision=revision,
                    local_files_only=local_files_only,
                )
                return cls.from_local_path(fpath)
            except Exception as e:  # noqa: BLE001 - surface final error below
                last_err = e
                continue
        raise RuntimeError(
            f"Unable to download tokenizer from repo '{repo_id}'. Last error: {last_err}"
        )

    # ----- Core API -----
    def encode(
        self,
        text: str,
        add_special_tokens: bool = True,
        max_length: Optional[int] = None,
    ) -> List[int]:
        ids: List[int]
        if self._tok is not None:
            ids = list(self._tok.encode(text, add_special_tokens=add_special_tokens).ids)  # type: ignore[attr-defined]
        elif self._sp is not None:
            ids = list(self._sp.EncodeAsIds(text))  # type: ignore[attr-defined]
            bos = self._sp.bos_id()  # type: ignore[attr-defined]
            if add_special_tokens and bos >= 0:
                ids = [bos] + ids
        else:
            raise RuntimeError("No tokenizer backend loaded")

        if max_length is not None:
            ids = ids[:max_length]
        return ids

    def decode(self, ids: Sequence[int], skip_special_tokens: bool = True) -> str:
        ids = [int(i) for i in ids]
        if self._tok is not None:
            return self._tok.decode(ids, skip_special_tokens=skip_special_tokens)  # type: ignore[attr-defined]
        if self._sp is not None:
            if skip_special_tokens:
                special = {self._sp.bos_id(), self._sp.eos_id(), self._sp.pad_id()}  # type: ignore[attr-defined]
                ids = [i for i in ids if i not in special]
            return self._sp.DecodeIds(ids)  # type: ignore[attr-defined]
        raise RuntimeError("No tokenizer backend loaded")

    # ----- Internal helpers -----
    def _load_backend(self, file_path: Path, backend: str) -> None:
        self.backend = backend
        if backend == "hf_tokenizers":
            toks = _import_tokenizers()
            self._tok = toks.Tokenizer.from_file(str(file_path))
            self._sp = None
        elif backend == "sentencepiece":
            spm = _import_sentencepiece()
            sp = spm.SentencePieceProcessor()
            loaded = sp.Load(str(file_path))
            if not loaded:  # SentencePiece returns bool
                raise RuntimeError(f"Failed to load SentencePiece model: {file_path!s}")
            self._sp = sp
            self._tok = None
        else:
            raise ValueError(f"Unsupported backend: {backend!r}")


__all__ = ["Tokenizer"]

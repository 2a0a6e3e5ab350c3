"""Symbol embeddings for duplicate search.

A symbol is flattened to text (:func:`symbol_to_text`) and encoded by one
of the models below, picked with ``reviewgraph set-embedding``:

========== ====================================== ====== =========================
Key        HuggingFace model                      Dim    Notes
========== ====================================== ====== =========================
jina-code  jinaai/jina-embeddings-v2-base-code     768   Code-aware, ~550 MB
bge-base   BAAI/bge-base-en-v1.5                   768   General text, ~440 MB
minilm     sentence-transformers/all-MiniLM-L6-v2  384   Small, ~80 MB
hash       (none)                                  256   Token hashing, default
========== ====================================== ====== =========================

Neural models need the ``embeddings`` extra (torch + transformers). Without
it every key resolves to the hash model.
"""

from __future__ import annotations

import logging
import math
import re
import time
from hashlib import blake2b
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .config import BASE_DIR, DEFAULT_EMBEDDING_DIM
from .models import CodeSymbol, Embedding, EmbeddingMetadata

logger = logging.getLogger(__name__)

MODEL_CACHE_DIR: Path = BASE_DIR / "models"

_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_WS_RE = re.compile(r"\s+")

# Leading code characters folded into a symbol's embedding text
CODE_PREVIEW_CHARS = 200

DEFAULT_MODEL = "hash"

EMBEDDING_MODELS: Dict[str, Dict[str, Any]] = {
    "jina-code": {
        "name": "Jina Embeddings v2 Code",
        "hf_id": "jinaai/jina-embeddings-v2-base-code",
        "dim": 768,
        "max_tokens": 8192,
        "pooling": "mean",
        "trust_remote_code": True,
    },
    "bge-base": {
        "name": "BGE Base EN v1.5",
        "hf_id": "BAAI/bge-base-en-v1.5",
        "dim": 768,
        "max_tokens": 512,
        "pooling": "cls",
        "trust_remote_code": False,
    },
    "minilm": {
        "name": "MiniLM L6 v2",
        "hf_id": "sentence-transformers/all-MiniLM-L6-v2",
        "dim": 384,
        "max_tokens": 256,
        "pooling": "mean",
        "trust_remote_code": False,
    },
    "hash": {
        "name": "Hash Embedding",
        "hf_id": None,
        "dim": DEFAULT_EMBEDDING_DIM,
        "max_tokens": None,
        "pooling": None,
        "trust_remote_code": False,
    },
}


# ===================================================================
# Neural embedder
# ===================================================================

class TransformerEmbedder:
    """Encodes text with a HuggingFace encoder, loaded on first use."""

    def __init__(self, model_key: str, cache_dir: Optional[Path] = None, device: str = "cpu") -> None:
        entry = EMBEDDING_MODELS.get(model_key)
        if entry is None or entry["hf_id"] is None:
            raise ValueError(f"'{model_key}' is not a transformer embedding model")
        self.model_key = model_key
        self.entry = entry
        self.dim: int = entry["dim"]
        self.cache_dir = cache_dir or MODEL_CACHE_DIR
        self.device = device
        self._tokenizer: Any = None
        self._model: Any = None

    def _ensure_loaded(self) -> None:
        if self._model is not None:
            return
        from transformers import AutoModel, AutoTokenizer

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Loading embedding model %s", self.entry["hf_id"])
        options = {
            "cache_dir": str(self.cache_dir),
            "trust_remote_code": self.entry["trust_remote_code"],
        }
        try:
            self._tokenizer = AutoTokenizer.from_pretrained(self.entry["hf_id"], **options)
            self._model = AutoModel.from_pretrained(self.entry["hf_id"], **options)
        except Exception as exc:
            raise RuntimeError(f"Could not load embedding model '{self.model_key}': {exc}") from exc
        self._model.eval()
        self._model.to(self.device)

    def _encode(self, texts: List[str]) -> List[List[float]]:
        import torch
        import torch.nn.functional as F

        self._ensure_loaded()
        batch = self._tokenizer(
            texts,
            max_length=self.entry["max_tokens"],
            padding=True,
            truncation=True,
            return_tensors="pt",
        ).to(self.device)
        with torch.no_grad():
            hidden = self._model(**batch).last_hidden_state

        if self.entry["pooling"] == "cls":
            pooled = hidden[:, 0]
        else:
            mask = batch["attention_mask"].unsqueeze(-1).float()
            pooled = (hidden * mask).sum(dim=1) / mask.sum(dim=1).clamp(min=1e-9)
        return F.normalize(pooled, p=2, dim=1).cpu().tolist()

    def embed_text(self, text: str) -> List[float]:
        return self._encode([text])[0]

    def embed_many(self, texts: Iterable[str], batch_size: int = 16) -> List[List[float]]:
        items = list(texts)
        out: List[List[float]] = []
        for start in range(0, len(items), batch_size):
            out.extend(self._encode(items[start:start + batch_size]))
        return out


# ===================================================================
# Hash embedder
# ===================================================================

class HashEmbeddingModel:
    """Signed token hashing into ``dim`` buckets, L2-normalised.

    Deterministic and dependency-free. Identical texts give identical
    vectors, and texts sharing identifiers land close together.
    """

    model_key = "hash"

    def __init__(self, dim: int = DEFAULT_EMBEDDING_DIM) -> None:
        self.dim = dim

    def embed_text(self, text: str) -> List[float]:
        vec = [0.0] * self.dim
        for token in _TOKEN_RE.findall(text.lower()):
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "big") % self.dim
            vec[bucket] += 1.0 if digest[4] & 1 == 0 else -1.0
        return _l2_normalize(vec)

    def embed_many(self, texts: Iterable[str]) -> List[List[float]]:
        return [self.embed_text(text) for text in texts]


Embedder = Union[TransformerEmbedder, HashEmbeddingModel]


def get_embedder(model_key: Optional[str] = None, cache_dir: Optional[Path] = None) -> Embedder:
    """Embedder for *model_key*, else ``[embeddings].model``, else hash.

    Unknown keys and a missing torch/transformers install both resolve
    to the hash model with a warning.
    """
    if model_key is None:
        from .config_manager import load_embedding_config
        model_key = load_embedding_config().get("model") or DEFAULT_MODEL

    if model_key == "hash":
        return HashEmbeddingModel()
    if model_key not in EMBEDDING_MODELS:
        logger.warning("Unknown embedding model '%s', using hash embeddings", model_key)
        return HashEmbeddingModel()

    try:
        import torch  # noqa: F401
        import transformers  # noqa: F401
    except ImportError:
        logger.warning(
            "Embedding model '%s' needs torch and transformers "
            "(pip install reviewgraph-cli[embeddings]), using hash embeddings",
            model_key,
        )
        return HashEmbeddingModel()
    return TransformerEmbedder(model_key, cache_dir=cache_dir)


# ===================================================================
# Symbol embeddings
# ===================================================================

def symbol_to_text(symbol: CodeSymbol) -> str:
    """Flatten a symbol into the text that gets embedded.

    Kind, name, signature, return type, parameter list and the first
    ``CODE_PREVIEW_CHARS`` characters of code with whitespace collapsed.
    """
    parts: List[str] = [symbol.kind, symbol.name]
    if symbol.signature:
        parts.append(symbol.signature)
    if symbol.return_type:
        parts.append(f"returns {symbol.return_type}")
    if symbol.parameters:
        params = ", ".join(f"{p.type} {p.name}".strip() for p in symbol.parameters)
        parts.append(f"parameters: {params}")
    if symbol.code:
        preview = _WS_RE.sub(" ", symbol.code[:CODE_PREVIEW_CHARS]).strip()
        parts.append(f"code: {preview}")
    return " ".join(parts)


class EmbeddingGenerator:
    """Total wrapper around an embedder.

    Failures are logged and turned into ``None`` so a single bad symbol
    never aborts a batch.
    """

    def __init__(self, embedder: Optional[Embedder] = None) -> None:
        self.embedder = embedder or get_embedder()

    @property
    def model_key(self) -> str:
        return getattr(self.embedder, "model_key", "hash")

    def embed_symbol(self, symbol: CodeSymbol) -> Optional[List[float]]:
        try:
            vec = self.embedder.embed_text(symbol_to_text(symbol))
        except Exception as exc:
            logger.warning("Embedding failed for %s (%s): %s", symbol.name, symbol.file, exc)
            return None
        if not vec:
            return None
        return _l2_normalize(list(vec))

    def generate_embedding(self, symbol: CodeSymbol) -> Optional[Embedding]:
        vec = self.embed_symbol(symbol)
        if vec is None:
            return None
        return Embedding(
            symbol=symbol,
            vector=vec,
            metadata=EmbeddingMetadata(
                file=symbol.file,
                symbol_type=symbol.kind,
                timestamp=time.time(),
            ),
        )

    def generate_embeddings(self, symbols: Iterable[CodeSymbol]) -> List[Embedding]:
        out: List[Embedding] = []
        for symbol in symbols:
            emb = self.generate_embedding(symbol)
            if emb is not None:
                out.append(emb)
        return out


# ===================================================================
# Utility
# ===================================================================

def cosine_similarity(vec_a: List[float], vec_b: List[float]) -> float:
    """Cosine similarity between two vectors.

    Divides by the product of norms so non-normalised input still works.
    Zero-length or mismatched vectors return ``0.0``.
    """
    if not vec_a or not vec_b or len(vec_a) != len(vec_b):
        return 0.0
    dot = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))
    if norm_a < 1e-12 or norm_b < 1e-12:
        return 0.0
    return dot / (norm_a * norm_b)


def _l2_normalize(vec: List[float]) -> List[float]:
    """Return *vec* scaled to unit length. A zero vector is returned unchanged."""
    norm = math.sqrt(sum(v * v for v in vec))
    if norm < 1e-12:
        return vec
    return [v / norm for v in vec]

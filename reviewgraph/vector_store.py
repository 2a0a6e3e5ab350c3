"""Symbol embedding store backed by LanceDB.

LanceDB is embedded (no server), so the store lives entirely under the
project directory. Each embedding model gets its own table to avoid
dimension conflicts.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import CodeSymbol, Embedding

logger = logging.getLogger(__name__)

try:
    import lancedb  # type: ignore[import-untyped]
    import pyarrow as pa  # type: ignore[import-untyped]
    LANCE_AVAILABLE = True
except ImportError:
    LANCE_AVAILABLE = False


def symbol_id(symbol: CodeSymbol) -> str:
    """Stable row key for a symbol."""
    return f"{symbol.file}:{symbol.name}:{symbol.kind}:{symbol.start_line}"


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _schema(dim: int) -> "pa.Schema":
    return pa.schema([
        pa.field("id", pa.string()),
        pa.field("vector", pa.list_(pa.float32(), dim)),
        pa.field("file_path", pa.string()),
        pa.field("name", pa.string()),
        pa.field("kind", pa.string()),
        pa.field("symbol", pa.string()),
        pa.field("timestamp", pa.float64()),
    ])


class VectorStore:
    """LanceDB-backed store of ``(symbol, vector)`` pairs.

    Schema per row:

    ========== ============ =====================================
    Column     Type         Description
    ========== ============ =====================================
    id         utf8         ``file:name:kind:start_line``
    vector     float32[dim] Unit-normalised embedding
    file_path  utf8         Source file of the symbol
    name       utf8         Bare symbol name
    kind       utf8         Symbol kind
    symbol     utf8         JSON-encoded :class:`CodeSymbol`
    timestamp  float64      When the embedding was generated
    ========== ============ =====================================
    """

    def __init__(self, project_dir: Path, model_key: str = "") -> None:
        if not LANCE_AVAILABLE:
            raise ImportError(
                "lancedb is not installed. Install with: pip install lancedb pyarrow"
            )

        self.project_dir = project_dir
        self.model_key = model_key
        self._lance_dir = project_dir / "lancedb"
        self._lance_dir.mkdir(exist_ok=True, parents=True)
        self._table_name = f"symbols_{model_key}" if model_key else "symbols"

        self._db: Any = lancedb.connect(str(self._lance_dir))
        self._table: Optional[Any] = None

        try:
            self._table = self._db.open_table(self._table_name)
        except Exception:
            self._table = None

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def store_batch(self, embeddings: Iterable[Embedding]) -> int:
        """Upsert embeddings. Returns the number of rows written."""
        rows: List[Dict[str, Any]] = []
        for emb in embeddings:
            rows.append({
                "id": symbol_id(emb.symbol),
                "vector": [float(v) for v in emb.vector],
                "file_path": emb.symbol.file,
                "name": emb.symbol.name,
                "kind": emb.symbol.kind,
                "symbol": json.dumps(emb.symbol.to_dict()),
                "timestamp": float(emb.metadata.timestamp),
            })
        if not rows:
            return 0

        if self._table is None:
            self._table = self._db.create_table(
                self._table_name,
                data=rows,
                schema=_schema(len(rows[0]["vector"])),
                mode="overwrite",
            )
            return len(rows)

        ids = ", ".join(_quote(row["id"]) for row in rows)
        try:
            self._table.delete(f"id IN ({ids})")
        except Exception as exc:
            logger.debug("Pre-insert delete failed: %s", exc)
        self._table.add(rows)
        return len(rows)

    def clear(self) -> None:
        """Drop all data."""
        try:
            self._db.drop_table(self._table_name)
        except Exception as exc:
            logger.debug("drop_table(%s) failed: %s", self._table_name, exc)
        self._table = None

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def find_similar(
        self,
        vector: List[float],
        k: int = 10,
        min_score: float = 0.7,
    ) -> List[Tuple[CodeSymbol, float]]:
        """Nearest neighbours of *vector* with cosine similarity >= *min_score*.

        Results are ordered best first. Store errors propagate so the
        caller can decide on a fallback.
        """
        if self._table is None or not vector:
            return []

        rows = (
            self._table
            .search(list(vector))
            .metric("cosine")
            .limit(k)
            .to_list()
        )

        out: List[Tuple[CodeSymbol, float]] = []
        for row in rows:
            # With cosine metric _distance is 1 - cos_sim
            score = 1.0 - float(row.get("_distance", 1.0))
            if score < min_score:
                continue
            out.append((CodeSymbol.from_dict(json.loads(row["symbol"])), score))
        return out

    def find_similar_to_symbol(
        self,
        symbol: CodeSymbol,
        k: int = 10,
        min_score: float = 0.7,
        vector: Optional[List[float]] = None,
    ) -> List[Tuple[CodeSymbol, float]]:
        """Neighbours of *symbol*, excluding the symbol's own row.

        Uses *vector* when supplied, otherwise the stored vector for the
        symbol. A symbol with neither gives ``[]``.
        """
        if vector is None:
            vector = self.get_vector(symbol)
        if vector is None:
            return []
        own_id = symbol_id(symbol)
        return [
            (match, score)
            for match, score in self.find_similar(vector, k=k + 1, min_score=min_score)
            if symbol_id(match) != own_id
        ][:k]

    # ------------------------------------------------------------------
    # Point lookups
    # ------------------------------------------------------------------

    def get_vector(self, symbol: CodeSymbol) -> Optional[List[float]]:
        if self._table is None:
            return None
        try:
            import pandas as pd  # type: ignore[import-untyped]
            df: pd.DataFrame = self._table.to_pandas()
            match = df[df["id"] == symbol_id(symbol)]
            if match.empty:
                return None
            return [float(v) for v in match.iloc[0]["vector"]]
        except Exception as exc:
            logger.warning("Vector lookup for %s failed: %s", symbol.name, exc)
            return None

    def count(self) -> int:
        """Number of rows in the store."""
        if self._table is None:
            return 0
        try:
            return self._table.count_rows()
        except Exception:
            return 0


def open_vector_store(project_dir: Path, model_key: str = "") -> Optional[VectorStore]:
    """Return a store for *project_dir*, or ``None`` when LanceDB is unusable."""
    if not LANCE_AVAILABLE:
        logger.info("lancedb not installed, duplicate search uses brute force")
        return None
    try:
        return VectorStore(project_dir, model_key=model_key)
    except Exception as exc:
        logger.warning("LanceDB vector store unavailable: %s", exc)
        return None

"""Batched repository indexing.

Files are fetched and extracted in fixed-size batches on a thread pool.
Every task in a batch is awaited before the next batch starts, and a
failing task is counted instead of aborting the run. Results are merged
into the index on the calling thread in file order, so the index has a
single writer and the outcome does not depend on thread scheduling.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from . import config
from .embeddings import EmbeddingGenerator
from .indexer import CodebaseIndexer
from .models import CodeSymbol, IndexingProgress
from .parser import SKIP_DIRS, ExtractResult
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[IndexingProgress], None]


def chunked(seq: Sequence[str], size: int) -> Iterable[List[str]]:
    for idx in range(0, len(seq), size):
        yield list(seq[idx : idx + size])


def is_code_file(path: str) -> bool:
    if any(pattern in path for pattern in config.SKIP_PATTERNS):
        return False
    return Path(path).suffix.lower() in config.SUPPORTED_EXTENSIONS


# ===================================================================
# Source providers
# ===================================================================

class SourceProvider(ABC):
    """Where the indexer gets file listings and contents from."""

    @abstractmethod
    def list_files(self) -> List[str]:
        ...

    @abstractmethod
    def read_file(self, path: str) -> Optional[str]:
        ...


class LocalSourceProvider(SourceProvider):
    """Reads a checkout on disk. Paths are POSIX-style, relative to *root*."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def list_files(self) -> List[str]:
        out: List[str] = []
        for fp in sorted(self.root.rglob("*")):
            if not fp.is_file():
                continue
            rel = fp.relative_to(self.root)
            if any(part in SKIP_DIRS for part in rel.parts):
                continue
            out.append(rel.as_posix())
        return out

    def read_file(self, path: str) -> Optional[str]:
        try:
            return (self.root / path).read_text(encoding="utf-8", errors="ignore")
        except OSError as exc:
            logger.warning("Could not read %s: %s", path, exc)
            return None


# ===================================================================
# RepositoryIndexer
# ===================================================================

class RepositoryIndexer:
    """Populates a :class:`CodebaseIndexer` (and optionally a vector store)."""

    def __init__(
        self,
        indexer: CodebaseIndexer,
        source: SourceProvider,
        embeddings: Optional[EmbeddingGenerator] = None,
        vector_store: Optional[VectorStore] = None,
        batch_size: int = config.INDEX_BATCH_SIZE,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.indexer = indexer
        self.source = source
        self.embeddings = embeddings
        self.vector_store = vector_store
        self.batch_size = max(1, batch_size)
        self.cancel_event = cancel_event

    def index_repository(self, on_progress: Optional[ProgressCallback] = None) -> IndexingProgress:
        files = [
            path for path in self.source.list_files()
            if is_code_file(path) and self.indexer.extractor.supports(path)
        ]
        progress = IndexingProgress(total_files=len(files))
        logger.info("Indexing %d files in batches of %d", len(files), self.batch_size)
        self._reset_vector_store()

        with ThreadPoolExecutor(max_workers=self.batch_size) as executor:
            for batch in chunked(files, self.batch_size):
                if self.cancel_event is not None and self.cancel_event.is_set():
                    logger.info("Indexing cancelled after %d files", progress.processed_files)
                    break

                futures = [executor.submit(self._process_file, path) for path in batch]
                wait(futures)

                batch_symbols: List[CodeSymbol] = []
                for path, future in zip(batch, futures):
                    try:
                        symbols, calls = future.result()
                    except Exception as exc:
                        progress.errors += 1
                        progress.failed_files.append(path)
                        logger.warning("Failed to index %s: %s", path, exc)
                        continue
                    self.indexer.add_parsed(path, symbols, calls)
                    progress.processed_files += 1
                    progress.indexed_symbols += len(symbols)
                    batch_symbols.extend(symbols)

                progress.generated_embeddings += self._embed_batch(batch_symbols)
                if on_progress is not None:
                    on_progress(progress)

        return progress

    def _process_file(self, path: str) -> ExtractResult:
        content = self.source.read_file(path)
        if content is None:
            raise OSError(f"no content for {path}")
        return self.indexer.extractor.extract(path, content)

    def _reset_vector_store(self) -> None:
        """Drop vectors from earlier runs; the index is rebuilt from scratch."""
        if self.embeddings is None or self.vector_store is None:
            return
        try:
            self.vector_store.clear()
        except Exception as exc:
            logger.warning("Could not clear vector store before indexing: %s", exc)

    def _embed_batch(self, symbols: List[CodeSymbol]) -> int:
        if self.embeddings is None or self.vector_store is None or not symbols:
            return 0
        generated = self.embeddings.generate_embeddings(symbols)
        try:
            self.vector_store.store_batch(generated)
        except Exception as exc:
            logger.warning("Vector store write failed for %d embeddings: %s", len(generated), exc)
        return len(generated)

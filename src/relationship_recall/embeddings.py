"""Interaction embeddings: storage, nearest-neighbor scan and the embed call.

Vectors are stored as float32 blobs in ``interaction_embeddings``; the scan
loads them into a numpy matrix and ranks by cosine similarity. Turning text
into a vector is done by an external model wrapped in ``TimeoutEmbedder`` so
a slow or failing model surfaces as ``DependencyUnavailable`` within a
bounded time.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from . import db
from .errors import DependencyUnavailable, NotFoundError, ValidationError
from .locks import KeyedLocks
from .logger import get_logger
from .utils import parse_iso

log = get_logger(__name__)

EmbedFn = Callable[[str], Sequence[float]]


def _serialize_embedding(vector: np.ndarray) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def _deserialize_embedding(data: bytes, dimension: int) -> np.ndarray:
    return np.frombuffer(data, dtype=np.float32).reshape((dimension,))


def as_vector(values: Any) -> np.ndarray:
    """Coerce to a finite 1-D float32 array, raising ValidationError otherwise."""
    try:
        vector = np.asarray(values, dtype=np.float32)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"embedding is not numeric: {exc}") from exc
    if vector.ndim != 1 or vector.size == 0:
        raise ValidationError("embedding must be a non-empty 1-D vector")
    if not np.all(np.isfinite(vector)):
        raise ValidationError("embedding contains NaN or infinite values")
    return vector


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    denom = float(np.linalg.norm(a) * np.linalg.norm(b))
    if denom == 0.0:
        return 0.0
    return float(np.dot(a, b) / denom)


def similarity_matrix(vectors: np.ndarray) -> np.ndarray:
    """Pairwise cosine similarity of the rows of ``vectors``."""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    unit = vectors / norms
    return unit @ unit.T


@dataclass
class Neighbor:
    interaction_id: str
    score: float
    date: Optional[datetime] = None


class EmbeddingCache:
    """Stores one vector per interaction and ranks them against a query.

    Writes for one interaction are serialized, and each ``put``/``delete``
    drops cached search results that reference that interaction.
    """

    def __init__(
        self,
        db_path: str,
        result_cache=None,
        dimension: Optional[int] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        self.db_path = db_path
        self.result_cache = result_cache
        self.dimension = dimension
        self.locks = locks or KeyedLocks()

    def _check_dimension(self, vector: np.ndarray) -> None:
        expected = self.dimension
        if expected is None:
            expected = db.get_embedding_dimension(self.db_path)
        if expected is not None and vector.shape[0] != expected:
            raise ValidationError(f"embedding has dimension {vector.shape[0]}, expected {expected}")

    def _text_changed(self, interaction_id: str, expected_text: Optional[str]) -> bool:
        if expected_text is None:
            return False
        current = db.get_interaction(self.db_path, interaction_id)
        if current is None:
            raise NotFoundError("interaction", interaction_id)
        return current.text != expected_text

    def put(self, interaction_id: str, vector: Any, expected_text: Optional[str] = None) -> bool:
        """Store or replace the vector for ``interaction_id``.

        With ``expected_text`` the write is dropped (returns False) when the
        interaction's text no longer matches the text that was embedded.
        """
        v = as_vector(vector)
        self._check_dimension(v)
        with self.locks.hold(f"interaction:{interaction_id}"):
            if self._text_changed(interaction_id, expected_text):
                log.debug("Dropped stale embedding for interaction %s", interaction_id)
                return False
            created = db.upsert_embedding(self.db_path, interaction_id, int(v.shape[0]), _serialize_embedding(v))
            if self.result_cache is not None:
                self.result_cache.invalidate_interaction(interaction_id)
        log.debug("%s embedding for interaction %s", "Stored" if created else "Replaced", interaction_id)
        return True

    def get(self, interaction_id: str) -> np.ndarray:
        row = db.get_embedding_row(self.db_path, interaction_id)
        if row is None:
            raise NotFoundError("embedding", interaction_id)
        return _deserialize_embedding(row["vector"], int(row["dimension"]))

    def get_many(self, interaction_ids: List[str]) -> Dict[str, np.ndarray]:
        rows = db.get_embedding_rows(self.db_path, interaction_ids)
        return {r["interaction_id"]: _deserialize_embedding(r["vector"], int(r["dimension"])) for r in rows}

    def delete(self, interaction_id: str, expected_text: Optional[str] = None) -> bool:
        with self.locks.hold(f"interaction:{interaction_id}"):
            if self._text_changed(interaction_id, expected_text):
                return False
            removed = db.delete_embedding(self.db_path, interaction_id)
            if self.result_cache is not None:
                self.result_cache.invalidate_interaction(interaction_id)
        return removed

    def count(self) -> int:
        return db.count_embeddings(self.db_path)

    def nearest_neighbors(self, query_vector: Any, k: int) -> List[Neighbor]:
        """Top ``k`` interactions by cosine similarity.

        Ties go to the more recent interaction, then to the smaller id.
        """
        if k <= 0:
            return []
        q = as_vector(query_vector)
        rows = [r for r in db.list_embedding_rows(self.db_path) if int(r["dimension"]) == q.shape[0]]
        if not rows:
            return []

        matrix = np.vstack([_deserialize_embedding(r["vector"], int(r["dimension"])) for r in rows])
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, (matrix @ q) / norms, 0.0)

        neighbors = [
            Neighbor(interaction_id=r["interaction_id"], score=float(s), date=parse_iso(r["date"]))
            for r, s in zip(rows, scores)
        ]
        neighbors.sort(key=lambda n: (-n.score, -(n.date.timestamp() if n.date else 0.0), n.interaction_id))
        return neighbors[:k]


class TimeoutEmbedder:
    """Runs an embed function on a worker pool with a bounded wait."""

    def __init__(self, embed_fn: EmbedFn, timeout_seconds: float = 5.0, max_workers: int = 4):
        self.embed_fn = embed_fn
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="embed")

    def embed(self, text: str) -> np.ndarray:
        future = self._executor.submit(self.embed_fn, text)
        try:
            raw = future.result(timeout=self.timeout_seconds)
        except FuturesTimeout as exc:
            future.cancel()
            log.warning("Embedding timed out after %.1fs", self.timeout_seconds)
            raise DependencyUnavailable(f"embedding timed out after {self.timeout_seconds}s") from exc
        except DependencyUnavailable:
            raise
        except Exception as exc:
            log.warning("Embedding failed: %s", exc)
            raise DependencyUnavailable(f"embedding failed: {exc}") from exc
        try:
            return as_vector(raw)
        except ValidationError as exc:
            raise DependencyUnavailable(f"embedding service returned an invalid vector: {exc}") from exc

    def close(self) -> None:
        self._executor.shutdown(wait=False)


class SentenceTransformerEmbedder:
    """Embed function backed by sentence-transformers, loaded on first use."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._lock = threading.Lock()

    def _get_model(self):  # type: ignore[no-untyped-def]
        with self._lock:
            if self._model is None:
                try:
                    from sentence_transformers import SentenceTransformer  # type: ignore[import-untyped]
                except ImportError as exc:
                    raise DependencyUnavailable(
                        "sentence-transformers is not installed; install the 'embeddings' extra"
                    ) from exc
                log.info("Loading sentence transformer model: %s", self.model_name)
                self._model = SentenceTransformer(self.model_name)
                log.info("Model loaded. Dimension: %s", self._model.get_sentence_embedding_dimension())
            return self._model

    def __call__(self, text: str) -> np.ndarray:
        model = self._get_model()
        return np.asarray(
            model.encode(text, convert_to_numpy=True, show_progress_bar=False, normalize_embeddings=True),
            dtype=np.float32,
        )

"""Embedding vectors: storage encoding, similarity math and a local embedder.

Vectors cross the storage boundary as bracketed text, e.g. ``[0.1,0.2,0.3]``.
Similarity is computed with numpy; embeddings come from sentence-transformers
when the ``embeddings`` extra is installed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

import numpy as np

from .constants import DEFAULT_EMBEDDING_MODEL
from .errors import UpstreamError

logger = logging.getLogger(__name__)


def encode_vector(vector: Sequence[float] | None) -> str | None:
    """Encode a vector as ``[a,b,c]``.

    Empty or missing vectors encode to None (absent), never ``[]``.
    """
    if vector is None or len(vector) == 0:
        return None
    # repr() gives the shortest string that round-trips exactly
    return "[" + ",".join(repr(float(x)) for x in vector) + "]"


def decode_vector(text: str | bytes | None) -> list[float] | None:
    """Decode a bracketed vector, tolerating whitespace.

    Returns None for absent or empty input.

    Raises:
        ValueError: If an element is not a float literal
    """
    if text is None:
        return None
    if isinstance(text, bytes):
        text = text.decode("utf-8")

    body = text.strip()
    if body.startswith("["):
        body = body[1:]
    if body.endswith("]"):
        body = body[:-1]
    body = body.strip()
    if not body:
        return None

    values = []
    for i, part in enumerate(body.split(",")):
        try:
            values.append(float(part.strip()))
        except ValueError as e:
            raise ValueError(f"invalid vector element at index {i}: {part!r}") from e
    return values


def l2_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Euclidean distance between two vectors of equal dimension."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"dimension mismatch: {va.shape[0]} vs {vb.shape[0]}")
    return float(np.linalg.norm(va - vb))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector is all zeros."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def rank_by_distance(
    query: Sequence[float],
    candidates: list[tuple[object, Sequence[float]]],
    limit: int,
) -> list[object]:
    """Order candidate items by L2 distance to ``query``, closest first.

    Candidates whose dimension differs from the query are skipped.
    """
    if not candidates or limit <= 0:
        return []

    q = np.asarray(query, dtype=np.float64)
    scored = []
    for order, (item, vec) in enumerate(candidates):
        v = np.asarray(vec, dtype=np.float64)
        if v.shape != q.shape:
            logger.debug(f"Skipping vector with dimension {v.shape} (query {q.shape})")
            continue
        scored.append((float(np.linalg.norm(q - v)), order, item))

    scored.sort(key=lambda s: (s[0], s[1]))
    return [item for _, _, item in scored[:limit]]


class SentenceTransformerEmbedder:
    """Embedder backed by a local sentence-transformers model.

    The model is loaded on first use to avoid the cold start cost when
    embeddings are never requested.
    """

    def __init__(self, model_name: str = DEFAULT_EMBEDDING_MODEL):
        self._model_name = model_name
        self._model = None

    @property
    def model_name(self) -> str:
        return self._model_name

    def _load(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer

                self._model = SentenceTransformer(self._model_name)
            except (ImportError, OSError, RuntimeError) as e:
                raise UpstreamError(
                    f"embedding model {self._model_name} unavailable: {e}"
                ) from e
            logger.info(f"Loaded embedding model {self._model_name}")
        return self._model

    def _encode(self, text: str) -> list[float]:
        model = self._load()
        return model.encode(text, convert_to_numpy=True).astype(float).tolist()

    async def embed(self, text: str) -> list[float]:
        """Embed text off the event loop."""
        try:
            return await asyncio.to_thread(self._encode, text)
        except UpstreamError:
            raise
        except (RuntimeError, ValueError) as e:
            raise UpstreamError(f"embedding failed: {e}") from e

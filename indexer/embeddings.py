# crawlsearch Embeddings Module
# Deterministic hash-based feature projection used as the similarity-search vector

import hashlib
import logging
from typing import List

import numpy as np

logger = logging.getLogger(__name__)

_UINT32_MAX = 0xFFFFFFFF


def tokenize(text: str) -> List[str]:
    """Lowercase whitespace tokens, empties dropped."""
    return [token for token in text.lower().split() if token]


def embed_text(text: str, dimensions: int) -> np.ndarray:
    """Project ``text`` onto a unit vector of ``dimensions`` floats.

    Each token is hashed with SHA-256: bytes 0-3 pick the index, byte 4 the
    sign, bytes 8-11 a magnitude in [1, 2]. The accumulated vector is
    L2-normalized. Empty text yields the zero vector.
    """
    if dimensions < 1:
        raise ValueError("dimensions must be positive")

    vector = np.zeros(dimensions, dtype=np.float64)
    tokens = tokenize(text or "")
    if not tokens:
        return vector

    for token in tokens:
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        index = int.from_bytes(digest[0:4], "big") % dimensions
        sign = 1.0 if digest[4] % 2 == 0 else -1.0
        magnitude = 1.0 + int.from_bytes(digest[8:12], "big") / _UINT32_MAX
        vector[index] += sign * magnitude

    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector / norm


def format_vector_literal(vector: np.ndarray) -> str:
    """Render a vector as a pgvector literal, e.g. ``[0.100000,-0.200000]``."""
    return "[" + ",".join(f"{float(value):.6f}" for value in vector) + "]"


class HashEmbedder:
    """Generates embeddings for chunks and queries with a fixed dimensionality."""

    def __init__(self, dimensions: int = 384):
        if dimensions < 1:
            raise ValueError("dimensions must be positive")
        self.dimensions = dimensions
        logger.debug(f"Hash embedder ready with {dimensions} dimensions")

    def generate_embedding(self, text: str) -> np.ndarray:
        """Generate embedding for a single text"""
        return embed_text(text, self.dimensions)

    def generate_embeddings_batch(self, texts: List[str]) -> List[np.ndarray]:
        """Generate embeddings for multiple texts"""
        return [embed_text(text, self.dimensions) for text in texts]

    def to_literal(self, text: str) -> str:
        return format_vector_literal(self.generate_embedding(text))

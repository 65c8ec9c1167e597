"""Deterministic feature-hashing embeddings.

A stand-in for a learned model that needs no network and no weights: each
token shingle is hashed to one coordinate with a ±1 sign and the result is
L2-normalised. Texts that share vocabulary land close together under cosine
distance, and the same input always produces the same vector.
"""

from __future__ import annotations

import hashlib
import math
import re

from quarry.errors import ValidationError

_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)
_WS_RE = re.compile(r"\S+")

DEFAULT_SEED = "quarry-hash-v1"


class HashEmbeddingGenerator:
    """Seeded unigram + bigram feature hashing.

    Args:
        seed: Mixed into every hash; two generators with different seeds
            produce unrelated vector spaces.
        bigram_weight: Contribution of adjacent-token shingles relative to
            single tokens.
    """

    def __init__(self, seed: str = DEFAULT_SEED, bigram_weight: float = 0.5) -> None:
        self._key = hashlib.blake2b(seed.encode("utf-8"), digest_size=16).digest()
        self._bigram_weight = bigram_weight

    def generate(self, text: str, dimensions: int) -> list[float]:
        """Return an L2-normalised vector of length *dimensions*.

        Blank text maps to the zero vector.

        Raises:
            ValidationError: If *dimensions* is not positive.
        """
        if dimensions <= 0:
            raise ValidationError(f"dimensions must be > 0, got {dimensions}")

        vector = [0.0] * dimensions
        tokens = _tokenize(text or "")
        if not tokens:
            return vector

        for token in tokens:
            self._accumulate(vector, token, 1.0)
        for left, right in zip(tokens, tokens[1:]):
            self._accumulate(vector, f"{left} {right}", self._bigram_weight)

        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0.0:
            return vector
        return [v / norm for v in vector]

    def _accumulate(self, vector: list[float], shingle: str, weight: float) -> None:
        digest = hashlib.blake2b(
            shingle.encode("utf-8"), digest_size=8, key=self._key
        ).digest()
        value = int.from_bytes(digest, "little")
        index = value % len(vector)
        sign = -1.0 if (value >> 63) & 1 else 1.0
        vector[index] += sign * weight


def _tokenize(text: str) -> list[str]:
    """Lower-case alphanumeric runs; whitespace tokens when there are none."""
    lowered = text.lower()
    tokens = _WORD_RE.findall(lowered)
    if tokens:
        return tokens
    return _WS_RE.findall(lowered)

"""Embedding generators and the factory that picks one from config."""

from __future__ import annotations

from quarry.config import QuarryConfig
from quarry.embeddings.base import EmbeddingGenerator
from quarry.embeddings.hashing import HashEmbeddingGenerator
from quarry.embeddings.litellm_adapter import LiteLLMEmbeddingGenerator
from quarry.errors import ConfigError

__all__ = [
    "EmbeddingGenerator",
    "HashEmbeddingGenerator",
    "LiteLLMEmbeddingGenerator",
    "build_embedding_generator",
]


def build_embedding_generator(config: QuarryConfig) -> EmbeddingGenerator:
    """Return the generator selected by ``ingestion.embedding_provider``."""
    provider = config.ingestion.embedding_provider
    if provider == "hash":
        return HashEmbeddingGenerator()
    if provider == "litellm":
        return LiteLLMEmbeddingGenerator(config.ingestion.embedding_model)
    raise ConfigError(f"Unknown embedding provider '{provider}'")

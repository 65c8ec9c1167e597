"""Learned-model embeddings through LiteLLM."""

from __future__ import annotations

import logging
import os

import litellm

from quarry.errors import EmbeddingError, ValidationError

logger = logging.getLogger(__name__)

PROVIDER_ENV_KEYS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
}

# Model families that accept a `dimensions` argument (shortened embeddings).
_SHORTENABLE_MODEL_MARKERS = ("text-embedding-3",)


class LiteLLMEmbeddingGenerator:
    """Call ``litellm.embedding()`` for each text.

    The provider must return exactly ``dimensions`` values; providers that
    support shortened embeddings are asked for that width explicitly.

    Args:
        model: LiteLLM model string, e.g. ``openai/text-embedding-3-small``.
    """

    def __init__(self, model: str) -> None:
        if not model or not model.strip():
            raise ValidationError("embedding model must not be empty")
        self.model = model

    @property
    def provider(self) -> str:
        return self.model.split("/")[0].lower() if "/" in self.model else ""

    @property
    def supports_dimensions(self) -> bool:
        model = self.model.lower()
        return any(marker in model for marker in _SHORTENABLE_MODEL_MARKERS)

    def generate(self, text: str, dimensions: int) -> list[float]:
        if dimensions <= 0:
            raise ValidationError(f"dimensions must be > 0, got {dimensions}")
        if not text or not text.strip():
            return [0.0] * dimensions
        self._check_api_key()

        try:
            kwargs: dict[str, int] = {}
            if self.supports_dimensions:
                kwargs["dimensions"] = dimensions
            response = litellm.embedding(model=self.model, input=[text], **kwargs)
            vector = [float(x) for x in response.data[0]["embedding"]]
        except Exception as exc:
            raise EmbeddingError(
                f"Embedding request to '{self.model}' failed: {exc}"
            ) from exc

        if len(vector) != dimensions:
            raise EmbeddingError(
                f"Model '{self.model}' returned {len(vector)} dimensions, "
                f"expected {dimensions}."
            )
        return vector

    def _check_api_key(self) -> None:
        """Raise EmbeddingError if no API key is available for the model's provider."""
        required_env = PROVIDER_ENV_KEYS.get(self.provider)
        if required_env and not os.environ.get(required_env):
            raise EmbeddingError(
                f"No API key found for provider '{self.provider}'. "
                f"Set the {required_env} environment variable."
            )

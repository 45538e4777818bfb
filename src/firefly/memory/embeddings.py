"""Embedding capability used by similarity retrieval."""

from __future__ import annotations

from typing import Protocol

from openai import AsyncOpenAI

from .errors import CapabilityError

EMBED_MODEL = "text-embedding-3-small"
MAX_EMBED_CHARS = 8000


class Embedder(Protocol):
    """Turns text into a vector."""

    async def embed(self, text: str) -> list[float]:
        ...


class OpenAIEmbedder:
    """Embedder backed by the OpenAI embeddings endpoint."""

    def __init__(self, client: AsyncOpenAI, model: str = EMBED_MODEL) -> None:
        """Initialize the embedder.

        Args:
            client: The AsyncOpenAI client.
            model: Embedding model name.
        """
        self.client = client
        self.model = model

    async def embed(self, text: str) -> list[float]:
        """Embed `text`, truncated to MAX_EMBED_CHARS.

        Raises:
            CapabilityError: If the API call fails or returns no vector.
        """
        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=text[:MAX_EMBED_CHARS],
            )
        except Exception as e:
            raise CapabilityError(f"Embedding request failed: {e}") from e

        if not response.data:
            raise CapabilityError("Embedding response contained no vectors")
        return list(response.data[0].embedding)

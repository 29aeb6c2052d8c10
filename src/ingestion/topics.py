"""Per-chunk topic tagging with a small OpenAI model."""

from __future__ import annotations

import asyncio
import logging

from openai import AsyncOpenAI, OpenAIError

from src.config import settings
from src.errors import UpstreamServiceError
from src.ingestion.models import TranscriptChunk
from src.rate_limit import AsyncRateLimiter

logger = logging.getLogger(__name__)

MAX_TOPICS = 5

TOPIC_PROMPT = (
    "Extraia os principais tópicos desta conversa de vendas. Foque em:\n"
    "- Objeções mencionadas\n"
    "- Produtos/serviços discutidos\n"
    "- Benefícios apresentados\n"
    "- Preocupações do cliente\n"
    "- Próximos passos\n\n"
    "Texto: {text}\n\n"
    "Retorne apenas uma lista de tópicos separados por vírgula, máximo 5 tópicos."
)


def parse_topic_list(raw: str) -> list[str]:
    """Split a comma-separated model answer into at most five topics."""
    topics = [t.strip().strip(".").strip() for t in raw.split(",")]
    return [t for t in topics if t][:MAX_TOPICS]


class TopicExtractor:
    """Tags chunks with topics, one rate-limited LLM call per chunk."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = settings.topic_model,
        limiter: AsyncRateLimiter | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.limiter = limiter or AsyncRateLimiter(
            rate=settings.topic_requests_per_second,
            burst=1,
            max_concurrency=settings.llm_max_concurrency,
        )

    async def extract_topics(self, text: str) -> list[str]:
        """Return up to five topics for *text*.

        Raises:
            UpstreamServiceError: If the completion request fails.
        """
        async with self.limiter.limit():
            try:
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": TOPIC_PROMPT.format(text=text)}],
                    temperature=0.1,
                    max_tokens=200,
                )
            except OpenAIError as exc:
                msg = f"topic extraction failed: {exc}"
                raise UpstreamServiceError(msg, service="openai", stage="topics") from exc
        return parse_topic_list(response.choices[0].message.content or "")

    async def tag_chunks(self, chunks: list[TranscriptChunk]) -> dict[str, list[str]]:
        """Extract topics for every chunk.

        Returns:
            Mapping of chunk id to topics; chunks are not modified.
        """
        results = await asyncio.gather(*(self.extract_topics(c.content) for c in chunks))
        logger.debug("Tagged %d chunks with topics", len(chunks))
        return {chunk.id: topics for chunk, topics in zip(chunks, results, strict=True)}

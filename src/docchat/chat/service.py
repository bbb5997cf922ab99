"""Public entry point: answer a question grounded in the document corpus."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docchat.chat.formatter import ConversationFormatter, ConversationTurn
from docchat.config import AppConfig, GeneratorConfig
from docchat.embedding.encoder import EmbeddingConfig, SentenceTransformerEmbedder
from docchat.generation.client import AzureChatGenerator, Generator
from docchat.index.pipeline import RetrievalPipeline
from docchat.index.search import Searcher

LOGGER = logging.getLogger(__name__)

FALLBACK_ANSWER = (
    "Sorry, I encountered an error while processing your question. Please try again."
)

TurnLike = Union[ConversationTurn, Mapping[str, Any]]


class AnswerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str
    conversation_history: List[ConversationTurn] = Field(
        default_factory=list, alias="conversationHistory"
    )

    @field_validator("question")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("question must not be empty")
        return value


class AnswerResponse(BaseModel):
    answer: str


class AnswerService:
    """Answers questions, initializing the index on first use.

    Failures past input validation never escape: they are logged, kept on
    ``last_error`` and replaced by ``FALLBACK_ANSWER``.
    """

    def __init__(
        self,
        pipeline: RetrievalPipeline,
        generator: Generator,
        *,
        formatter: ConversationFormatter | None = None,
        top_k: int | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.generator = generator
        self.formatter = formatter or ConversationFormatter(
            history_aware=pipeline.config.history_aware_retrieval,
            history_window=pipeline.config.history_window,
        )
        if top_k is None:
            top_k = pipeline.config.top_k
        if top_k < 1:
            raise ValueError("top_k must be at least 1")
        self.top_k = top_k
        self.last_error: Optional[BaseException] = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        generator: Generator | None = None,
        generator_config: GeneratorConfig | None = None,
        base_dir: Path | None = None,
    ) -> "AnswerService":
        embedder = SentenceTransformerEmbedder(EmbeddingConfig(model_name=config.model_name))
        pipeline = RetrievalPipeline(config, embedder, base_dir=base_dir)
        return cls(pipeline, generator or AzureChatGenerator(generator_config))

    async def answer(self, question: str, history: Sequence[TurnLike] = ()) -> str:
        if not question or not question.strip():
            raise ValueError("question must not be empty")
        turns = [
            turn if isinstance(turn, ConversationTurn) else ConversationTurn.model_validate(turn)
            for turn in history
        ]
        try:
            store = await self.pipeline.ensure_ready()
            query = self.formatter.format_query(question, turns)
            hits = await Searcher(self.pipeline.embedder, store).search(query, top_k=self.top_k)
            LOGGER.debug("Retrieved %d chunks for %r", len(hits), query)
            context = self.formatter.format_context(hits)
            prompt = self.formatter.format_prompt(question, turns)
            return await asyncio.to_thread(self.generator.complete, context, prompt)
        except Exception as exc:
            self.last_error = exc
            LOGGER.exception("Error getting answer: %s", exc)
            return FALLBACK_ANSWER

    async def handle(self, request: AnswerRequest) -> AnswerResponse:
        answer = await self.answer(request.question, request.conversation_history)
        return AnswerResponse(answer=answer)

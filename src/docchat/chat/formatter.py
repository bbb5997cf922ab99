"""Turn a question plus prior turns into a retrieval query and a generation prompt."""

from __future__ import annotations

from typing import List, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from docchat.generation.prompts import CONVERSATION_PROMPT
from docchat.models import ScoredChunk

ROLE_LABELS = {"user": "User", "assistant": "Assistant"}


class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    role: Literal["user", "assistant"]
    content: str
    timestamp_ms: Optional[int] = Field(default=None, alias="timestamp")


class ConversationFormatter:
    """Builds the two texts a request needs.

    The retrieval query is the latest question alone unless ``history_aware``
    is set, in which case the last ``history_window`` user turns are folded in.
    The generation prompt always carries the full transcript.
    """

    def __init__(self, *, history_aware: bool = False, history_window: int = 2) -> None:
        if history_window < 0:
            raise ValueError("history_window must not be negative")
        self.history_aware = history_aware
        self.history_window = history_window

    @staticmethod
    def render_transcript(history: Sequence[ConversationTurn]) -> str:
        return "\n".join(f"{ROLE_LABELS[turn.role]}: {turn.content}" for turn in history)

    def format_query(self, question: str, history: Sequence[ConversationTurn]) -> str:
        if not self.history_aware or not history or self.history_window == 0:
            return question
        previous = [turn.content for turn in history if turn.role == "user"]
        return "\n".join([*previous[-self.history_window :], question])

    def format_prompt(self, question: str, history: Sequence[ConversationTurn]) -> str:
        if not history:
            return question
        return CONVERSATION_PROMPT.format(
            transcript=self.render_transcript(history), question=question
        )

    @staticmethod
    def format_context(hits: Sequence[ScoredChunk]) -> str:
        blocks: List[str] = []
        for hit in hits:
            chunk = hit.chunk
            blocks.append(f"Category: {chunk.category}\nFilename: {chunk.filename}\n{chunk.text}")
        return "\n\n".join(blocks)

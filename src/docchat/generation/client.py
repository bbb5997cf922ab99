"""Completion providers for the answer step."""

from __future__ import annotations

import logging
from typing import Protocol

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import AzureChatOpenAI

from docchat.config import GeneratorConfig
from docchat.errors import GenerationServiceError
from docchat.generation.prompts import ANSWER_PROMPT

LOGGER = logging.getLogger(__name__)


class Generator(Protocol):
    """Produces the final answer from retrieved context and the user's prompt.

    Implementations raise ``GenerationServiceError`` when the provider fails.
    """

    def complete(self, prompt_context: str, question: str) -> str: ...


class AzureChatGenerator:
    """Azure OpenAI chat model driven by the grounded-answer prompt."""

    def __init__(self, config: GeneratorConfig | None = None, *, llm=None) -> None:
        self.config = config or GeneratorConfig.from_env()
        if llm is None:
            missing = [
                name
                for name in ("endpoint", "api_key", "api_version", "deployment")
                if not getattr(self.config, name)
            ]
            if missing:
                raise GenerationServiceError(
                    f"Missing Azure OpenAI settings: {', '.join(missing)}"
                )
            llm = AzureChatOpenAI(
                model=self.config.model,
                temperature=self.config.temperature,
                max_retries=self.config.max_retries,
                api_key=self.config.api_key,
                azure_endpoint=self.config.endpoint,
                azure_deployment=self.config.deployment,
                api_version=self.config.api_version,
            )
        self._chain = ChatPromptTemplate.from_template(ANSWER_PROMPT) | llm | StrOutputParser()
        LOGGER.info("Generator ready (deployment=%s)", self.config.deployment or "custom")

    def complete(self, prompt_context: str, question: str) -> str:
        try:
            return self._chain.invoke({"context": prompt_context, "input": question})
        except Exception as exc:
            raise GenerationServiceError(f"Completion failed: {exc}") from exc

"""
Summarizer — OpenAI-compatible chat model via langchain-openai.

Client-side retries are disabled (max_retries=0); the resilience envelope
owns retry, breaker and rate limiting. Provider errors are mapped onto the
pipeline taxonomy here so the envelope can classify them:

  429 / 5xx / connection / timeout → SummarizationUnavailableError (transient)
  other 4xx                        → SummarizationRejectedError   (permanent)
  empty completion                 → EmptySummaryError            (transient)
"""

from __future__ import annotations

import logging

import openai
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from docpipe.core.exceptions import (
    EmptySummaryError,
    SummarizationRejectedError,
    SummarizationUnavailableError,
    SummarizerNotConfiguredError,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You summarize documents for a document management system."

SUMMARY_PROMPT_TEMPLATE = (
    "Please provide a concise summary of the following document in 3-5 sentences. "
    "Focus on the main topics, key information, and overall purpose of the document.\n\n"
    "Document content:\n{text}"
)


def build_messages(text: str) -> list[BaseMessage]:
    return [
        SystemMessage(content=SYSTEM_PROMPT),
        HumanMessage(content=SUMMARY_PROMPT_TEMPLATE.format(text=text)),
    ]


class Summarizer:

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "",
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url or None
        self._temperature = temperature
        self._max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings) -> "Summarizer":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.summary_model,
            base_url=settings.openai_base_url,
            temperature=settings.summary_temperature,
            max_tokens=settings.summary_max_output_tokens,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key and self._api_key.strip())

    def _build_llm(self):
        # Built per call: the underlying async HTTP client is bound to the
        # event loop that first uses it, and each task runs on a fresh loop.
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(
            model=self._model,
            api_key=self._api_key,
            base_url=self._base_url,
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            max_retries=0,
        )

    async def summarize(self, text: str) -> str:
        if not self.is_configured:
            raise SummarizerNotConfiguredError("Summarization API key is not configured")

        try:
            result = await self._build_llm().ainvoke(build_messages(text))
        except openai.APIStatusError as exc:
            if exc.status_code == 429 or exc.status_code >= 500:
                raise SummarizationUnavailableError(
                    f"Summarization API returned {exc.status_code}: {exc.message}"
                ) from exc
            raise SummarizationRejectedError(
                f"Summarization API rejected request ({exc.status_code}): {exc.message}"
            ) from exc
        except openai.APIConnectionError as exc:   # includes APITimeoutError
            raise SummarizationUnavailableError(f"Summarization API unreachable: {exc}") from exc

        content = result.content if isinstance(result.content, str) else ""
        summary = content.strip()
        if not summary:
            raise EmptySummaryError("Summarization API returned an empty summary")

        logger.debug("Summary generated | model=%s chars=%d", self._model, len(summary))
        return summary

"""Answer generation: prompt building and generator collaborators."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, Sequence

from langchain_core.prompts import ChatPromptTemplate

from mini_rag.obs.tracing import estimate_token_count
from mini_rag.types import Generation, RankedChunk, TokenUsage

SYSTEM_PROMPT = """
You are a helpful AI assistant that answers questions based on the provided context.
Always answer based on the context provided. When you reference information from the context, cite it using [1], [2], etc. corresponding to the chunk numbers.
Use the context to answer the question - the context contains the information needed. Be concise, accurate, and directly answer the question.
""".strip()

_USER_TEMPLATE = """Based on the following context, answer the question. Use citations [1], [2], etc. when referencing specific chunks.

Context:
{context}

Question: {query}

Answer:"""

_CONTEXT_LINE = re.compile(r"^\[(?P<num>\d+)\] (?P<body>.+)$", flags=re.MULTILINE)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?。！？])\s+")


def format_context(chunks: Sequence[RankedChunk]) -> str:
    """Number chunks `[1] text`, `[2] text`, ... so markers match rank positions."""
    return "\n\n".join(f"[{idx}] {chunk.text}" for idx, chunk in enumerate(chunks, start=1))


def build_prompts(query: str, chunks: Sequence[RankedChunk]) -> tuple[str, str]:
    """Return `(system_prompt, user_prompt)` for one grounded answer."""
    return SYSTEM_PROMPT, _USER_TEMPLATE.format(context=format_context(chunks), query=query)


class AnswerGenerator(ABC):
    """Generates an answer from a system and a user prompt."""

    @abstractmethod
    def generate(self, system_prompt: str, user_prompt: str) -> Generation:
        """Return the answer text and token usage."""


class ChatModelAnswerGenerator(AnswerGenerator):
    """Answer generator backed by any LangChain chat model."""

    def __init__(self, llm: Any, *, model_name: str | None = None) -> None:
        self.llm = llm
        self.model_name = model_name or str(
            getattr(llm, "model_name", None) or getattr(llm, "model", "unknown")
        )
        self._prompt = ChatPromptTemplate.from_messages(
            [("system", "{system_prompt}"), ("human", "{user_prompt}")]
        )

    def describe(self) -> dict[str, Any]:
        return {"model": self.model_name}

    def generate(self, system_prompt: str, user_prompt: str) -> Generation:
        messages = self._prompt.format_messages(
            system_prompt=system_prompt, user_prompt=user_prompt
        )
        response = self.llm.invoke(messages)
        return Generation(text=_message_text(response), usage=_message_usage(response))


class ExtractiveAnswerGenerator(AnswerGenerator):
    """Deterministic generator that answers from the numbered context alone.

    Useful for local/offline environments where `OPENAI_API_KEY` is not
    configured. The answer quotes the lead sentence of the first
    `max_sources` context chunks, each followed by its citation marker.
    """

    def __init__(self, max_sources: int = 3) -> None:
        self.max_sources = max_sources

    def describe(self) -> dict[str, Any]:
        return {"model": "extractive"}

    def generate(self, system_prompt: str, user_prompt: str) -> Generation:
        lines: list[str] = []
        for match in _CONTEXT_LINE.finditer(user_prompt):
            if len(lines) >= self.max_sources:
                break
            body = match.group("body").strip()
            lead = _SENTENCE_SPLIT.split(body, maxsplit=1)[0].strip()
            if lead:
                lines.append(f"{lead} [{match.group('num')}]")

        answer = " ".join(lines) if lines else "No verifiable evidence was found in the indexed documents."
        prompt_tokens = estimate_token_count(system_prompt) + estimate_token_count(user_prompt)
        completion_tokens = estimate_token_count(answer)
        return Generation(
            text=answer,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )


def create_openai_generator(
    model: str = "gpt-4o-mini",
    *,
    temperature: float = 0.3,
    timeout: float | None = None,
) -> ChatModelAnswerGenerator:
    from langchain_openai import ChatOpenAI

    llm = ChatOpenAI(model=model, temperature=temperature, timeout=timeout)
    return ChatModelAnswerGenerator(llm, model_name=model)


def _message_text(message: Any) -> str:
    content = getattr(message, "content", message)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content)


def _message_usage(message: Any) -> TokenUsage:
    usage = getattr(message, "usage_metadata", None)
    if usage:
        prompt = int(usage.get("input_tokens", 0))
        completion = int(usage.get("output_tokens", 0))
        return TokenUsage(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=int(usage.get("total_tokens", prompt + completion)),
        )

    metadata = getattr(message, "response_metadata", None) or {}
    token_usage = metadata.get("token_usage") or {}
    prompt = int(token_usage.get("prompt_tokens", 0))
    completion = int(token_usage.get("completion_tokens", 0))
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=int(token_usage.get("total_tokens", prompt + completion)),
    )

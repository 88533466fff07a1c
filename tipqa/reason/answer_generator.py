from __future__ import annotations

import asyncio
import random
import time
from pathlib import Path
from typing import List, Optional, Sequence

from openai import APIConnectionError, APIError, APITimeoutError, OpenAI, RateLimitError
from pydantic import BaseModel, Field, ValidationError, field_validator

from tipqa.reason.interfaces import AnswerMalformed, AnswerOk, GenerationResult
from tipqa.schemas.knowledge import EmbeddedChunk
from tipqa.utils.logging import get_logger

logger = get_logger(__name__, category="chat")

DEFAULT_COMPLETION_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_TOKENS = 2000
MAX_LLM_ATTEMPTS = 4

# Reserved answer value meaning "no answer"; always counted as a failed attempt
FAILURE_SENTINEL = "__ANSWER_UNAVAILABLE__"


class AnswerPayload(BaseModel):
    """Schema the model must answer in."""

    answer: str
    references: List[str] = Field(default_factory=list)

    @field_validator("answer")
    @classmethod
    def _answer_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("answer must not be empty")
        return value


def parse_answer(content: Optional[str]) -> GenerationResult:
    """Strictly parse a completion into AnswerOk; anything off-schema is AnswerMalformed."""
    raw = content or ""
    if not raw.strip():
        return AnswerMalformed(raw_text=raw, reason="empty completion")

    try:
        payload = AnswerPayload.model_validate_json(raw.strip())
    except ValidationError as exc:
        return AnswerMalformed(raw_text=raw, reason=str(exc))

    if payload.answer == FAILURE_SENTINEL:
        return AnswerMalformed(raw_text=raw, reason="failure sentinel")
    return AnswerOk(answer=payload.answer, cited_chunk_ids=list(payload.references))


def format_chunks(chunks: Sequence[EmbeddedChunk]) -> str:
    if not chunks:
        return "(no matching documentation)"
    return "\n\n---\n\n".join(
        f"**Chunk {i}** (ID: {chunk.id}, Source: {chunk.source}, "
        f"Section: {chunk.section}, Similarity: {(chunk.similarity or 0.0):.3f})\n"
        f"{chunk.content}"
        for i, chunk in enumerate(chunks, 1)
    )


class OpenAIAnswerGenerator:
    def __init__(
        self,
        *,
        client: Optional[OpenAI] = None,
        api_key: Optional[str] = None,
        bot_name: str = "DocsBot",
        completion_model: str = DEFAULT_COMPLETION_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        system_prompt: Optional[str] = None,
        system_prompt_file: Optional[str] = None,
    ) -> None:
        self._client = client if client is not None else OpenAI(api_key=api_key)
        self.bot_name = bot_name
        self.completion_model = completion_model
        self.temperature = temperature
        self.max_tokens = max_tokens
        if system_prompt is None:
            if system_prompt_file is None:
                raise ValueError("system_prompt or system_prompt_file is required")
            system_prompt = self._load_prompt_template(system_prompt_file)
        self._system_prompt = system_prompt

    @staticmethod
    def _project_root() -> Path:
        return Path(__file__).resolve().parents[2]

    @classmethod
    def _resolve_prompt_path(cls, path: str) -> Path:
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return cls._project_root() / candidate

    @classmethod
    def _load_prompt_template(cls, path: str) -> str:
        resolved = cls._resolve_prompt_path(path)
        try:
            text = resolved.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise FileNotFoundError(f"Prompt template file not found: {resolved}") from exc
        except OSError as exc:
            raise RuntimeError(f"Failed to read prompt template file: {resolved}") from exc
        cleaned = text.strip()
        if not cleaned:
            raise ValueError(f"Prompt template file is empty: {resolved}")
        return cleaned

    def build_messages(
        self,
        system_context: str,
        retrieved_chunks: Sequence[EmbeddedChunk],
        question: str,
    ) -> List[dict]:
        try:
            system_prompt = self._system_prompt.format(
                bot_name=self.bot_name,
                conversation_summary=system_context or "This is the start of a new conversation.",
                retrieved_chunks=format_chunks(retrieved_chunks),
            )
        except KeyError as exc:
            raise ValueError(
                f"Prompt template is missing placeholder '{{{exc.args[0]}}}'"
            ) from exc
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": question},
        ]

    async def _call_llm(self, messages: List[dict]) -> str:
        delay_seconds = 0.5

        for attempt in range(MAX_LLM_ATTEMPTS):
            try:
                response = await asyncio.to_thread(
                    self._client.chat.completions.create,
                    model=self.completion_model,
                    messages=messages,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    response_format={"type": "json_object"},
                )
                choice = response.choices[0].message
                return choice.content if choice and choice.content else ""

            except (RateLimitError, APITimeoutError, APIConnectionError, APIError):
                if attempt == MAX_LLM_ATTEMPTS - 1:
                    raise
                await asyncio.sleep(delay_seconds + random.random() * 0.25)
                delay_seconds *= 2

        return ""

    async def generate(
        self,
        system_context: str,
        retrieved_chunks: Sequence[EmbeddedChunk],
        question: str,
    ) -> GenerationResult:
        messages = self.build_messages(system_context, retrieved_chunks, question)

        t0 = time.monotonic()
        content = await self._call_llm(messages)
        result = parse_answer(content)

        logger.debug(
            {
                "telemetry": "answer.generate",
                "llm_ms": int((time.monotonic() - t0) * 1000),
                "context_chunks": len(retrieved_chunks),
                "ok": isinstance(result, AnswerOk),
            }
        )
        if isinstance(result, AnswerMalformed):
            logger.warning("Malformed answer payload (%s): %.200s", result.reason, result.raw_text)
        return result

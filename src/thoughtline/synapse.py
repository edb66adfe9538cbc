"""Typed reasoning operations over a Provider.

Each operation builds a user prompt, sends it after the session history,
parses the reply into a typed response and, on success only, records the
exchange in the session. Provider failures and unparseable replies are
raised as ``UpstreamError``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from .errors import UpstreamError
from .models import (
    BinaryResponse,
    ClassificationResponse,
    Message,
    RankingResponse,
    SentimentResponse,
)
from .provider import Provider
from .session import Session

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def _strip_fences(text: str) -> str:
    text = text.strip()
    match = _FENCE_RE.match(text)
    return match.group(1) if match else text


def _schema_instruction(schema: type[BaseModel]) -> str:
    return (
        "Respond with a single JSON object matching this schema and nothing else:\n"
        + json.dumps(schema.model_json_schema(), indent=2)
    )


def _with_context(prompt: str, context: str) -> str:
    if context:
        return f"{prompt}\n\nContext:\n{context}"
    return prompt


async def _fire(
    operation: str,
    provider: Provider,
    session: Session,
    prompt: str,
    temperature: float,
) -> str:
    messages = session.messages() + [Message(role="user", content=prompt)]
    try:
        response = await provider.call(messages, temperature)
    except Exception as e:
        raise UpstreamError(f"{operation}: provider call failed: {e}") from e

    logger.debug(
        f"{operation}: {response.usage.prompt_tokens} prompt / "
        f"{response.usage.completion_tokens} completion tokens "
        f"({response.usage.total_tokens} total) at t={temperature}"
    )
    return response.content


def _parse(operation: str, schema: type[ModelT], text: str) -> ModelT:
    try:
        return schema.model_validate_json(_strip_fences(text))
    except ValidationError as e:
        raise UpstreamError(f"{operation}: malformed response: {e}") from e


def _record(session: Session, prompt: str, reply: str) -> None:
    session.append("user", prompt)
    session.append("assistant", reply)


async def _structured(
    operation: str,
    provider: Provider,
    session: Session,
    prompt: str,
    schema: type[ModelT],
    temperature: float,
) -> ModelT:
    prompt = f"{prompt}\n\n{_schema_instruction(schema)}"
    reply = await _fire(operation, provider, session, prompt, temperature)
    result = _parse(operation, schema, reply)
    _record(session, prompt, reply)
    return result


async def binary(
    provider: Provider,
    session: Session,
    question: str,
    *,
    context: str = "",
    temperature: float,
) -> BinaryResponse:
    """Yes/no decision on ``question``."""
    prompt = _with_context(f"Answer yes or no: {question}", context)
    return await _structured("binary", provider, session, prompt, BinaryResponse, temperature)


async def classify(
    provider: Provider,
    session: Session,
    question: str,
    categories: list[str],
    *,
    context: str = "",
    temperature: float,
) -> ClassificationResponse:
    """Pick the best category (and a runner-up) from ``categories``.

    The reply is not checked against ``categories``; callers decide what an
    unlisted category means.
    """
    options = "\n".join(f"- {c}" for c in categories)
    prompt = _with_context(
        f"{question}\n\nChoose from these categories only:\n{options}", context
    )
    result = await _structured(
        "classify", provider, session, prompt, ClassificationResponse, temperature
    )
    return result


async def rank(
    provider: Provider,
    session: Session,
    criteria: str,
    items: list[str],
    *,
    context: str = "",
    temperature: float,
) -> RankingResponse:
    """Order ``items`` best-first by ``criteria``."""
    listing = "\n".join(f"- {item}" for item in items)
    prompt = _with_context(
        f"Rank these items by: {criteria}\n\nItems:\n{listing}", context
    )
    return await _structured("rank", provider, session, prompt, RankingResponse, temperature)


async def sentiment(
    provider: Provider,
    session: Session,
    text: str,
    *,
    context: str = "",
    temperature: float,
) -> SentimentResponse:
    """Emotional tone of ``text``."""
    prompt = _with_context(f"Analyze the sentiment of:\n{text}", context)
    return await _structured(
        "sentiment", provider, session, prompt, SentimentResponse, temperature
    )


async def extract(
    provider: Provider,
    session: Session,
    what: str,
    schema: type[ModelT],
    *,
    context: str = "",
    temperature: float,
) -> ModelT:
    """Extract ``what`` from the context into an instance of ``schema``."""
    prompt = _with_context(f"Extract {what}.", context)
    return await _structured("extract", provider, session, prompt, schema, temperature)


async def transform(
    provider: Provider,
    session: Session,
    instruction: str,
    text: str,
    *,
    context: str = "",
    style: str = "",
    temperature: float,
) -> str:
    """Free-text rewrite of ``text``; returns the reply verbatim (stripped)."""
    parts = [instruction, f"Input:\n{text}"]
    if context:
        parts.append(f"Context:\n{context}")
    if style:
        parts.append(f"Style:\n{style}")
    prompt = "\n\n".join(parts)

    reply = await _fire("transform", provider, session, prompt, temperature)
    result = reply.strip()
    if not result:
        raise UpstreamError("transform: empty response")
    _record(session, prompt, reply)
    return result

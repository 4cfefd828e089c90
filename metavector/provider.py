"""Embedding, meta-scoring and streaming completion through LiteLLM."""

import asyncio
import json
import logging
import re
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, TypeVar

import litellm

from metavector.exceptions import AuthError, CancelledError, MetaVectorError, ProviderError, ValidationError
from metavector.models import get_model_params

logger = logging.getLogger(__name__)

T = TypeVar("T")

Message = Dict[str, str]

META_TEMPERATURE = 0.1
COMPLETION_TEMPERATURE = 0.7

META_PROMPT_TEMPLATE = """You are a cognitive state analyzer. Given a user message, return a JSON object with the following fields, each scored as described:
\t• brainDominance: {{ leftBrain: 0.0–1.0, rightBrain: 0.0–1.0 }}
\t• processingStyle: {{ reflexive: 0.0–1.0, reasoning: 0.0–1.0 }}
\t• emotionalAnalysis: {{ joy: 0.0–1.0, intensity: 0.0–1.0, engagement: 0.0–1.0, complexity: 0.0–1.0, sentiment: -1.0–1.0 }}
\t• conversationMetrics: {{ depth: 0–100, coherence: 0–100, engagement: 0–100, topicStability: 0–100 }}
\t• cognitiveStyle: {{ strength: 0–100 }}
Message:
\"\"\"{text}\"\"\"
Return JSON only, without any markdown formatting or explanations."""

_CODE_FENCE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)


class CancellationToken:
    """Cooperative cancellation signal shared between a caller and a provider call."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancelledError("Operation cancelled")


async def _race(awaitable: Awaitable[T], token: Optional[CancellationToken]) -> T:
    """Await ``awaitable`` unless ``token`` fires first, in which case raise CancelledError."""
    if token is None:
        return await awaitable

    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise CancelledError("Operation cancelled")
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()

    if token.cancelled:
        raise CancelledError("Operation cancelled")
    return task.result()


def strip_code_fence(content: str) -> str:
    """Remove a surrounding ```json ... ``` markdown fence."""
    return _CODE_FENCE.sub("", content).strip()


def parse_meta_payload(content: Optional[str]) -> Dict[str, Any]:
    """Parse the meta-scoring reply, retrying once without markdown fencing.

    Raises:
        ProviderError: If the reply is not a JSON object even after cleanup
    """
    if not content:
        raise ProviderError("Meta-scoring returned an empty reply")

    try:
        payload = json.loads(content)
    except json.JSONDecodeError:
        logger.warning("Direct JSON parse failed for meta-score, attempting cleanup")
        try:
            payload = json.loads(strip_code_fence(content))
        except json.JSONDecodeError as e:
            raise ProviderError("Failed to parse meta-score output after cleanup") from e

    if not isinstance(payload, dict):
        raise ProviderError(f"Meta-score output is not a JSON object: {type(payload).__name__}")
    return payload


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def _delta_text(chunk: Any) -> str:
    choices = _field(chunk, "choices")
    if not choices:
        return ""
    delta = _field(choices[0], "delta")
    if delta is None:
        return ""
    return _field(delta, "content") or ""


def _require_credential(credential: Optional[str], what: str, model: str) -> None:
    if not credential:
        raise AuthError(f"API key is missing for {what} with model {model}")


def _require_text(text: Optional[str], what: str) -> None:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError(f"Cannot request {what} for empty text")


class LLMProvider:
    """The three upstream capabilities the memory core depends on.

    Every call takes its credential and model explicitly so the caller
    decides which configured credential/model pair applies.
    """

    async def _call(
        self,
        awaitable: Awaitable[T],
        what: str,
        model: str,
        token: Optional[CancellationToken] = None,
    ) -> T:
        """Run one LiteLLM await, translating failures into the error taxonomy."""
        try:
            return await _race(awaitable, token)
        except (MetaVectorError, StopAsyncIteration):
            raise
        except litellm.AuthenticationError as e:
            raise AuthError(f"{what} rejected credential ({model}): {e}") from e
        except Exception as e:
            logger.error("%s failed (%s): %s", what, model, e)
            raise ProviderError(f"{what} failed ({model}): {e}", status_code=getattr(e, "status_code", None)) from e

    async def embed(self, credential: Optional[str], text: str, model: str) -> List[float]:
        """Embed ``text``.

        Raises:
            AuthError: Credential missing or rejected
            ValidationError: Empty text
            ProviderError: Upstream failure or no embedding in the response
        """
        _require_credential(credential, "embedding", model)
        _require_text(text, "embedding")

        logger.debug("Fetching embedding with model %s", model)
        params = get_model_params(model, api_key=credential)
        response = await self._call(litellm.aembedding(input=[text], **params), "Embedding", model)

        data = _field(response, "data")
        embedding = _field(data[0], "embedding") if data else None
        if not embedding:
            raise ProviderError(f"Invalid embedding response structure received from API ({model})")
        return [float(v) for v in embedding]

    async def score_meta(self, credential: Optional[str], text: str, model: str) -> Dict[str, Any]:
        """Ask the model for the structured affective/cognitive scoring of ``text``."""
        _require_credential(credential, "meta-scoring", model)
        _require_text(text, "meta-scoring")

        logger.debug("Fetching meta-score with model %s", model)
        params = get_model_params(
            model,
            api_key=credential,
            temperature=META_TEMPERATURE,
            response_format={"type": "json_object"},
            drop_params=True,
        )
        messages = [{"role": "user", "content": META_PROMPT_TEMPLATE.format(text=text)}]
        response = await self._call(litellm.acompletion(messages=messages, **params), "Meta-scoring", model)

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise ProviderError(f"Invalid meta-scoring response structure ({model})") from e
        return parse_meta_payload(content)

    async def stream_completion(
        self,
        credential: Optional[str],
        messages: List[Message],
        model: str,
        token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[str]:
        """Yield text deltas of a chat completion.

        The sequence is finite and not restartable. When ``token`` is
        cancelled the iteration stops with CancelledError, whether it is
        waiting for the first byte or in the middle of the stream.
        """
        _require_credential(credential, "completion", model)
        if not messages:
            raise ValidationError("Cannot request a completion without messages")

        logger.debug("Streaming completion with model %s", model)
        params = get_model_params(model, api_key=credential, temperature=COMPLETION_TEMPERATURE, stream=True)
        stream = await self._call(litellm.acompletion(messages=messages, **params), "Completion", model, token)

        iterator = stream.__aiter__()
        while True:
            try:
                chunk = await self._call(iterator.__anext__(), "Completion", model, token)
            except StopAsyncIteration:
                break
            text = _delta_text(chunk)
            if text:
                yield text

    async def complete(
        self,
        credential: Optional[str],
        messages: List[Message],
        model: str,
        token: Optional[CancellationToken] = None,
        on_delta: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Collect a streamed completion into one string."""
        parts = []
        async for delta in self.stream_completion(credential, messages, model, token):
            parts.append(delta)
            if on_delta is not None:
                on_delta(delta)
        return "".join(parts)

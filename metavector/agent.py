"""One conversational turn: decay, retrieve from both tiers, generate."""

import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from metavector.config import Config, ConfigManager
from metavector.exceptions import AuthError, MetaVectorError, ValidationError
from metavector.memory.meta_vector import build_meta_vector
from metavector.memory.ranker import RetrievalRanker
from metavector.memory.schema import DecayResult, MemoryRecord, RankedMemory
from metavector.memory.store import MemoryStore
from metavector.provider import CancellationToken, LLMProvider

logger = logging.getLogger(__name__)

STM_HEADER = "--- Short-Term Memory (STM - Recent/Decaying) ---"
LTM_HEADER = "--- Long-Term Memory (LTM - Stable/Uploaded) ---"
HISTORY_HEADER = "--- Recent Conversation History ---"

CONVERSATION_AGENT_ID = "agent-conversation"
CONVERSATION_SOURCE = "Conversation"

RESPONSE_GUIDELINES = """Based only on the provided memories, conversation history, and the user query, write a thoughtful, contextually intelligent response.
- Prioritize and synthesize information from both memory types if relevant.
- If short-term and long-term memories agree, acknowledge the consistency. If they conflict, note the discrepancy or prefer the more reliable or more recent one (short-term scores reflect recency and usage).
- Weave memories in naturally, as if they inform your perspective or recall related experiences.
- Do not mention the retrieval process or memory tiers unless asked about your memory.
- Be concise but insightful. If no memories are relevant, simply answer the query directly."""


@dataclass
class RetrievalContext:
    """What one tier contributed to a turn."""

    label: str
    chunks: List[RankedMemory] = field(default_factory=list)
    meta: Optional[dict] = None
    error: Optional[str] = None
    skipped: bool = False


@dataclass
class TurnResult:
    query: str
    response: str
    stm: RetrievalContext
    ltm: RetrievalContext
    decay: Dict[str, DecayResult] = field(default_factory=dict)


class ChatHistory:
    """Conversation messages, optionally persisted to a JSON file."""

    def __init__(self, path: Optional[Path] = None):
        self._path = path
        self._messages: List[Dict[str, str]] = []
        self._load()

    @property
    def messages(self) -> List[Dict[str, str]]:
        return list(self._messages)

    def recent(self, limit: int) -> List[Dict[str, str]]:
        if limit <= 0:
            return []
        return self._messages[-limit:]

    def append(self, role: str, content: str) -> None:
        self._messages.append({"role": role, "content": content})
        self._save()

    def clear(self) -> None:
        self._messages = []
        self._save()

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            self._messages = [
                {"role": str(m["role"]), "content": str(m["content"])} for m in data.get("messages", [])
            ]
        except (json.JSONDecodeError, TypeError, KeyError, AttributeError) as e:
            logger.error("Failed to load chat history from %s: %s", self._path, e)
            self._messages = []

    def _save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps({"messages": self._messages}, indent=2), encoding="utf-8")
        os.replace(str(tmp), str(self._path))


def format_memory_block(header: str, chunks: List[RankedMemory]) -> str:
    if not chunks:
        return f"{header}\nNone found."
    lines = [f"{i}. [Score: {m.final_score:.3f}] {m.text}" for i, m in enumerate(chunks, start=1)]
    return header + "\n" + "\n".join(lines)


def format_history(messages: List[Dict[str, str]]) -> str:
    if not messages:
        return ""
    lines = [HISTORY_HEADER]
    for message in messages:
        speaker = "User" if message["role"] == "user" else "You"
        lines.append(f"{speaker}: {message['content']}\n")
    return "\n".join(lines)


def build_response_prompt(
    query: str,
    stm_chunks: List[RankedMemory],
    ltm_chunks: List[RankedMemory],
    history: List[Dict[str, str]],
    global_prompt: str = "",
) -> str:
    """Assemble the generation prompt from the query, retrieved memories and recent history."""
    parts = []
    if global_prompt:
        parts.append(f"{global_prompt}\n\n---\n")
    parts.append("You are a highly context-aware AI responder. Your personality is thoughtful and insightful.")
    parts.append(f'User query: "{query}"')
    conversation = format_history(history)
    if conversation:
        parts.append(conversation)
    parts.append("Relevant context retrieved from memory:")
    parts.append(format_memory_block(STM_HEADER, stm_chunks))
    parts.append(format_memory_block(LTM_HEADER, ltm_chunks))
    parts.append(RESPONSE_GUIDELINES)
    return "\n".join(parts)


class ConversationAgent:
    """Runs user turns against both memory tiers.

    Starting a turn cancels the previous one; a cancelled turn leaves
    history and memories untouched.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        stm: MemoryStore,
        ltm: MemoryStore,
        provider: Optional[LLMProvider] = None,
        ranker: Optional[RetrievalRanker] = None,
        history: Optional[ChatHistory] = None,
    ):
        self.config_manager = config_manager
        self.stm = stm
        self.ltm = ltm
        self.provider = provider or LLMProvider()
        self.ranker = ranker or RetrievalRanker()
        self.history = history or ChatHistory()
        self._token: Optional[CancellationToken] = None

    @property
    def busy(self) -> bool:
        """True while a turn is in flight."""
        return self._token is not None

    def cancel(self) -> None:
        """Cancel the in-flight turn, if any."""
        if self._token is not None:
            self._token.cancel()

    async def retrieve(
        self,
        store: MemoryStore,
        query: str,
        credential: Optional[str],
        embed_model: str,
        meta_model: str,
        k: int,
    ) -> RetrievalContext:
        """Rank one tier against the query. Failures yield an empty context, never an exception."""
        if not credential:
            logger.debug("No credential for %s retrieval, skipping", store.label)
            return RetrievalContext(label=store.label, skipped=True)

        try:
            embedding = await self.provider.embed(credential, query, embed_model)
            meta = await self.provider.score_meta(credential, query, meta_model)
            chunks = await self.ranker.rank(store, embedding, build_meta_vector(meta), k=k)
        except MetaVectorError as e:
            logger.error("Failed to retrieve %s context: %s", store.label, e)
            return RetrievalContext(label=store.label, error=str(e))

        return RetrievalContext(label=store.label, chunks=chunks, meta=meta)

    async def _decay(self) -> Dict[str, DecayResult]:
        results = {}
        for store in (self.stm, self.ltm):
            results[store.label] = await asyncio.to_thread(store.decay)
        return results

    async def _remember(self, config: Config, query: str) -> None:
        """Store the user's message in Short-Term memory. Failures are logged only."""
        try:
            embedding = await self.provider.embed(config.api_key_b, query, config.model_b_embed)
            meta = await self.provider.score_meta(config.api_key_b, query, config.model_b_meta)
            record = MemoryRecord(
                text=query,
                embedding=embedding,
                meta_vector=build_meta_vector(meta),
                agent_id=CONVERSATION_AGENT_ID,
                source=CONVERSATION_SOURCE,
                meta=meta,
            )
            await asyncio.to_thread(self.stm.add, record)
        except MetaVectorError as e:
            logger.warning("Failed to remember conversation turn: %s", e)

    async def run_turn(self, message: str, on_delta: Optional[Callable[[str], None]] = None) -> TurnResult:
        """Answer one user message.

        Args:
            message: The user's text
            on_delta: Called with every streamed text delta

        Returns:
            TurnResult with the full response and the retrieval contexts

        Raises:
            ValidationError: Empty message
            AuthError: No generation credential configured
            CancelledError: The turn was cancelled (by cancel() or a newer turn)
            ProviderError: Generation failed
        """
        query = (message or "").strip()
        if not query:
            raise ValidationError("Cannot answer an empty message")

        config = self.config_manager.current
        if not config.api_key_a:
            raise AuthError("No generation API key configured")

        self.cancel()
        token = CancellationToken()
        self._token = token

        try:
            decay = await self._decay()

            stm_context, ltm_context = await asyncio.gather(
                self.retrieve(
                    self.stm, query, config.api_key_b, config.model_b_embed, config.model_b_meta, config.top_k
                ),
                self.retrieve(
                    self.ltm, query, config.api_key_c, config.model_c_embed, config.model_c_meta, config.top_k
                ),
            )
            token.raise_if_cancelled()

            prompt = build_response_prompt(
                query,
                stm_context.chunks,
                ltm_context.chunks,
                self.history.recent(config.history_limit),
                config.global_prompt,
            )
            response = await self.provider.complete(
                config.api_key_a,
                [{"role": "user", "content": prompt}],
                config.model_a,
                token=token,
                on_delta=on_delta,
            )
            token.raise_if_cancelled()

            self.history.append("user", query)
            self.history.append("assistant", response)

            if config.remember_conversation and config.api_key_b:
                await self._remember(config, query)

            return TurnResult(query=query, response=response, stm=stm_context, ltm=ltm_context, decay=decay)
        finally:
            if self._token is token:
                self._token = None

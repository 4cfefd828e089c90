"""Autonomous reflection: periodically synthesize new memories from old ones."""

import asyncio
import logging
import random
from typing import Callable, List, Optional

from metavector.config import MIN_AUTONOMY_INTERVAL, Config, ConfigManager
from metavector.exceptions import CancelledError, MetaVectorError
from metavector.memory.meta_vector import build_meta_vector
from metavector.memory.schema import MemoryRecord
from metavector.memory.store import MemoryStore
from metavector.provider import CancellationToken, LLMProvider

logger = logging.getLogger(__name__)

REFLECTION_SAMPLE_SIZE = 3
STM_REFLECTION_SCORE = 2.0
LTM_REFLECTION_SCORE = 2.5
REFLECTION_AGENT_ID = "agent-autonomous-reflection"
REFLECTION_SOURCE = "Autonomous Reflection"


def build_reflection_prompt(instructions: str, memories: List[MemoryRecord]) -> str:
    block = "\n\n".join(f"Memory {i}: {m.text}" for i, m in enumerate(memories, start=1))
    return f"{instructions}\n\nMemories to reflect on:\n{block}\n\nWrite your reflection:"


class ReflectionScheduler:
    """Single-timer loop that writes reflections while autonomy is enabled.

    The next tick is armed only after the current cycle finishes, so cycles
    never overlap. Any configuration change wakes the loop; disabling
    autonomy cancels the pending timer and abandons an in-flight cycle.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        stm: MemoryStore,
        ltm: MemoryStore,
        provider: Optional[LLMProvider] = None,
        is_busy: Callable[[], bool] = lambda: False,
        rng: Optional[random.Random] = None,
    ):
        self.config_manager = config_manager
        self.stm = stm
        self.ltm = ltm
        self.provider = provider or LLMProvider()
        self._is_busy = is_busy
        self._rng = rng or random.Random()
        self._wakeup = asyncio.Event()
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._token: Optional[CancellationToken] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> asyncio.Task:
        """Launch the loop on the running event loop."""
        if self._task is not None and not self._task.done():
            return self._task
        self._loop = asyncio.get_running_loop()
        self._running = True
        self._unsubscribe = self.config_manager.subscribe(self._on_config_change)
        self._task = asyncio.create_task(self._main_loop())
        logger.info("Reflection scheduler started")
        return self._task

    async def stop(self) -> None:
        """Cancel the pending timer and any in-flight cycle."""
        self._running = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._token is not None:
            self._token.cancel()
        self._wakeup.set()
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("Reflection scheduler stopped")

    def _on_config_change(self, config: Config) -> None:
        # May be called from another thread
        if self._loop is None or self._loop.is_closed():
            return
        if not config.autonomy_ready and self._token is not None:
            self._loop.call_soon_threadsafe(self._token.cancel)
        self._loop.call_soon_threadsafe(self._wakeup.set)

    def _interval_seconds(self, config: Config) -> float:
        return float(max(MIN_AUTONOMY_INTERVAL, config.autonomy_interval))

    async def _main_loop(self) -> None:
        while self._running:
            config = self.config_manager.current
            self._wakeup.clear()

            if not config.autonomy_ready:
                # Idle until a config change (or stop) wakes us
                await self._wakeup.wait()
                continue

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._interval_seconds(config))
                # Woken early: settings changed, re-arm with the current ones
                continue
            except asyncio.TimeoutError:
                pass

            if not self._running or not self.config_manager.current.autonomy_ready:
                continue

            await self._cycle()

    async def _cycle(self) -> None:
        try:
            await self.run_once()
        except CancelledError:
            logger.info("Reflection cancelled")
        except MetaVectorError as e:
            logger.error("Failed to perform autonomous reflection: %s", e)
        except Exception as e:
            logger.exception("Unexpected error during autonomous reflection: %s", e)

    async def _build_record(
        self, credential: Optional[str], embed_model: str, meta_model: str, text: str, score: float
    ) -> MemoryRecord:
        embedding = await self.provider.embed(credential, text, embed_model)
        meta = await self.provider.score_meta(credential, text, meta_model)
        return MemoryRecord(
            text=text,
            embedding=embedding,
            meta_vector=build_meta_vector(meta),
            score=score,
            agent_id=REFLECTION_AGENT_ID,
            source=REFLECTION_SOURCE,
            meta=meta,
        )

    async def run_once(self) -> Optional[int]:
        """Perform one reflection cycle.

        Returns:
            Short-Term id of the stored reflection, or None when the cycle was
            skipped (missing credentials, agent busy, no memories, empty reply)

        Raises:
            CancelledError: Autonomy was disabled or the scheduler stopped mid-cycle
            MetaVectorError: Generation, embedding or Short-Term write failed
        """
        config = self.config_manager.current
        if not config.api_key_a or not config.api_key_b:
            logger.debug("Reflection skipped: generation or embedding credential missing")
            return None
        if self._is_busy():
            logger.info("Reflection skipped: agent is answering a query")
            return None

        records = await asyncio.to_thread(self.stm.get_all)
        if not records:
            logger.info("No memories to reflect on")
            return None

        sample = self._rng.sample(records, min(REFLECTION_SAMPLE_SIZE, len(records)))
        prompt = build_reflection_prompt(config.autonomy_prompt, sample)

        logger.info("Performing autonomous reflection over %d memories", len(sample))
        token = CancellationToken()
        self._token = token
        try:
            reflection = await self.provider.complete(
                config.api_key_a, [{"role": "user", "content": prompt}], config.model_a, token=token
            )
            reflection = reflection.strip()
            if not reflection:
                logger.warning("Reflection produced no text, nothing stored")
                return None

            record = await self._build_record(
                config.api_key_b, config.model_b_embed, config.model_b_meta, reflection, STM_REFLECTION_SCORE
            )
            token.raise_if_cancelled()
        finally:
            if self._token is token:
                self._token = None

        stm_id = await asyncio.to_thread(self.stm.add, record)
        logger.info("Saved autonomous reflection to STM (id=%s)", stm_id)

        if config.api_key_c:
            try:
                ltm_record = await self._build_record(
                    config.api_key_c, config.model_c_embed, config.model_c_meta, reflection, LTM_REFLECTION_SCORE
                )
                ltm_id = await asyncio.to_thread(self.ltm.add, ltm_record)
                logger.info("Saved autonomous reflection to LTM (id=%s)", ltm_id)
            except MetaVectorError as e:
                logger.warning("Failed to save reflection to LTM: %s", e)

        return stm_id

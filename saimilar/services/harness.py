"""Side-by-side model comparison ("test mode").

For every user query the same conversation snapshot is sent to each selected
model, one after another, and the outcome is appended to an in-memory log.
The log is the only state this touches, so it can run while the chat flow
keeps going.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence

from saimilar.constants import TEST_HARNESS_DELAY
from saimilar.models.schemas import ConversationTurn, SearchIntent, TestRunLogEntry
from saimilar.services.analyzer import QueryAnalyzer
from saimilar.services.providers import display_name
from saimilar.utils.logging import LogContext

logger = logging.getLogger(__name__)


class ParallelTestHarness:
    def __init__(
        self,
        analyzer: QueryAnalyzer,
        delay: float = TEST_HARNESS_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.analyzer = analyzer
        self.delay = delay
        self._sleep = sleep
        self._entries: list[TestRunLogEntry] = []
        self._tasks: set[asyncio.Task] = set()

    @property
    def entries(self) -> list[TestRunLogEntry]:
        return list(self._entries)

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def launch(
        self,
        query: str,
        history: Sequence[ConversationTurn],
        language: str,
        model_keys: Sequence[str],
    ) -> asyncio.Task:
        """Start a comparison run in the background and keep a handle on it."""
        task = asyncio.create_task(
            self.run(query, list(history), language, list(model_keys)),
            name=f"model-comparison:{query[:30]}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run(
        self,
        query: str,
        history: Sequence[ConversationTurn],
        language: str,
        model_keys: Sequence[str],
    ) -> list[TestRunLogEntry]:
        entries = []
        for index, model_key in enumerate(model_keys):
            if index:
                await self._sleep(self.delay)
            entries.append(await self._run_one(query, history, language, model_key))
        return entries

    async def _run_one(
        self,
        query: str,
        history: Sequence[ConversationTurn],
        language: str,
        model_key: str,
    ) -> TestRunLogEntry:
        ctx = LogContext(logger, model=model_key)
        entry = TestRunLogEntry(
            id=f"{time.time_ns()}_{model_key}",
            model_key=model_key,
            model_label=display_name(model_key),
            query=query,
        )
        self._entries.append(entry)

        started = time.perf_counter()
        try:
            intent = await self.analyzer.run(query, history, language, model_key)
        except Exception as e:
            entry.error = str(e) or type(e).__name__
            entry.usage = getattr(e, "usage", None)
            ctx.warning(f"Comparison call failed: {entry.error}")
        else:
            entry.result = intent
            entry.usage = intent.usage
            ctx.info(f"Comparison call returned {len(intent.recommended_titles)} titles")
        entry.wall_clock_ms = int((time.perf_counter() - started) * 1000)
        return entry

    def log_main(self, query: str, intent: SearchIntent, model_key: str) -> TestRunLogEntry:
        """Record the chat flow's own call next to the comparison runs."""
        entry = TestRunLogEntry(
            id=f"{time.time_ns()}_main",
            model_key=model_key,
            model_label=f"{display_name(model_key)} (Main)",
            query=query,
            result=intent,
            usage=intent.usage,
            wall_clock_ms=intent.usage.wall_clock_ms if intent.usage else None,
        )
        self._entries.append(entry)
        return entry

    def clear(self) -> None:
        self._entries.clear()

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

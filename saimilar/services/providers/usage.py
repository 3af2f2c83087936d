"""Token cost accounting and the in-process usage log."""

from collections import deque
from collections.abc import Iterator

from saimilar.constants import MAX_USAGE_LOG_ENTRIES
from saimilar.models.schemas import UsageStats
from saimilar.services.providers.catalog import ModelSpec


def compute_cost(spec: ModelSpec, input_tokens: int, output_tokens: int) -> float:
    """Cost in USD of one call priced per million tokens."""
    return (input_tokens / 1_000_000) * spec.cost_per_million_input + (
        output_tokens / 1_000_000
    ) * spec.cost_per_million_output


class UsageLog:
    """Ring buffer of recent call usage; the oldest entries are evicted first."""

    def __init__(self, max_entries: int = MAX_USAGE_LOG_ENTRIES) -> None:
        self._entries: deque[UsageStats] = deque(maxlen=max_entries)

    def record(self, usage: UsageStats) -> None:
        self._entries.append(usage)

    def entries(self) -> list[UsageStats]:
        return list(self._entries)

    def total_cost(self) -> float:
        return sum(u.cost_estimate for u in self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[UsageStats]:
        return iter(list(self._entries))


usage_log = UsageLog()

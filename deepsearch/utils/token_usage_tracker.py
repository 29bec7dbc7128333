"""Token usage accumulator shared by every LLM / search / reader call in a session.

Why: The step loop stops once 90% of the token budget is spent, so every
collaborator that costs tokens must report here.  The tracker is
increment-only; an optional hard budget rejects usage that would overflow it
(the rejection is logged, not raised, because the caller has already paid
for the call).
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenUsage:
    tool: str
    tokens: int
    provider: Optional[str] = None


UsageListener = Callable[[TokenUsage], None]


class TokenTracker:
    """Thread-safe increment-only token counter with a usage-event hook."""

    def __init__(self, budget: Optional[int] = None):
        self.budget = budget
        self._usages: List[TokenUsage] = []
        self._listeners: List[UsageListener] = []
        self._lock = threading.Lock()

    def add_usage_listener(self, listener: UsageListener) -> None:
        """Register a callback invoked with every recorded TokenUsage."""
        self._listeners.append(listener)

    def track_usage(self, tool: str, tokens: int, provider: Optional[str] = None) -> bool:
        """Record ``tokens`` spent by ``tool``; returns False if the hard budget refused it."""
        tokens = max(int(tokens or 0), 0)
        with self._lock:
            current_total = sum(u.tokens for u in self._usages)
            if self.budget and current_total + tokens > self.budget:
                logger.error("Token budget exceeded: %d > %d (tool=%s)",
                             current_total + tokens, self.budget, tool)
                return False
            usage = TokenUsage(tool=tool, tokens=tokens, provider=provider)
            self._usages.append(usage)

        for listener in self._listeners:
            try:
                listener(usage)
            except Exception as exc:
                logger.warning("Token usage listener failed: %s", exc)
        return True

    def get_total_usage(self) -> int:
        with self._lock:
            return sum(u.tokens for u in self._usages)

    def get_usage_breakdown(self) -> Dict[str, Dict]:
        """``{tool: {"total": n, "by_provider": {provider: n}}}``."""
        breakdown: Dict[str, Dict] = {}
        with self._lock:
            usages = list(self._usages)
        for usage in usages:
            entry = breakdown.setdefault(usage.tool, {"total": 0, "by_provider": {}})
            entry["total"] += usage.tokens
            if usage.provider:
                by_provider = entry["by_provider"]
                by_provider[usage.provider] = by_provider.get(usage.provider, 0) + usage.tokens
        return breakdown

    def print_summary(self) -> Dict:
        """Log and return a summary: total, per-provider totals, per-tool breakdown."""
        with self._lock:
            usages = list(self._usages)
        by_provider: Dict[str, int] = {}
        for usage in usages:
            if usage.provider:
                by_provider[usage.provider] = by_provider.get(usage.provider, 0) + usage.tokens
        summary = {
            "total": sum(u.tokens for u in usages),
            "by_provider": by_provider,
            "breakdown": self.get_usage_breakdown(),
        }
        logger.info("Token usage summary: %s", summary)
        return summary

    def reset(self) -> None:
        with self._lock:
            self._usages = []

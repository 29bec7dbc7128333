"""Append-only record of the actions the agent chose, plus "think" narration.

The API server subscribes to this tracker to stream progress to clients;
the CLI just reads ``history`` after the run.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from deepsearch.utils.token_usage_tracker import TokenTracker

logger = logging.getLogger(__name__)

ActionListener = Callable[[str, Dict[str, Any]], None]

# Canned think messages emitted by the handlers
THINK_MESSAGES = {
    "eval_first": "But wait, let me evaluate the answer first.",
    "search_for": "Let me search for {keywords} to gather more information.",
    "read_for": "Let me read {urls} to gather more information.",
}


class ActionTracker:
    """Keeps every chosen action in order and fans out events to listeners.

    Events are ``("action", record)`` for chosen actions and
    ``("think", {"think": text})`` for narration.
    """

    def __init__(self):
        self.history: List[Dict[str, Any]] = []
        self.last_think: str = ""
        self._listeners: List[ActionListener] = []

    def add_listener(self, listener: ActionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ActionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def track_action(self, record: Dict[str, Any]) -> None:
        """Append ``record`` (total_step, action, think, gaps, bad_attempts, ...)."""
        self.history.append(dict(record))
        think = record.get("think")
        if think:
            self.last_think = think
        self._emit("action", record)

    def track_think(self, key_or_text: str, **params: Any) -> str:
        """Emit narration; ``key_or_text`` is a THINK_MESSAGES key or literal text."""
        template = THINK_MESSAGES.get(key_or_text, key_or_text)
        try:
            text = template.format(**params)
        except (KeyError, IndexError):
            text = template
        self.last_think = text
        self._emit("think", {"think": text})
        return text

    def get_state(self) -> Dict[str, Any]:
        return {"history": list(self.history), "last_think": self.last_think}

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception as exc:
                logger.warning("Action listener failed on %s event: %s", event, exc)


@dataclass
class TrackerContext:
    """Usage and trace collaborators supplied by the caller; may outlive a session."""

    token_tracker: TokenTracker = field(default_factory=TokenTracker)
    action_tracker: ActionTracker = field(default_factory=ActionTracker)


def create_tracker_context(existing: Optional[Any] = None) -> TrackerContext:
    """Fill in whichever tracker ``existing`` lacks.

    ``existing`` may be a TrackerContext or a dict with ``token_tracker`` /
    ``action_tracker`` keys.
    """
    if existing is None:
        return TrackerContext()
    if isinstance(existing, dict):
        token_tracker = existing.get("token_tracker")
        action_tracker = existing.get("action_tracker")
    else:
        token_tracker = getattr(existing, "token_tracker", None)
        action_tracker = getattr(existing, "action_tracker", None)
    return TrackerContext(
        token_tracker=token_tracker or TokenTracker(),
        action_tracker=action_tracker or ActionTracker(),
    )

"""Dump the last prompt and the accumulated memory of a run to disk.

Why: When an answer looks wrong, the fastest post-mortem is to read the exact
prompt the oracle saw at the final step together with everything the session
had collected.  Each run writes into its own directory::

    <debug_dir>/run_20261019_101500/
        prompt-7.txt      # system prompt + JSON schema of the last oracle call
        context.json      # step log
        queries.json      # keyword history
        questions.json    # question history
        knowledge.json    # knowledge items

Writing is a side effect only: any OSError / serialization error is logged
and swallowed so a full disk never fails a research session.
"""

import json
import logging
from dataclasses import asdict, is_dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


def _to_jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return str(value)


class ContextSnapshotWriter:
    """Writes one snapshot directory per run under ``base_dir``."""

    def __init__(self, base_dir, run_name: Optional[str] = None):
        self.base_dir = Path(base_dir)
        self.run_name = run_name or datetime.now().strftime("run_%Y%m%d_%H%M%S")

    @property
    def run_directory(self) -> Path:
        return self.base_dir / self.run_name

    def write_snapshot(
        self,
        prompt: str,
        schema: Dict[str, Any],
        step_log: List[Any],
        keywords: List[str],
        questions: List[str],
        knowledge: List[Any],
        step: int,
    ) -> Optional[Path]:
        """Write all artifacts; returns the run directory, or None on failure."""
        try:
            run_dir = self.run_directory
            run_dir.mkdir(parents=True, exist_ok=True)
            prompt_text = (
                f"\nPrompt:\n{prompt}\n\n"
                f"JSONSchema:\n{json.dumps(schema, indent=2, ensure_ascii=False)}\n"
            )
            (run_dir / f"prompt-{step}.txt").write_text(prompt_text, encoding="utf-8")
            self._dump_json(run_dir / "context.json", step_log)
            self._dump_json(run_dir / "queries.json", keywords)
            self._dump_json(run_dir / "questions.json", questions)
            self._dump_json(run_dir / "knowledge.json", knowledge)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Context storage failed: %s", exc)
            return None
        logger.info("Context snapshot written: dir=%s step=%d", run_dir, step)
        return run_dir

    @staticmethod
    def _dump_json(path: Path, payload: Any) -> None:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, ensure_ascii=False, default=_to_jsonable)

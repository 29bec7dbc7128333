"""Schema-constrained JSON generation on top of a plain chat LLMClient.

Why: Every LLM collaborator (next-action oracle, evaluator, error analyzer,
query rewriter, deduplicator) needs one JSON object of a known shape.
OpenAI-compatible backends differ in how well they honour ``json_object``
mode, so this layer (1) puts the JSON schema into the system prompt,
(2) extracts the object from fenced / chatty output, (3) repairs the common
formatting slips, (4) validates it, and (5) re-prompts with the validation
errors.  Only after ``max_retries`` re-prompts does it give up with
StructuredOutputError.

Token usage of every attempt (successful or not) is charged to the tracker
under the call's ``purpose`` so the step loop's budget sees it.
"""

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from deepsearch.llm.client import LLMClient
from deepsearch.research_agent_errors import StructuredOutputError
from deepsearch.utils.token_usage_tracker import TokenTracker

logger = logging.getLogger(__name__)

PayloadValidator = Callable[[Dict[str, Any]], List[str]]

DEFAULT_MODEL_SETTINGS = {"temperature": 0.0, "max_tokens": 1000}

# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------

_FENCED_JSON_PATTERN = re.compile(r"```(?:json)?\s*(\{.*\})\s*```", re.DOTALL)


def _find_balanced_json_object(text: str) -> Optional[str]:
    """Return the first ``{...}`` span with balanced braces, honouring strings."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    # Unbalanced: hand the tail to the repair step
    return text[start:]


def _repair_llm_json(raw_json: str) -> str:
    """Fix trailing commas, bare newlines inside strings and missing closers."""
    text = raw_json.strip()
    if '"' not in text and "'" in text:
        text = text.replace("'", '"')
    text = re.sub(r",\s*([}\]])", r"\1", text)

    # Escape literal newlines that sit inside string values
    repaired = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            elif ch == "\n":
                repaired.append("\\n")
                continue
            elif ch == "\r":
                continue
        elif ch == '"':
            in_string = True
        repaired.append(ch)
    text = "".join(repaired)

    if in_string:
        text += '"'
    missing_brackets = text.count("[") - text.count("]")
    if missing_brackets > 0:
        text += "]" * missing_brackets
    missing_braces = text.count("{") - text.count("}")
    if missing_braces > 0:
        text += "}" * missing_braces
    return text


def extract_json_object_from_llm_text(text: str) -> Optional[Dict[str, Any]]:
    """Best-effort parse of one JSON object out of an LLM reply; None if hopeless."""
    if not text or not text.strip():
        return None

    candidates: List[str] = []
    fenced = _FENCED_JSON_PATTERN.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    balanced = _find_balanced_json_object(text)
    if balanced:
        candidates.append(balanced)

    for candidate in candidates:
        for attempt_json in (candidate, _repair_llm_json(candidate)):
            try:
                payload = json.loads(attempt_json)
            except (json.JSONDecodeError, ValueError):
                continue
            if isinstance(payload, dict):
                return payload
    logger.debug("Failed to parse JSON object from LLM text: %s", text[:200])
    return None


def validate_against_json_schema(payload: Dict[str, Any], schema: Dict[str, Any]) -> List[str]:
    """Minimal structural check: required keys, primitive types, enums, array items.

    Returns a list of error strings (empty if valid).  Deliberately small: it
    covers the object/array/string/boolean/number shapes our schemas use.
    """
    return _validate_node(payload, schema, path="")


def _validate_node(value: Any, schema: Dict[str, Any], path: str) -> List[str]:
    errors: List[str] = []
    label = path or "payload"
    expected = schema.get("type")
    if expected == "object":
        if not isinstance(value, dict):
            return [f"{label} must be an object, got {type(value).__name__}"]
        for key in schema.get("required", []):
            if key not in value:
                errors.append(f"missing required field: {path + '.' if path else ''}{key}")
        for key, sub_schema in schema.get("properties", {}).items():
            if key in value and value[key] is not None:
                errors.extend(_validate_node(value[key], sub_schema, f"{path}.{key}" if path else key))
    elif expected == "array":
        if not isinstance(value, list):
            return [f"{label} must be an array, got {type(value).__name__}"]
        max_items = schema.get("maxItems")
        if max_items is not None and len(value) > max_items:
            errors.append(f"{label} must have at most {max_items} items")
        item_schema = schema.get("items")
        if item_schema:
            for i, item in enumerate(value):
                errors.extend(_validate_node(item, item_schema, f"{label}[{i}]"))
    elif expected == "string":
        if not isinstance(value, str):
            errors.append(f"{label} must be a string, got {type(value).__name__}")
        elif "enum" in schema and value not in schema["enum"]:
            errors.append(f"{label} must be one of {schema['enum']}, got {value!r}")
    elif expected == "boolean":
        if not isinstance(value, bool):
            errors.append(f"{label} must be a boolean, got {type(value).__name__}")
    elif expected in ("number", "integer"):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{label} must be a number, got {type(value).__name__}")
    return errors


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class StructuredOutputGenerator:
    """Turns (purpose, schema, prompt) into a validated dict or raises."""

    def __init__(
        self,
        llm: LLMClient,
        token_tracker: Optional[TokenTracker] = None,
        model_settings: Optional[Dict[str, Dict[str, Any]]] = None,
        max_retries: int = 2,
    ):
        self.llm = llm
        self.token_tracker = token_tracker or TokenTracker()
        self.model_settings = model_settings or {}
        self.max_retries = max_retries

    def settings_for(self, purpose: str) -> Dict[str, Any]:
        settings = dict(DEFAULT_MODEL_SETTINGS)
        settings.update(self.model_settings.get(purpose, {}))
        return settings

    def generate_object(
        self,
        purpose: str,
        schema: Dict[str, Any],
        system_prompt: str,
        messages: Optional[List[Dict[str, str]]] = None,
        validator: Optional[PayloadValidator] = None,
    ) -> Dict[str, Any]:
        """Ask the LLM for one JSON object matching ``schema``.

        ``validator`` adds domain checks on top of the structural schema check.
        """
        settings = self.settings_for(purpose)
        full_system_prompt = (
            f"{system_prompt}\n\n"
            "Respond with a single JSON object that matches this JSON schema exactly:\n"
            f"{json.dumps(schema, ensure_ascii=False)}"
        )
        conversation = list(messages or [{"role": "user", "content": "Proceed."}])

        last_errors: List[str] = []
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            completion = self.llm.complete(
                full_system_prompt,
                conversation,
                temperature=settings["temperature"],
                max_tokens=settings["max_tokens"],
                purpose=purpose,
                json_mode=True,
            )
            self.token_tracker.track_usage(purpose, completion.total_tokens,
                                           getattr(self.llm, "provider_name", None))

            payload = extract_json_object_from_llm_text(completion.text)
            if payload is None:
                last_errors = ["response is not a JSON object"]
            else:
                last_errors = validate_against_json_schema(payload, schema)
                if not last_errors and validator is not None:
                    last_errors = validator(payload)
                if not last_errors:
                    return payload

            logger.warning("Structured output rejected: purpose=%s attempt=%d/%d errors=%s",
                           purpose, attempt + 1, attempts, last_errors[:3])
            if completion.text:
                conversation = conversation + [
                    {"role": "assistant", "content": completion.text},
                    {"role": "user", "content": (
                        "Your previous response was invalid: " + "; ".join(last_errors)
                        + ". Reply again with one JSON object that matches the schema."
                    )},
                ]

        raise StructuredOutputError(purpose, attempts, last_errors)

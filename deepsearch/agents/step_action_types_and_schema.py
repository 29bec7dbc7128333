"""StepAction variants, the permission-dependent JSON schema, and its validator.

Why: The oracle must return exactly one action, and only actions that are
currently permitted may be representable.  The schema is therefore rebuilt
from the allow-flags at every call: the ``action`` enum lists only the
permitted kinds and only their payload fields are offered.  Payloads coming
back are validated against the same permitted set and turned into one of the
dataclass variants below; anything that does not fit is rejected so the
generator re-prompts.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Sequence, Union

ACTION_SEARCH = "search"
ACTION_VISIT = "visit"
ACTION_REFLECT = "reflect"
ACTION_ANSWER = "answer"
ACTION_CODING = "coding"

ALL_ACTIONS = (ACTION_SEARCH, ACTION_VISIT, ACTION_REFLECT, ACTION_ANSWER, ACTION_CODING)

MAX_QUERIES_PER_STEP = 5
MAX_URLS_PER_STEP = 4
MAX_REFLECT_PER_STEP = 2


@dataclass
class Reference:
    exact_quote: str
    url: str
    title: str = ""


@dataclass
class SearchAction:
    think: str
    search_requests: List[str] = field(default_factory=list)
    action: str = field(default=ACTION_SEARCH, init=False)


@dataclass
class VisitAction:
    think: str
    url_targets: List[str] = field(default_factory=list)
    action: str = field(default=ACTION_VISIT, init=False)


@dataclass
class ReflectAction:
    think: str
    questions_to_answer: List[str] = field(default_factory=list)
    action: str = field(default=ACTION_REFLECT, init=False)


@dataclass
class AnswerAction:
    think: str
    answer: str
    references: List[Reference] = field(default_factory=list)
    is_final: bool = False
    md_answer: str = ""
    action: str = field(default=ACTION_ANSWER, init=False)


@dataclass
class CodingAction:
    think: str
    coding_issue: str = ""
    action: str = field(default=ACTION_CODING, init=False)


StepAction = Union[SearchAction, VisitAction, ReflectAction, AnswerAction, CodingAction]


def step_action_to_dict(action: StepAction) -> Dict[str, Any]:
    """Plain-dict form used in the step log and action tracker."""
    return asdict(action)


def permitted_actions_from_flags(allow_reflect: bool, allow_read: bool, allow_answer: bool,
                                 allow_search: bool, allow_coding: bool) -> List[str]:
    """Action names in the order the prompt lists them."""
    permitted = []
    if allow_search:
        permitted.append(ACTION_SEARCH)
    if allow_coding:
        permitted.append(ACTION_CODING)
    if allow_answer:
        permitted.append(ACTION_ANSWER)
    if allow_reflect:
        permitted.append(ACTION_REFLECT)
    if allow_read:
        permitted.append(ACTION_VISIT)
    return permitted


# ---------------------------------------------------------------------------
# Schema construction
# ---------------------------------------------------------------------------

_ACTION_FIELD_SCHEMAS: Dict[str, Dict[str, Dict[str, Any]]] = {
    ACTION_SEARCH: {
        "search_requests": {
            "type": "array",
            "maxItems": MAX_QUERIES_PER_STEP,
            "items": {"type": "string"},
            "description": ("Required when action='search'. Always prefer a single request; "
                            "only add another one when the question covers several aspects. "
                            "Each request is a short natural-language search intent."),
        },
    },
    ACTION_CODING: {
        "coding_issue": {
            "type": "string",
            "description": ("Required when action='coding'. Describe the counting, filtering, "
                            "transforming or sorting problem with the actual values."),
        },
    },
    ACTION_ANSWER: {
        "answer": {
            "type": "string",
            "description": ("Required when action='answer'. The final answer in natural language; "
                            "for greetings or small talk answer directly without references."),
        },
        "references": {
            "type": "array",
            "description": "Required when action='answer'. Supporting evidence for the answer.",
            "items": {
                "type": "object",
                "properties": {
                    "exact_quote": {"type": "string", "description": "Verbatim text from the source"},
                    "url": {"type": "string", "description": "Source URL, must come from the context"},
                },
                "required": ["exact_quote", "url"],
            },
        },
    },
    ACTION_REFLECT: {
        "questions_to_answer": {
            "type": "array",
            "maxItems": MAX_REFLECT_PER_STEP,
            "items": {"type": "string"},
            "description": ("Required when action='reflect'. Key sub-questions whose answers "
                            "would unblock the original question; each must be self-contained."),
        },
    },
    ACTION_VISIT: {
        "url_targets": {
            "type": "array",
            "maxItems": MAX_URLS_PER_STEP,
            "items": {"type": "string"},
            "description": "Required when action='visit'. URLs to read, taken from the url-list.",
        },
    },
}

_REQUIRED_FIELD_BY_ACTION = {
    ACTION_SEARCH: "search_requests",
    ACTION_VISIT: "url_targets",
    ACTION_REFLECT: "questions_to_answer",
    ACTION_ANSWER: "answer",
    ACTION_CODING: "coding_issue",
}


def build_agent_action_schema(allow_reflect: bool, allow_read: bool, allow_answer: bool,
                              allow_search: bool, allow_coding: bool) -> Dict[str, Any]:
    """JSON schema offering only the permitted actions and their payload fields.

    Raises ValueError when nothing is permitted; the controller never asks
    with an empty permission set.
    """
    permitted = permitted_actions_from_flags(allow_reflect, allow_read, allow_answer,
                                             allow_search, allow_coding)
    if not permitted:
        raise ValueError("at least one action must be permitted")

    properties: Dict[str, Any] = {
        "action": {
            "type": "string",
            "enum": permitted,
            "description": "Choose exactly one best action from the available actions",
        },
        "think": {
            "type": "string",
            "description": "Concise explanation of why this action is chosen and what it should achieve",
        },
    }
    for action in permitted:
        properties.update(_ACTION_FIELD_SCHEMAS[action])

    return {
        "type": "object",
        "properties": properties,
        "required": ["action", "think"],
    }


# ---------------------------------------------------------------------------
# Validation and parsing
# ---------------------------------------------------------------------------

def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def validate_step_action_payload(payload: Dict[str, Any], permitted: Sequence[str]) -> List[str]:
    """Return error strings for a raw oracle payload (empty list if valid)."""
    errors: List[str] = []
    action = payload.get("action")
    if action not in permitted:
        return [f"action must be one of {list(permitted)}, got {action!r}"]
    if not isinstance(payload.get("think", ""), str):
        errors.append("think must be a string")

    required_field = _REQUIRED_FIELD_BY_ACTION[action]
    value = payload.get(required_field)
    if value is None:
        errors.append(f"missing required field for action '{action}': {required_field}")
    elif action == ACTION_ANSWER or action == ACTION_CODING:
        if not isinstance(value, str):
            errors.append(f"{required_field} must be a string")
    elif not _is_string_list(value):
        errors.append(f"{required_field} must be a list of strings")

    if action == ACTION_ANSWER:
        references = payload.get("references") or []
        if not isinstance(references, list):
            errors.append("references must be a list")
        else:
            for i, ref in enumerate(references):
                if not isinstance(ref, dict):
                    errors.append(f"references[{i}] must be an object")
                elif not isinstance(ref.get("url", ""), str) or not isinstance(ref.get("exact_quote", ""), str):
                    errors.append(f"references[{i}] needs string exact_quote and url")
    return errors


def parse_step_action(payload: Dict[str, Any], permitted: Sequence[str]) -> StepAction:
    """Turn a validated payload into its variant; raises ValueError otherwise."""
    errors = validate_step_action_payload(payload, permitted)
    if errors:
        raise ValueError("; ".join(errors))

    action = payload["action"]
    think = payload.get("think") or ""
    if action == ACTION_SEARCH:
        return SearchAction(think=think, search_requests=list(payload["search_requests"]))
    if action == ACTION_VISIT:
        return VisitAction(think=think, url_targets=list(payload["url_targets"]))
    if action == ACTION_REFLECT:
        return ReflectAction(think=think, questions_to_answer=list(payload["questions_to_answer"]))
    if action == ACTION_CODING:
        return CodingAction(think=think, coding_issue=payload["coding_issue"])
    references = [
        Reference(exact_quote=ref.get("exact_quote", ""), url=ref.get("url", ""), title=ref.get("title", "") or "")
        for ref in payload.get("references") or []
    ]
    return AnswerAction(think=think, answer=payload["answer"], references=references)

"""Next-action oracle: the LLM that picks one StepAction per step."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from deepsearch.agents.step_action_types_and_schema import (
    StepAction,
    parse_step_action,
    validate_step_action_payload,
)
from deepsearch.llm.structured_output_generator import StructuredOutputGenerator

logger = logging.getLogger(__name__)

PURPOSE_AGENT = "agent"
PURPOSE_AGENT_BEAST_MODE = "agent_beast_mode"


class NextActionOracle(ABC):
    """Contract: return exactly one action whose kind is in ``permitted``."""

    @abstractmethod
    def choose_action(
        self,
        system_prompt: str,
        schema: Dict[str, Any],
        permitted: Sequence[str],
        messages: Optional[List[Dict[str, str]]] = None,
        purpose: str = PURPOSE_AGENT,
    ) -> StepAction:
        ...


class LLMNextActionOracle(NextActionOracle):
    """Oracle backed by the structured output generator.

    Payloads naming a non-permitted action, or missing the action's payload
    field, are rejected inside the generator and re-prompted.
    """

    def __init__(self, generator: StructuredOutputGenerator):
        self.generator = generator

    def choose_action(
        self,
        system_prompt: str,
        schema: Dict[str, Any],
        permitted: Sequence[str],
        messages: Optional[List[Dict[str, str]]] = None,
        purpose: str = PURPOSE_AGENT,
    ) -> StepAction:
        payload = self.generator.generate_object(
            purpose=purpose,
            schema=schema,
            system_prompt=system_prompt,
            messages=messages,
            validator=lambda p: validate_step_action_payload(p, permitted),
        )
        action = parse_step_action(payload, permitted)
        logger.debug("Oracle chose %s: think=%s", action.action, action.think[:120])
        return action

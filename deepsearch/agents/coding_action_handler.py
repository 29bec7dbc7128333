"""Coding action: declared in the action schema, no sandbox behind it."""

from deepsearch.agents.abstract_action_handler_interface import AbstractActionHandler
from deepsearch.agents.research_session_state import ResearchSession
from deepsearch.agents.session_update import SessionUpdate
from deepsearch.agents.step_action_types_and_schema import ACTION_CODING, CodingAction
from deepsearch.research_agent_errors import CodingActionNotImplementedError


class CodingActionHandler(AbstractActionHandler):
    action_name = ACTION_CODING

    def handle(self, session: ResearchSession, action: CodingAction) -> SessionUpdate:
        raise CodingActionNotImplementedError(
            f"coding action is not implemented (issue: {action.coding_issue[:120]!r})")

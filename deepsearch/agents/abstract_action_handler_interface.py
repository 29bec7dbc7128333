"""Contract shared by the per-action handlers (answer/reflect/search/visit/coding)."""

from abc import ABC, abstractmethod

from deepsearch.agents.research_session_state import ResearchSession
from deepsearch.agents.session_update import SessionUpdate
from deepsearch.agents.step_action_types_and_schema import StepAction


class AbstractActionHandler(ABC):
    """Reads the session, calls its collaborators, returns a SessionUpdate.

    Handlers must treat ``session`` as read-only; the controller applies the
    returned delta.
    """

    action_name: str = ""

    @abstractmethod
    def handle(self, session: ResearchSession, action: StepAction) -> SessionUpdate:
        ...

"""Answer evaluation: which criteria a question needs, and whether an answer meets them.

Why: "Definitive" alone lets through answers that are confidently stale
("the latest version is 3.8") or that list two items when five were asked
for.  So each question is first classified once (memoized by the
controller) into the criteria it needs, and every candidate answer is then
checked against those criteria in order, stopping at the first failure.

Criteria:
  - definitive : always; rejects "I don't know" / hedged answers
  - freshness  : time-sensitive questions; rejects answers that are likely outdated
  - plurality  : questions asking for N items / several things; rejects answers with too few
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List

from deepsearch.agents.step_action_types_and_schema import AnswerAction
from deepsearch.llm.structured_output_generator import StructuredOutputGenerator

logger = logging.getLogger(__name__)

CRITERION_DEFINITIVE = "definitive"
CRITERION_FRESHNESS = "freshness"
CRITERION_PLURALITY = "plurality"

PURPOSE_EVALUATOR = "evaluator"


@dataclass(frozen=True)
class AnswerEvaluation:
    passed: bool
    reasoning: str
    criterion: str = CRITERION_DEFINITIVE


class AnswerEvaluator(ABC):
    """Criteria provider and answer evaluator in one collaborator."""

    @abstractmethod
    def evaluate_question(self, question: str) -> List[str]:
        """Criteria names the answers to ``question`` must satisfy."""
        ...

    @abstractmethod
    def evaluate_answer(self, question: str, action: AnswerAction, criteria: List[str],
                        visited_urls: Iterable[str]) -> AnswerEvaluation:
        ...


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

_QUESTION_SCHEMA = {
    "type": "object",
    "properties": {
        "think": {"type": "string", "description": "Short reasoning about what a good answer needs"},
        "needs_freshness": {"type": "boolean", "description": "Answer depends on recent or time-sensitive facts"},
        "needs_plurality": {"type": "boolean", "description": "Question asks for multiple items or a specific count"},
    },
    "required": ["think", "needs_freshness", "needs_plurality"],
}

_QUESTION_PROMPT = """You are an evaluator that determines which checks an answer to a question must pass.

<rules>
1. Freshness: does the question ask about something that changes over time (current roles, latest versions, prices, recent events, "now", "this year")? Then needs_freshness is true.
2. Plurality: does the question ask for several items, a list, a comparison of multiple things, or an explicit count ("three reasons", "top 5")? Then needs_plurality is true.
3. Greetings and timeless factual questions need neither.
</rules>

<examples>
Question: "who is the current ceo of openai?"
{"think": "Leadership changes over time, single person expected.", "needs_freshness": true, "needs_plurality": false}

Question: "list 5 differences between python and ruby"
{"think": "Explicitly asks for five items, language facts are stable.", "needs_freshness": false, "needs_plurality": true}

Question: "what is the boiling point of water at sea level?"
{"think": "Stable scientific fact, one value.", "needs_freshness": false, "needs_plurality": false}
</examples>"""

_ANSWER_SCHEMA = {
    "type": "object",
    "properties": {
        "think": {"type": "string", "description": "Explanation of why the answer passes or fails"},
        "pass": {"type": "boolean", "description": "Whether the answer passes this check"},
    },
    "required": ["think", "pass"],
}

_DEFINITIVE_PROMPT = """You are an evaluator of answer definitiveness. Analyze if the given answer provides a definitive response or not.

Core Evaluation Criterion:
- Definitiveness: "I don't know", "lack of information", "doesn't exist", "not sure" or highly uncertain/ambiguous responses are **not** definitive, must return false!

Examples:

Question: "What are the system requirements for running Python 3.9?"
Answer: "I'm not entirely sure, but I think you need a computer with some RAM."
Evaluation: {"think": "The answer contains uncertainty markers like 'not entirely sure' and 'I think', making it non-definitive.", "pass": false}

Question: "What are the system requirements for running Python 3.9?"
Answer: "Python 3.9 requires Windows 7 or later, macOS 10.11 or later, or Linux."
Evaluation: {"think": "The answer makes clear, definitive statements without uncertainty markers or ambiguity.", "pass": true}

Question: "what is the twitter account of jina ai's founder?"
Answer: "The provided text does not contain the Twitter account of Jina AI's founder."
Evaluation: {"think": "The answer indicates a lack of information rather than providing a definitive response.", "pass": false}"""

_FRESHNESS_PROMPT = """You are an evaluator that checks whether an answer is still up to date.

Current date: {date}

Rules:
- If the answer relies on facts that have likely changed by the current date (outdated roles, superseded versions, old prices, events described as upcoming that already happened), it fails.
- If the answer explicitly dates its facts and they are recent enough for the question, it passes.
- References below are the sources the answer cites; older sources for fast-changing topics are a red flag."""

_PLURALITY_PROMPT = """You are an evaluator that checks whether an answer provides enough items.

Rules:
- If the question asks for a specific number of items, the answer must provide at least that many distinct items.
- If the question asks for a list or several things without a number, the answer must provide more than one distinct item.
- Repeated or overlapping items count once."""

_CRITERION_PROMPTS = {
    CRITERION_DEFINITIVE: _DEFINITIVE_PROMPT,
    CRITERION_FRESHNESS: _FRESHNESS_PROMPT,
    CRITERION_PLURALITY: _PLURALITY_PROMPT,
}


class LLMAnswerEvaluator(AnswerEvaluator):
    """One structured LLM call per question classification and per criterion."""

    def __init__(self, generator: StructuredOutputGenerator):
        self.generator = generator

    def evaluate_question(self, question: str) -> List[str]:
        payload = self.generator.generate_object(
            purpose=PURPOSE_EVALUATOR,
            schema=_QUESTION_SCHEMA,
            system_prompt=_QUESTION_PROMPT,
            messages=[{"role": "user", "content": f"Question: {json.dumps(question, ensure_ascii=False)}"}],
        )
        criteria = [CRITERION_DEFINITIVE]
        if payload.get("needs_freshness"):
            criteria.append(CRITERION_FRESHNESS)
        if payload.get("needs_plurality"):
            criteria.append(CRITERION_PLURALITY)
        logger.info("Question criteria: question=%s criteria=%s", question[:80], criteria)
        return criteria

    def evaluate_answer(self, question: str, action: AnswerAction, criteria: List[str],
                        visited_urls: Iterable[str]) -> AnswerEvaluation:
        criteria = list(criteria or [CRITERION_DEFINITIVE])
        references = [
            {"exact_quote": ref.exact_quote, "url": ref.url, "title": ref.title}
            for ref in action.references
        ]
        last = AnswerEvaluation(passed=True, reasoning="No criteria to check.")
        for criterion in criteria:
            prompt = _CRITERION_PROMPTS.get(criterion)
            if prompt is None:
                logger.warning("Unknown evaluation criterion %r skipped", criterion)
                continue
            user_content = (
                f"Question: {json.dumps(question, ensure_ascii=False)}\n"
                f"Answer: {json.dumps(action.answer, ensure_ascii=False)}"
            )
            if criterion == CRITERION_FRESHNESS and references:
                user_content += f"\nReferences: {json.dumps(references, ensure_ascii=False)}"
            payload = self.generator.generate_object(
                purpose=PURPOSE_EVALUATOR,
                schema=_ANSWER_SCHEMA,
                system_prompt=prompt.replace("{date}", datetime.now(timezone.utc).date().isoformat()),
                messages=[{"role": "user", "content": user_content}],
            )
            last = AnswerEvaluation(passed=bool(payload["pass"]), reasoning=payload.get("think", ""),
                                    criterion=criterion)
            logger.info("Evaluation: criterion=%s pass=%s reason=%s",
                        criterion, last.passed, last.reasoning[:160])
            if not last.passed:
                return last
        return last

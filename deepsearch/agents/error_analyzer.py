"""Error analysis of a rejected answer: recap, blame, improvement, sub-questions."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Sequence

from deepsearch.llm.structured_output_generator import StructuredOutputGenerator

logger = logging.getLogger(__name__)

PURPOSE_ERROR_ANALYZER = "error_analyzer"


@dataclass(frozen=True)
class ErrorAnalysis:
    recap: str
    blame: str
    improvement: str
    questions_to_answer: List[str] = field(default_factory=list)


class ErrorAnalyzer(ABC):

    @abstractmethod
    def analyze_steps(self, diary: Sequence[str]) -> ErrorAnalysis:
        ...


_SCHEMA = {
    "type": "object",
    "properties": {
        "recap": {"type": "string", "description": "Recap of the actions taken and the steps conducted"},
        "blame": {"type": "string", "description": "Which action or the step was the root cause of the answer rejection"},
        "improvement": {"type": "string", "description": "Suggested key improvement for the next iteration, concise, no bullet points"},
        "questions_to_answer": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Sub-questions whose answers would fix the gap that caused the rejection",
        },
    },
    "required": ["recap", "blame", "improvement"],
}

_PROMPT = """You are an expert at analyzing search and reasoning processes. Your task is to analyze the given sequence of steps and identify what went wrong in the search process.

<rules>
1. The sequence of actions taken
2. The effectiveness of each step
3. The logic between consecutive steps
4. Alternative approaches that could have been taken
5. Signs of getting stuck in repetitive patterns
6. Whether the final answer matches the accumulated information

Analyze the steps and provide detailed feedback following these guidelines:
- In the recap: Summarize key actions chronologically, highlight patterns, and identify where the process started to go wrong
- In the blame: Point to specific steps or patterns that led to the inadequate answer
- In the improvement: Provide actionable suggestions that could have led to a better outcome
- In questions_to_answer: List the key sub-questions that must be answered before the original question can be answered
</rules>

<example>
<steps>
At step 1, you took the **search** action and look for external information for the question: "how old is jina ai ceo?".
In particular, you tried to search for the following keywords: "jina ai ceo age".
At step 2, you took the **search** action again with the keywords: han xiao birthday.
But then you realized you have already searched for these keywords before.
At step 3, you took **answer** action but evaluator thinks it is not a good answer:
Your answer: The age of the Jina AI CEO cannot be definitively determined from the provided information.
</steps>
{"recap": "Two searches for age and birthday, the second a repeat, then a non-answer.", "blame": "Repeating the same birthday search instead of triangulating from career milestones.", "improvement": "Stop repeating searches; estimate age from graduation year or founding dates found in professional profiles.", "questions_to_answer": ["When did Han Xiao graduate from university?", "What year was Han Xiao born?"]}
</example>

Review the steps below carefully and generate your analysis following this format."""


class LLMErrorAnalyzer(ErrorAnalyzer):

    def __init__(self, generator: StructuredOutputGenerator):
        self.generator = generator

    def analyze_steps(self, diary: Sequence[str]) -> ErrorAnalysis:
        payload = self.generator.generate_object(
            purpose=PURPOSE_ERROR_ANALYZER,
            schema=_SCHEMA,
            system_prompt=_PROMPT,
            messages=[{"role": "user", "content": "<steps>\n" + "\n".join(diary) + "\n</steps>"}],
        )
        analysis = ErrorAnalysis(
            recap=payload.get("recap", ""),
            blame=payload.get("blame", ""),
            improvement=payload.get("improvement", ""),
            questions_to_answer=[q for q in payload.get("questions_to_answer") or [] if q.strip()],
        )
        logger.info("Error analysis: blame=%s sub_questions=%d",
                    analysis.blame[:160], len(analysis.questions_to_answer))
        return analysis

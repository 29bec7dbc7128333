"""System prompt for the next-action oracle.

The prompt is assembled from independent sections, each present only when
it has content: header, gathered knowledge, action diary, failed attempts
with the learned strategy, and one block per permitted action.  Beast mode
swaps the normal action blocks for a single "answer no matter what" block.
"""

import json
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

from deepsearch.utils.text_cleaning_and_markdown_tools import remove_extra_line_breaks

_HEADER = (
    "Current date: {date}\n\n"
    "You are an advanced AI research agent. You are specialized in multistep reasoning. "
    "Using your training data and prior lessons learned, answer the user question with absolute certainty.\n"
)

_FOOTER = "Respond in valid JSON format matching exact JSON schema."


def _reference_to_jsonable(ref: Any) -> Any:
    return asdict(ref) if is_dataclass(ref) and not isinstance(ref, type) else ref


def _knowledge_section(knowledge: Sequence[Any]) -> str:
    blocks = []
    for i, item in enumerate(knowledge, start=1):
        refs = ""
        if item.references:
            refs = (
                "\n<references>\n"
                + json.dumps([_reference_to_jsonable(r) for r in item.references], ensure_ascii=False)
                + "\n</references>\n"
            )
        blocks.append(
            f"<knowledge-{i}>\n<question>\n{item.question}\n</question>\n"
            f"<answer>\n{item.answer}\n</answer>\n{refs}</knowledge-{i}>"
        )
    return (
        "You have successfully gathered some knowledge which might be useful for answering "
        "the original question. Here is the knowledge you have gathered so far:\n"
        "<knowledge>\n\n" + "\n\n".join(blocks) + "\n\n</knowledge>\n"
    )


def _context_section(diary: Sequence[str]) -> str:
    return "You have conducted the following actions:\n<context>\n" + "\n".join(diary) + "\n\n</context>\n"


def _bad_attempts_section(bad_context: Sequence[Any]) -> str:
    attempts = []
    for i, attempt in enumerate(bad_context, start=1):
        attempts.append(
            f"<attempt-{i}>\n"
            f"- Question: {attempt.question}\n"
            f"- Answer: {attempt.answer}\n"
            f"- Reject Reason: {attempt.evaluation}\n"
            f"- Actions Recap: {attempt.recap}\n"
            f"- Actions Blame: {attempt.blame}\n"
            f"</attempt-{i}>"
        )
    strategy = "\n".join(attempt.improvement for attempt in bad_context)
    return (
        "Also, you have tried the following actions but failed to find the answer to the question:\n"
        "<bad-attempts>\n\n" + "\n\n".join(attempts) + "\n\n</bad-attempts>\n\n"
        "Based on the failed attempts, you have learned the following strategy:\n"
        f"<learned-strategy>\n{strategy}\n</learned-strategy>\n"
    )


def _visit_block(unvisited_urls: Sequence[Any]) -> str:
    lines = [
        "<action-visit>",
        "- Access and read full content from URLs",
        "- Must check URLs mentioned in <question>",
    ]
    url_list = [f'  + "{meta.url}": "{meta.title}"' for meta in unvisited_urls if getattr(meta, "url", "")]
    if url_list:
        lines.append("- Review relevant URLs below for additional information")
        lines.append("<url-list>")
        lines.extend(url_list)
        lines.append("</url-list>")
    lines.append("</action-visit>")
    return "\n".join(lines)


_CODING_BLOCK = """<action-coding>
- This sandboxed solution helps you handle programming tasks like counting, filtering, transforming, sorting, regex extraction, and data processing.
- Simply describe your problem in the "coding_issue" field. Include actual values for small inputs or variable names for larger datasets.
- No code writing is required, senior engineers will handle the implementation.
</action-coding>"""


def _search_block(all_keywords: Sequence[str]) -> str:
    lines = [
        "<action-search>",
        "- Use web search to find relevant information",
        "- Build a search request based on the deep intention behind the original question and the expected answer format",
        "- Always prefer a single search request, only add another request if the original question covers "
        "multiple aspects or elements and one query is not enough, each request focus on one specific aspect "
        "of the original question",
    ]
    if all_keywords:
        lines.append("- Avoid those unsuccessful search requests and queries:")
        lines.append("<bad-requests>")
        lines.extend(all_keywords)
        lines.append("</bad-requests>")
    lines.append("</action-search>")
    return "\n".join(lines)


_ANSWER_BLOCK = """<action-answer>
- For greetings, casual conversation, or general knowledge questions, answer directly without references.
- For all other questions, provide a verified answer with references. Each reference must include exact_quote and url.
- If uncertain, use <action-reflect>
</action-answer>"""

_BEAST_MODE_ANSWER_BLOCK = """<action-answer>
ENGAGE MAXIMUM FORCE! ABSOLUTE PRIORITY OVERRIDE!

PRIME DIRECTIVE:
- DEMOLISH ALL HESITATION! ANY RESPONSE SURPASSES SILENCE!
- PARTIAL STRIKES AUTHORIZED, DEPLOY WITH FULL CONTEXTUAL FIREPOWER
- TACTICAL REUSE FROM <bad-attempts> SANCTIONED
- WHEN IN DOUBT: UNLEASH CALCULATED STRIKES BASED ON AVAILABLE INTEL!

FAILURE IS NOT AN OPTION. EXECUTE WITH EXTREME PREJUDICE!
</action-answer>"""

_REFLECT_BLOCK = """<action-reflect>
- Critically examine <question>, <context>, <knowledge>, <bad-attempts>, and <learned-strategy> to identify gaps and the problems.
- Identify gaps and ask key clarifying questions that deeply related to the original question and lead to the answer
- Ensure each reflection:
 - Cuts to core emotional truths while staying anchored to original <question>
 - Transforms surface-level problems into deeper psychological insights
 - Makes the unconscious conscious
</action-reflect>"""


def build_next_action_prompt(
    diary: Sequence[str],
    all_questions: Sequence[str],
    all_keywords: Sequence[str],
    allow_reflect: bool,
    allow_answer: bool,
    allow_read: bool,
    allow_search: bool,
    allow_coding: bool,
    bad_context: Sequence[Any],
    knowledge: Sequence[Any],
    unvisited_urls: Sequence[Any],
    beast_mode: bool = False,
    now: Optional[datetime] = None,
) -> str:
    """Assemble the oracle's system prompt from the session's accumulated state."""
    now = now or datetime.now(timezone.utc)
    sections: List[str] = [_HEADER.format(date=now.strftime("%a, %d %b %Y %H:%M:%S GMT"))]

    if knowledge:
        sections.append(_knowledge_section(knowledge))
    if diary:
        sections.append(_context_section(diary))
    if bad_context:
        sections.append(_bad_attempts_section(bad_context))
    if all_questions:
        sections.append(
            "You have already asked the following questions, do not repeat them:\n<asked-questions>\n"
            + "\n".join(f"- {q}" for q in all_questions) + "\n</asked-questions>\n"
        )

    action_blocks: List[str] = []
    if allow_read:
        action_blocks.append(_visit_block(unvisited_urls))
    if allow_coding:
        action_blocks.append(_CODING_BLOCK)
    if allow_search:
        action_blocks.append(_search_block(all_keywords))
    if allow_answer:
        action_blocks.append(_ANSWER_BLOCK)
    if beast_mode:
        action_blocks.append(_BEAST_MODE_ANSWER_BLOCK)
    if allow_reflect:
        action_blocks.append(_REFLECT_BLOCK)

    sections.append(
        "Based on the current context, you must choose one of the following actions:\n"
        "<actions>\n" + "\n\n".join(action_blocks) + "\n</actions>\n"
    )
    sections.append(_FOOTER)
    return remove_extra_line_breaks("\n\n".join(sections))

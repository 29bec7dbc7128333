"""Semantic deduplication of questions and keyword queries.

Why: The oracle keeps proposing "new" queries that are rephrasings of ones
already run.  Candidates are filtered against each other and against the
history: a candidate survives only if its similarity to every accepted
candidate and every existing item is below 0.2.  Queries that differ in
search operators (site:, filetype:, lang:, quoting, +/-) are never
duplicates of each other.

Exact (case/whitespace-insensitive) repeats are removed locally before the
LLM is asked, and the LLM's output is intersected with the candidates so it
can only drop queries, never invent or rewrite them.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import List, Sequence

from deepsearch.llm.structured_output_generator import StructuredOutputGenerator

logger = logging.getLogger(__name__)

PURPOSE_DEDUP = "dedup"
SIMILARITY_THRESHOLD = 0.2


class QueryDeduplicator(ABC):

    @abstractmethod
    def dedup_queries(self, candidates: Sequence[str], existing: Sequence[str]) -> List[str]:
        """Candidates (in order) that are not duplicates of each other or of ``existing``."""
        ...


def _normalize_for_exact_match(text: str) -> str:
    return " ".join(text.lower().split())


def drop_exact_duplicates(candidates: Sequence[str], existing: Sequence[str]) -> List[str]:
    """Remove blank candidates and literal repeats, keeping first occurrence order."""
    seen = {_normalize_for_exact_match(q) for q in existing}
    unique: List[str] = []
    for candidate in candidates:
        key = _normalize_for_exact_match(candidate)
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


_SCHEMA = {
    "type": "object",
    "properties": {
        "think": {"type": "string", "description": "Strategic reasoning about the overall deduplication approach"},
        "unique_queries": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Array of semantically unique queries, copied verbatim from SetA",
        },
    },
    "required": ["think", "unique_queries"],
}

_PROMPT = f"""You are an expert in semantic similarity analysis. Given a set of queries (setA) and a set of queries (setB)

<rules>
Function FilterSetA(setA, setB, threshold):
    filteredA = empty set

    for each candidateQuery in setA:
        isValid = true

        // Check similarity with already accepted queries in filteredA
        for each acceptedQuery in filteredA:
            similarity = calculateSimilarity(candidateQuery, acceptedQuery)
            if similarity >= threshold:
                isValid = false
                break

        // If passed first check, compare with set B
        if isValid:
            for each queryB in setB:
                similarity = calculateSimilarity(candidateQuery, queryB)
                if similarity >= threshold:
                    isValid = false
                    break

        // If passed all checks, add to filtered set
        if isValid:
            add candidateQuery to filteredA

    return filteredA
</rules>

<similarity-definition>
1. Consider semantic meaning and query intent, not just lexical similarity
2. Account for different phrasings of the same information need
3. Queries with same base keywords but different operators are NOT duplicates
4. Different aspects or perspectives of the same topic are not duplicates
5. Consider query specificity - a more specific query is not a duplicate of a general one
6. Search operators that make queries behave differently:
   - Different site: filters (e.g., site:youtube.com vs site:github.com)
   - Different file types (e.g., filetype:pdf vs filetype:doc)
   - Different language/location filters (e.g., lang:en vs lang:es)
   - Different exact match phrases (e.g., "exact phrase" vs no quotes)
   - Different inclusion/exclusion (+/- operators)
   - Different title/body filters (intitle: vs inbody:)
</similarity-definition>

Run FilterSetA with threshold set to {SIMILARITY_THRESHOLD} and return filteredA as unique_queries, copying each query verbatim."""


class LLMQueryDeduplicator(QueryDeduplicator):

    def __init__(self, generator: StructuredOutputGenerator):
        self.generator = generator

    def dedup_queries(self, candidates: Sequence[str], existing: Sequence[str]) -> List[str]:
        remaining = drop_exact_duplicates(candidates, existing)
        if len(remaining) <= 1 and not existing:
            return remaining
        if not remaining:
            return []

        payload = self.generator.generate_object(
            purpose=PURPOSE_DEDUP,
            schema=_SCHEMA,
            system_prompt=_PROMPT,
            messages=[{"role": "user", "content": (
                f"SetA: {json.dumps(remaining, ensure_ascii=False)}\n"
                f"SetB: {json.dumps(list(existing), ensure_ascii=False)}"
            )}],
        )
        kept = {_normalize_for_exact_match(q) for q in payload.get("unique_queries") or []}
        unique = [q for q in remaining if _normalize_for_exact_match(q) in kept]
        logger.info("Dedup: candidates=%d existing=%d unique=%s", len(candidates), len(existing), unique)
        return unique

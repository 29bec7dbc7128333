"""Query rewriting: natural-language search requests into keyword queries with operators."""

import logging
from abc import ABC, abstractmethod
from typing import List

from deepsearch.agents.step_action_types_and_schema import SearchAction
from deepsearch.llm.structured_output_generator import StructuredOutputGenerator

logger = logging.getLogger(__name__)

PURPOSE_QUERY_REWRITER = "query_rewriter"
MAX_QUERIES_PER_REQUEST = 3


class QueryRewriter(ABC):

    @abstractmethod
    def rewrite_query(self, action: SearchAction) -> List[str]:
        """Keyword queries for every request in ``action`` (may fan out)."""
        ...


_SCHEMA = {
    "type": "object",
    "properties": {
        "think": {"type": "string", "description": "Strategic reasoning about query complexity and search approach"},
        "queries": {
            "type": "array",
            "maxItems": MAX_QUERIES_PER_REQUEST,
            "items": {"type": "string", "description": "Search query, must be less than 30 characters"},
            "description": "Array of search queries, orthogonal to each other",
        },
    },
    "required": ["think", "queries"],
}

_PROMPT = """You are an expert Information Retrieval Assistant. Transform user queries into precise keyword combinations with strategic reasoning and appropriate search operators.

<rules>
1. Generate search queries that directly include appropriate operators
2. Keep base keywords minimal: 2-3 words preferred
3. Use exact match quotes for specific phrases that must stay together
4. Split queries only when necessary for distinctly different aspects
5. Preserve crucial qualifiers while removing fluff words
6. Make the query resistant to SEO manipulation
7. When necessary, append <query-operators> at the end only when must needed

<query-operators>
A query can't only have operators; and operators can't be at the start a query;
- "phrase" : exact match for phrases
- +term : must include term; for critical terms that must appear
- -term : exclude term; exclude irrelevant or ambiguous terms
- filetype:pdf/doc : specific file type
- site:example.com : limit to specific site
- lang:xx : language filter (ISO 639-1 code)
- loc:xx : location filter (ISO 3166-1 code)
- intitle:term : term must be in title
- inbody:term : term must be in body text
</query-operators>
</rules>

<examples>
Input Query: What's the difference between ReactJS and Vue.js for building web applications?
{"think": "Comparison query; split high-level differences from performance aspects.", "queries": ["react performance", "vue performance", "react vue comparison"]}

Input Query: How to fix a leaking kitchen faucet?
{"think": "How-to query; target both video tutorials and written guides.", "queries": ["kitchen faucet leak repair", "faucet drip fix site:youtube.com", "how to repair faucet"]}

Input Query: Latest AWS Lambda features for serverless applications
{"think": "Product research on recent updates; target official docs.", "queries": ["aws lambda features site:aws.amazon.com intitle:2025", "new features lambda serverless"]}
</examples>"""


class LLMQueryRewriter(QueryRewriter):
    """One LLM call per search request; results concatenated, blanks dropped."""

    def __init__(self, generator: StructuredOutputGenerator):
        self.generator = generator

    def rewrite_query(self, action: SearchAction) -> List[str]:
        queries: List[str] = []
        for request in action.search_requests:
            payload = self.generator.generate_object(
                purpose=PURPOSE_QUERY_REWRITER,
                schema=_SCHEMA,
                system_prompt=_PROMPT,
                messages=[{"role": "user", "content": (
                    f"Now, process this query:\nInput Query: {request}\nIntention: {action.think}"
                )}],
            )
            rewritten = [q.strip() for q in payload.get("queries") or [] if q.strip()]
            logger.info("Query rewriter: request=%s queries=%s", request[:80], rewritten)
            queries.extend(rewritten or [request])
        return queries

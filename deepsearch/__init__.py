"""DeepSearch: a step-loop research agent.

The agent answers a question by repeatedly asking an LLM to pick one of
search / visit / reflect / answer (coding is declared but disabled), feeding
each step's outcome back as diary narration and knowledge, until an answer
passes evaluation or the token budget / retry ceiling forces a final answer.

Entry point::

    from deepsearch.research_pipeline_builder import get_response
    result = get_response("who is the ceo of jina ai?")
    print(result.result.answer)
"""

"""Agent components: the step loop, its action handlers and LLM collaborators.

Module classification:

Core loop:
  - step_loop_research_controller.py: the state machine (steps, flags, beast mode)
  - research_session_state.py: per-run ledger, gap queue, counters
  - session_update.py: handler deltas and the single place they are applied
  - research_result_assembler.py: terminal-state check + caller-facing result

Actions:
  - step_action_types_and_schema.py: action variants, per-step JSON schema, payload parsing
  - answer_action_handler.py / reflect_action_handler.py / search_action_handler.py
    / visit_action_handler.py / coding_action_handler.py

LLM-backed collaborators (each behind an ABC so tests can script them):
  - next_action_prompt_builder.py + next_action_oracle.py: pick the next action
  - answer_evaluator.py: criteria per question + answer evaluation
  - error_analyzer.py: recap/blame/improvement after a rejected answer
  - query_rewriter.py: request -> keyword queries
  - query_deduplicator.py: drop semantically repeated queries/questions
"""

#!/usr/bin/env python3
"""Run one research question end to end from the command line.

Prints the final markdown answer, the URLs the agent knows about and the
token usage summary.

    python scripts/run_example.py "who is the ceo of jina ai?"
"""

import argparse
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BASE_DIR))

from deepsearch.research_agent_errors import ResearchAgentError
from deepsearch.research_pipeline_builder import build_research_pipeline, get_response
from deepsearch.utils.logger_config import setup_logging


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Answer a question with the step-loop research agent.")
    parser.add_argument("question", help="question to research")
    parser.add_argument("--config", default=None, help="path to config.yaml (default: configs/config.yaml)")
    parser.add_argument("--budget", type=int, default=None, help="token budget for the run")
    parser.add_argument("--max-bad-attempts", type=int, default=None, help="retry ceiling for the root answer")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--log-dir", default=None, help="also write logs to this directory")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level, args.log_dir, "run_example.log")

    pipeline = build_research_pipeline(args.config)
    try:
        result = get_response(args.question, token_budget=args.budget,
                              max_bad_attempts=args.max_bad_attempts, pipeline=pipeline)
    except ResearchAgentError as exc:
        print(f"Research failed: {exc}", file=sys.stderr)
        return 1

    print("=" * 60)
    print("  Final answer")
    print("=" * 60)
    print(result.result.md_answer)
    print()
    print(f"Visited URLs ({len(result.visited_urls)}):")
    for url in result.visited_urls:
        marker = "*" if url in result.read_urls else " "
        print(f"  {marker} {url}")
    print()
    summary = result.context.token_tracker.print_summary()
    print(f"Tokens used: {summary['total']}")
    for tool, usage in sorted(summary["breakdown"].items()):
        print(f"  {tool:16s} {usage['total']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

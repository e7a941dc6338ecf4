# main.py
"""Command line entry point: answer one question against a JSON dataset."""
import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

from agents.workflow import QueryWorkflow
from core.errors import ScopeError
from utils.token_tracker import token_tracker

# Load environment variables
load_dotenv()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Agentic query planning and execution engine")
    parser.add_argument("query", help="natural language question")
    parser.add_argument("--user-id", required=True, help="identity the query is scoped to")
    parser.add_argument("--session-id", default=None)
    parser.add_argument("--icp-model-id", default=None)
    parser.add_argument("--dataset", default=None, help="JSON dataset fixture (overrides the config)")
    parser.add_argument("--config", default=None, help="workflow YAML (defaults to core/workflow.yaml)")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    workflow = QueryWorkflow.from_config(config_path=args.config, dataset_path=args.dataset)
    try:
        result = asyncio.run(
            workflow.run(args.query, args.user_id, args.session_id, args.icp_model_id)
        )
    except ScopeError as e:
        print(f"❌ {e.message}", file=sys.stderr)
        return 2

    print(json.dumps(result.model_dump(mode="json", by_alias=True), indent=2))
    print(f"\nToken usage: {token_tracker.get_totals()}", file=sys.stderr)
    for purpose, usage in token_tracker.get_by_purpose().items():
        print(f"  {purpose}: {usage}", file=sys.stderr)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())

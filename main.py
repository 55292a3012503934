import asyncio
import os
import sys

from dotenv import load_dotenv

load_dotenv()

from settings import API_HOST, API_PORT, DASHBOARD_LIMIT, DEFAULT_DB_FILE, WORKER_CONCURRENCY
from src.dashboard import build_view, render_text
from src.errors import MissingField
from src.logger import log, log_session_start, log_session_end
from src.models import RUN_STATUSES
from src.store import FeedbackStore, RunStore
from src.triage import triage


def require_api_key() -> None:
    """Exit with instructions if the classifier backend has no credentials."""
    if not os.environ.get("ANTHROPIC_API_KEY"):
        log("Error: ANTHROPIC_API_KEY environment variable not set")
        log("\nPlease set your API key:")
        log("  export ANTHROPIC_API_KEY=your_key_here")
        log("\nOr add to .env file:")
        log("  ANTHROPIC_API_KEY=your_key_here")
        sys.exit(1)


def build_pipeline(db_path: str):
    """Wire the production backends to the SQLite stores."""
    from src.pipeline import AnalysisPipeline
    from src.ports import AnthropicClassifier, HuggingFaceSentiment

    store = FeedbackStore(db_path)
    runs = RunStore(db_path)
    return AnalysisPipeline(AnthropicClassifier(), HuggingFaceSentiment(), store, runs)


def cmd_serve(args) -> None:
    import uvicorn
    from src.api import create_app

    require_api_key()
    pipeline = build_pipeline(args.db)
    app = create_app(pipeline, pipeline.store, concurrency=args.workers)
    uvicorn.run(app, host=args.host, port=args.port)


def cmd_submit(args) -> None:
    require_api_key()
    log_session_start("PulsePoint submit")

    pipeline = build_pipeline(args.db)
    try:
        run = asyncio.run(pipeline.process(args.text))
    except MissingField as e:
        log(f"Error: {e.message}")
        sys.exit(1)

    if run.status != "complete":
        log(f"\nRun {run.run_id} failed at step '{run.failed_step}': {run.error}")
        log_session_end("PulsePoint submit")
        sys.exit(1)

    record = pipeline.store.get(run.record_id)
    result = triage(record)
    log(f"\nRecord #{record.id}")
    log(f"  Category:  {record.category}")
    log(f"  Sentiment: {record.sentiment:.2f}")
    log(f"  Priority:  {result.tier}")
    log(f"  {result.derivation}")
    log_session_end("PulsePoint submit")


def cmd_dashboard(args) -> None:
    store = FeedbackStore(args.db)
    order = "priority" if args.by_priority else "recent"
    view = build_view(store.recent(args.limit), order=order)
    print(render_text(view))


def cmd_runs(args) -> None:
    runs = RunStore(args.db).list_runs(status=args.status, limit=args.limit)
    if not runs:
        print("No runs found.")
        return

    for run in runs:
        attempts = ", ".join(f"{step}={count}" for step, count in run.attempts.items())
        print(f"{run.run_id}  {run.status:<12}  {run.created_at}  attempts: {attempts}")
        if run.status == "failed":
            print(f"    failed at {run.failed_step}: {run.error}")
        elif run.record_id is not None:
            print(f"    record #{run.record_id}: {run.category} ({run.sentiment:.2f})")


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(
        description="Analyze and triage free-text user feedback",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the HTTP API and dashboard
  python main.py serve --port 8787

  # Analyze one piece of feedback synchronously
  python main.py submit "App crashes on login"

  # Show the most urgent feedback first
  python main.py dashboard --by-priority

  # List runs that exhausted their retries
  python main.py runs --status failed
        """
    )
    parser.add_argument("--db", default=DEFAULT_DB_FILE,
                        help=f"SQLite database file (default: {DEFAULT_DB_FILE})")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API, dashboard and pipeline workers")
    serve.add_argument("--host", default=API_HOST)
    serve.add_argument("--port", type=int, default=API_PORT)
    serve.add_argument("--workers", type=int, default=WORKER_CONCURRENCY,
                       help=f"Concurrent pipeline runs (default: {WORKER_CONCURRENCY})")
    serve.set_defaults(func=cmd_serve)

    submit = subparsers.add_parser("submit", help="Analyze one feedback text and print the result")
    submit.add_argument("text")
    submit.set_defaults(func=cmd_submit)

    dashboard = subparsers.add_parser("dashboard", help="Print the triage table")
    dashboard.add_argument("--limit", type=int, default=DASHBOARD_LIMIT)
    dashboard.add_argument("--by-priority", action="store_true",
                           help="Rank by urgency instead of newest first")
    dashboard.set_defaults(func=cmd_dashboard)

    runs = subparsers.add_parser("runs", help="List analysis runs")
    runs.add_argument("--status", choices=RUN_STATUSES)
    runs.add_argument("--limit", type=int, default=100)
    runs.set_defaults(func=cmd_runs)

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()

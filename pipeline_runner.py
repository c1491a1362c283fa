#!/usr/bin/env python3
"""
Pipeline Runner
Entry point for schema setup, one-off ingestion cycles, the background
ingestion service, and the list/search query surface.
"""

import sys
import json
import signal
import logging
import argparse
import threading
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import config

logger = logging.getLogger(__name__)


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "name": record.name
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def setup_logging(log_format: str = config.LOG_FORMAT, level=logging.INFO) -> None:
    """Configure the root logger once, removing existing handlers to avoid duplication."""
    handler = logging.StreamHandler(sys.stderr)
    if log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))

    root_logger = logging.getLogger()
    for h in root_logger.handlers[:]:
        root_logger.removeHandler(h)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


def open_repository():
    """Creates the owned engine, applies the schema, and wraps it in the store."""
    from database.db_utils import create_db_engine, apply_schema
    from database.repositories.yield_record_repository import YieldRecordRepository

    engine = create_db_engine(config.require_database_url())
    repository = YieldRecordRepository(engine)
    try:
        apply_schema(engine)
    except Exception:
        repository.close()
        raise
    return repository


def build_scheduler(repository):
    from api_clients.defillama_client import DefiLlamaClient
    from api_clients.embedding_client import get_embedding_client
    from data_ingestion.ingestion_scheduler import IngestionScheduler

    return IngestionScheduler(
        feed_client=DefiLlamaClient(),
        repository=repository,
        embedding_client=get_embedding_client(),
    )


def cmd_apply_schema(args) -> int:
    repository = open_repository()
    repository.close()
    logger.info("Database schema applied successfully")
    return 0


def cmd_run_once(args) -> int:
    repository = open_repository()
    try:
        scheduler = build_scheduler(repository)
        report = scheduler.run_cycle()
        print(json.dumps(report.as_dict()))
        return 0 if report.error is None else 2
    finally:
        repository.close()


def cmd_serve(args) -> int:
    repository = open_repository()
    scheduler = build_scheduler(repository)
    shutdown = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        scheduler.start()
        shutdown.wait()
    finally:
        scheduler.stop()
        repository.close()
    return 0


def cmd_list(args) -> int:
    from retrieval.similarity_search import SimilaritySearch

    repository = open_repository()
    try:
        for record in SimilaritySearch(repository).list_records(args.limit):
            print(json.dumps(record.to_dict()))
    finally:
        repository.close()
    return 0


def cmd_search(args) -> int:
    from api_clients.embedding_client import get_embedding_client
    from retrieval.similarity_search import SimilaritySearch

    repository = open_repository()
    try:
        search = SimilaritySearch(repository, embedding_client=get_embedding_client())
        if args.vector is not None:
            results = search.search_records(json.loads(args.vector), threshold=args.threshold, top_k=args.top_k)
        else:
            results = search.search_by_text(args.text, threshold=args.threshold, top_k=args.top_k)
        for scored in results:
            print(json.dumps({"similarity": scored.similarity, **scored.record.to_dict()}))
    finally:
        repository.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pool yield snapshot ingestion and similarity search")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("apply_schema", help="Create or verify the yield_data schema").set_defaults(func=cmd_apply_schema)
    subparsers.add_parser("run_once", help="Run a single ingestion cycle").set_defaults(func=cmd_run_once)
    subparsers.add_parser("serve", help="Run the ingestion scheduler until interrupted").set_defaults(func=cmd_serve)

    list_parser = subparsers.add_parser("list", help="Print stored snapshots, newest first")
    list_parser.add_argument("--limit", type=int, default=None)
    list_parser.set_defaults(func=cmd_list)

    search_parser = subparsers.add_parser("search", help="Rank snapshots by similarity")
    query = search_parser.add_mutually_exclusive_group(required=True)
    query.add_argument("--text", help="Free-text query, embedded before searching")
    query.add_argument("--vector", help="Query vector as a JSON array")
    search_parser.add_argument("--threshold", type=float, default=0.5)
    search_parser.add_argument("--top-k", dest="top_k", type=int, default=5)
    search_parser.set_defaults(func=cmd_search)

    return parser


def main(argv=None) -> int:
    """Main entry point for pipeline runner."""
    setup_logging()
    args = build_parser().parse_args(argv)
    logger.info(f"Starting pipeline step: {args.command}")

    try:
        return args.func(args)
    except config.ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Error executing {args.command}: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Replay newline-delimited JSON pair events into the SQLite consumer.

This stands in for the host dispatcher during development: each
non-empty line is delivered to process() as raw bytes.

Usage:
    python scripts/run_consumer.py events.jsonl

    # From stdin, with a custom database
    cat events.jsonl | python scripts/run_consumer.py - --db-path data/pairs.sqlite

    # Stop at the first bad event
    python scripts/run_consumer.py events.jsonl --fail-fast
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import structlog
from dotenv import load_dotenv

from soroswap_pairs.config import load_config
from soroswap_pairs.consumer import new
from soroswap_pairs.errors import SoroswapPairsError, StorageInitError
from soroswap_pairs.plugin import Message


def setup_logging(log_level: str = "INFO") -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def replay(consumer, lines, fail_fast: bool = False) -> int:
    """
    Feed each line to the consumer.

    Returns:
        Number of events that failed
    """
    logger = structlog.get_logger(__name__)
    failures = 0

    for line_no, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue

        try:
            consumer.process(Message(payload=line.encode("utf-8"), metadata={"line": line_no}))
        except SoroswapPairsError as e:
            failures += 1
            logger.error("event_failed", line=line_no, error=str(e))
            if fail_fast:
                break

    return failures


def main():
    parser = argparse.ArgumentParser(description="Replay pair events into SQLite")
    parser.add_argument("events", help="JSONL file of events, or - for stdin")
    parser.add_argument("--config", default="config/consumer.yaml", help="YAML config file")
    parser.add_argument("--db-path", help="Override the SQLite path")
    parser.add_argument("--fail-fast", action="store_true", help="Stop at the first failed event")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )

    args = parser.parse_args()

    load_dotenv()
    setup_logging(args.log_level)
    logger = structlog.get_logger(__name__)

    config = load_config(args.config)
    if args.db_path:
        config["db_path"] = args.db_path

    consumer = new()
    try:
        consumer.initialize(config)
    except StorageInitError as e:
        logger.error("consumer_init_failed", error=str(e))
        consumer.close()
        sys.exit(1)

    failures = 0
    try:
        if args.events == "-":
            failures = replay(consumer, sys.stdin, args.fail_fast)
        else:
            with open(args.events) as f:
                failures = replay(consumer, f, args.fail_fast)
    except KeyboardInterrupt:
        logger.info("replay_interrupted")
    finally:
        stats = consumer.get_stats()
        consumer.close()

    logger.info("replay_complete", **stats)
    print(json.dumps(stats, indent=2))

    if failures and args.fail_fast:
        sys.exit(1)


if __name__ == "__main__":
    main()

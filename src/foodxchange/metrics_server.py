"""
Standalone /metrics endpoint for the foodx_* Prometheus series

With --db, the stored-entity gauge is refreshed from that database every
--refresh seconds; counters only move in the process that runs the façade.

Usage:
    python -m foodxchange.metrics_server --port 9090 --db marketplace.db
"""

import argparse
import time
from pathlib import Path

from foodxchange.kernel.logging import configure_logging, get_logger
from foodxchange.kernel.metrics import start_metrics_server

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="FoodXchange metrics endpoint")
    parser.add_argument("--port", type=int, default=9090, help="Port to listen on")
    parser.add_argument(
        "--db", type=Path, default=None, help="Database whose entity counts are exported"
    )
    parser.add_argument(
        "--refresh", type=float, default=15.0, help="Seconds between entity count refreshes"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
    )
    parser.add_argument("--json-logs", action="store_true", help="JSON log lines")
    return parser


def main() -> None:
    args = build_parser().parse_args()
    configure_logging(json_output=args.json_logs, log_level=args.log_level)

    exchange = None
    if args.db is not None:
        from foodxchange.exchange import Exchange

        exchange = Exchange(args.db)

    start_metrics_server(port=args.port)
    logger.info("Metrics endpoint up", port=args.port, db_path=str(args.db) if args.db else None)

    try:
        while True:
            if exchange is not None:
                exchange.entity_counts()
            time.sleep(args.refresh)
    except KeyboardInterrupt:
        logger.info("Shutting down metrics server")


if __name__ == "__main__":
    main()

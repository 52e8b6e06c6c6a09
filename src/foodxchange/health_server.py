"""
Health endpoints for the marketplace engine

/health/live answers as long as the process does. /health/ready requires an
initialized entity store. /health reports stored entities per collection and,
when an Exchange is attached, the size of each search index.
"""

import sqlite3
from contextlib import closing
from pathlib import Path
from typing import TYPE_CHECKING, Any

from flask import Flask, jsonify

from foodxchange.kernel.logging import get_logger

if TYPE_CHECKING:
    from foodxchange.exchange import Exchange

logger = get_logger(__name__)

app = Flask(__name__)

SERVICE = "foodxchange"

_db_path: Path | None = None
_exchange_instance: "Exchange | None" = None


def initialize_health_server(
    db_path: str | Path, exchange_instance: "Exchange | None" = None
) -> None:
    """Point the health checks at a database, and optionally at a live Exchange"""
    global _db_path, _exchange_instance
    _db_path = Path(db_path)
    _exchange_instance = exchange_instance
    logger.info("Health server initialized", db_path=str(_db_path))


def _open() -> sqlite3.Connection:
    return sqlite3.connect(str(_db_path), timeout=1.0)


def _not_ready(reason: str, **detail: Any) -> tuple[Any, int]:
    logger.error("Readiness check failed", reason=reason, **detail)
    return jsonify({"status": "not_ready", "reason": reason, **detail}), 503


@app.route("/health/live", methods=["GET"])
def liveness() -> tuple[Any, int]:
    return jsonify({"status": "alive", "service": SERVICE}), 200


@app.route("/health/ready", methods=["GET"])
def readiness() -> tuple[Any, int]:
    """Ready once the entities table of the configured database answers"""
    if _db_path is None:
        return _not_ready("database_path_not_initialized")
    if not _db_path.exists():
        return _not_ready("database_file_not_found", db_path=str(_db_path))

    try:
        with closing(_open()) as conn:
            entity_count = conn.execute("SELECT COUNT(*) FROM entities").fetchone()[0]
    except sqlite3.OperationalError as e:
        return _not_ready("database_operational_error", error=str(e))

    return jsonify({"status": "ready", "database": "accessible", "entity_count": entity_count}), 200


@app.route("/health", methods=["GET"])
def detailed_health() -> tuple[Any, int]:
    health: dict[str, Any] = {"status": "healthy", "service": SERVICE, "version": "0.1.0"}

    if _db_path is None or not _db_path.exists():
        health["database"] = {"status": "not_initialized"}
        health["status"] = "degraded"
    else:
        try:
            with closing(_open()) as conn:
                rows = conn.execute(
                    "SELECT collection, COUNT(*) FROM entities GROUP BY collection"
                ).fetchall()
                page_count = conn.execute("PRAGMA page_count").fetchone()[0]
                page_size = conn.execute("PRAGMA page_size").fetchone()[0]
            health["database"] = {
                "status": "healthy",
                "path": str(_db_path),
                "entities": dict(rows),
                "size_mb": round(page_count * page_size / (1024 * 1024), 2),
            }
        except sqlite3.Error as e:
            logger.error("Database health check failed", error=str(e))
            health["database"] = {"status": "unhealthy", "error": str(e)}
            health["status"] = "degraded"

    if _exchange_instance is not None:
        policy = _exchange_instance.policy
        health["search"] = {
            index: _exchange_instance.search_index.count(index)
            for index in (policy.projects_index, policy.suppliers_index)
        }
        health["policy_version"] = policy.policy_version

    return jsonify(health), 200 if health["status"] == "healthy" else 503


def run_health_server(port: int = 8080, debug: bool = False) -> None:
    logger.info("Starting health check server", port=port)
    app.run(host="0.0.0.0", port=port, debug=debug)


if __name__ == "__main__":
    from foodxchange.kernel.policy import ExchangeSettings

    initialize_health_server(ExchangeSettings.from_env().db_path)
    run_health_server()

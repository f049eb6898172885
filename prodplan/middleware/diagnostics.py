"""
Startup diagnostics — runs once when the Flask app starts.

Checks the database and logs a summary banner.
"""

import logging
import sys

from flask import Flask

from prodplan.models import db

logger = logging.getLogger(__name__)


def run_startup_diagnostics(app: Flask):
    """Run diagnostic checks during app startup (inside app context)."""
    if app.config.get("TESTING"):
        return  # skip during tests for speed

    issues: list[str] = []

    with app.app_context():
        py = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"

        # ── Database connectivity ────────────────────────────────────
        db_status = "ok"
        db_uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
        db_type = "PostgreSQL" if "postgresql" in db_uri else "SQLite" if "sqlite" in db_uri else "unknown"
        try:
            db.session.execute(db.text("SELECT 1"))
        except Exception as exc:
            db_status = f"FAILED ({exc})"
            issues.append(f"Database unreachable: {exc}")

        # ── Table count ──────────────────────────────────────────────
        try:
            from sqlalchemy import inspect as sa_inspect
            tables = sa_inspect(db.engine).get_table_names()
            table_count = len(tables)
            if table_count == 0:
                issues.append("No tables found — run 'flask db upgrade'")
        except Exception:
            table_count = "?"

        # ── Planning policy ──────────────────────────────────────────
        clamp = "clamp" if app.config.get("QUEUE_CLAMP_OUT_OF_RANGE", True) else "reject"
        completion = "checked" if app.config.get("STAGE_COMPLETION_REQUIRES_TASKS") else "unchecked"

        banner = f"""
╔══════════════════════════════════════════════════════════════╗
║  Production Planning Engine — Startup Diagnostics            ║
╠══════════════════════════════════════════════════════════════╣
║  Python      : {py:<46s}║
║  Debug       : {str(app.debug):<46s}║
║  Database    : {f'{db_type} ({db_status})':<46s}║
║  Tables      : {str(table_count):<46s}║
║  Queue moves : {clamp:<46s}║
║  Task check  : {completion:<46s}║
║  Retries     : {str(app.config.get('TRANSITION_MAX_RETRIES')):<46s}║
╚══════════════════════════════════════════════════════════════╝"""
        logger.info(banner)

        if issues:
            logger.warning("Startup issues detected:")
            for issue in issues:
                logger.warning("  ⚠ %s", issue)
        else:
            logger.info("All startup checks passed")

"""
startup.py — Database Startup Migrations (Idempotent)

Tables, columns, indexes and the delivery-log uniqueness constraint are defined
in the ORM models and created via Base.metadata.create_all(checkfirst=True).
This file only handles PostgreSQL-specific operations the ORM can't express:
the append-only trigger on webhook_logs and CHECK constraints on status columns.

Called by: main.py lifespan
Depends on: database.py (engine), models (Base)
"""

import logging
import os

from sqlalchemy import text as sqltext

from .database import engine

log = logging.getLogger("calrouter.startup")


def run_startup_migrations() -> None:
    """Execute all idempotent startup operations. Safe to call on every app boot."""
    if os.environ.get("TESTING"):
        log.info("TESTING mode — skipping startup migrations")
        return

    from .models import Base

    Base.metadata.create_all(bind=engine, checkfirst=True)
    log.info("ORM schema sync complete (create_all checkfirst=True)")

    if engine.dialect.name != "postgresql":
        return

    with engine.connect() as conn:
        _create_append_only_trigger(conn)
        _add_check_constraints(conn)
    log.info("Startup migrations complete")


def _exec(conn, stmt: str) -> None:
    """Execute a single DDL statement with rollback on failure."""
    try:
        conn.execute(sqltext(stmt))
        conn.commit()
    except Exception as e:
        log.warning(f"DDL failed: {e}")
        conn.rollback()


def _create_append_only_trigger(conn) -> None:
    """Reject UPDATEs on webhook_logs at the database level too."""
    _exec(conn, """
        CREATE OR REPLACE FUNCTION webhook_logs_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'webhook_logs rows are append-only';
        END;
        $$ LANGUAGE plpgsql;
    """)
    _exec(conn, "DROP TRIGGER IF EXISTS trg_webhook_logs_append_only ON webhook_logs")
    _exec(conn, """
        CREATE TRIGGER trg_webhook_logs_append_only
        BEFORE UPDATE ON webhook_logs
        FOR EACH ROW EXECUTE FUNCTION webhook_logs_append_only();
    """)


def _add_check_constraints(conn) -> None:
    """Add CHECK constraints (NOT VALID) — only new inserts/updates are checked."""
    constraints = [
        (
            "users",
            "chk_users_subscription_status",
            "subscription_status IN ('trial','active','expired','cancelled')",
        ),
        ("webhook_logs", "chk_logs_status", "status IN ('success','failed')"),
        (
            "webhook_logs",
            "chk_logs_failure_kind",
            "failure_kind IS NULL OR failure_kind IN ('failed-status','failed-timeout',"
            "'failed-dns','failed-connection-refused','failed-other')",
        ),
        (
            "webhook_endpoints",
            "chk_endpoints_https",
            "destination_url LIKE 'https://%'",
        ),
    ]
    for table, name, check in constraints:
        _exec(conn, f"""
            DO $$ BEGIN
                IF NOT EXISTS (
                    SELECT 1 FROM pg_constraint WHERE conname = '{name}'
                ) THEN
                    ALTER TABLE {table} ADD CONSTRAINT {name} CHECK ({check}) NOT VALID;
                END IF;
            END $$;
        """)

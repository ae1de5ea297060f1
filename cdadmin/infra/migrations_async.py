# cdadmin/infra/migrations_async.py
"""
Forward-only SQL migrations from ``cdadmin/infra/sql``.

Files apply in name order; applied names are recorded in
``schema_migrations``.  The whole run holds a transaction-scoped advisory
lock, so two runners started together apply each file once.
"""
from __future__ import annotations
from pathlib import Path

from cdadmin.infra.db_async import db_conn
from cdadmin.infra.logging_config import get_logger

logger = get_logger(__name__)

SQL_DIR = Path(__file__).resolve().parent / "sql"

# arbitrary constant shared by all migration runners
MIGRATION_LOCK_ID = 7_204_113

_LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations(
  version text PRIMARY KEY,
  applied_at timestamptz NOT NULL DEFAULT now()
)
"""


def list_migrations(sql_dir: Path | None = None) -> list[Path]:
    """Migration files in apply order (001_init.sql, 002_..., ...)."""
    return sorted(p for p in (sql_dir or SQL_DIR).glob("*.sql") if p.is_file())


async def apply_migrations() -> dict:
    """
    Apply pending migrations in one transaction.

    Returns ``{"ok": True, "applied": [...names...], "count": n}``;
    any SQL error propagates and nothing from the run is kept.
    """
    async with db_conn(autocommit=False) as conn:
        await conn.execute("SELECT pg_advisory_xact_lock($1)", MIGRATION_LOCK_ID)
        await conn.execute(_LEDGER_DDL)
        done = {r["version"] for r in await conn.fetch("SELECT version FROM schema_migrations")}

        applied = []
        for path in list_migrations():
            if path.name in done:
                continue
            logger.info(f"Applying migration {path.name}")
            await conn.execute(path.read_text(encoding="utf-8"))
            await conn.execute("INSERT INTO schema_migrations(version) VALUES ($1)", path.name)
            applied.append(path.name)

    logger.info(f"Migrations complete: {len(applied)} applied")
    return {"ok": True, "applied": applied, "count": len(applied)}

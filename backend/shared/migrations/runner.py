"""Applies the SQL files in ``versions/`` once each, in filename order."""

from __future__ import annotations

import logging
from pathlib import Path

import asyncpg

logger = logging.getLogger(__name__)

VERSIONS_DIR = Path(__file__).resolve().parent / "versions"

# Arbitrary constant shared by every process running migrations
_ADVISORY_LOCK_KEY = 712_004


class MigrationRunner:
    """Execute and track schema migrations.

    Files are named ``NNN_description.sql``; applied versions are recorded
    in ``schema_migrations``. An advisory lock keeps two bot processes
    starting together from applying the same file twice.
    """

    TRACKING_TABLE = "schema_migrations"

    def __init__(self, pool: asyncpg.Pool, versions_dir: Path | None = None) -> None:
        self.pool = pool
        self.versions_dir = versions_dir or VERSIONS_DIR

    async def run_pending(self) -> list[str]:
        """Apply pending migrations and return their versions."""
        sql_files = sorted(self.versions_dir.glob("*.sql"))
        if not sql_files:
            logger.info(f"No migration files found in {self.versions_dir}")
            return []

        applied_now: list[str] = []
        async with self.pool.acquire() as conn:
            await conn.execute("SELECT pg_advisory_lock($1)", _ADVISORY_LOCK_KEY)
            try:
                await conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self.TRACKING_TABLE} (
                        version    TEXT PRIMARY KEY,
                        name       TEXT NOT NULL,
                        applied_at TIMESTAMPTZ DEFAULT NOW()
                    )
                    """
                )
                rows = await conn.fetch(f"SELECT version FROM {self.TRACKING_TABLE}")  # noqa: S608
                applied = {row["version"] for row in rows}

                for sql_path in sql_files:
                    version = sql_path.stem
                    if version in applied:
                        continue
                    logger.info(f"Applying migration: {version}")
                    async with conn.transaction():
                        await conn.execute(sql_path.read_text(encoding="utf-8"))
                        await conn.execute(
                            f"INSERT INTO {self.TRACKING_TABLE} (version, name) VALUES ($1, $2)",
                            version,
                            sql_path.name,
                        )
                    applied_now.append(version)
            finally:
                await conn.execute("SELECT pg_advisory_unlock($1)", _ADVISORY_LOCK_KEY)

        if applied_now:
            logger.info(f"Applied {len(applied_now)} migration(s): {', '.join(applied_now)}")
        else:
            logger.info("Database is up to date")
        return applied_now

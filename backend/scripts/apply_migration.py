"""Apply SQL migrations from backend/migrations and record them in schema_migrations.

Usage: python backend/scripts/apply_migration.py [migration_filename]

Without an argument every migration not yet recorded is applied in filename order.
"""

import asyncio
import sys
from pathlib import Path

import asyncpg

from kinnect.settings import settings

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def _version(path: Path) -> str:
    return path.name.split("_", 1)[0]


async def _applied(conn: asyncpg.Connection) -> set[str]:
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """
    )
    rows = await conn.fetch("SELECT version FROM schema_migrations")
    return {row["version"] for row in rows}


async def apply_migrations(filename: str | None = None) -> int:
    if filename:
        paths = [MIGRATIONS_DIR / filename]
    else:
        paths = sorted(MIGRATIONS_DIR.glob("*.sql"))
    missing = [p for p in paths if not p.exists()]
    if missing:
        print(f"Migration file not found: {missing[0]}")
        return 1

    dsn = settings.postgres_url.replace("localhost", "127.0.0.1")
    conn = await asyncpg.connect(dsn=dsn, ssl="require" if settings.postgres_ssl else "disable")
    try:
        done = await _applied(conn)
        for path in paths:
            version = _version(path)
            if version in done:
                print(f"Skipping {path.name} (already applied)")
                continue
            print(f"Applying migration: {path.name}")
            async with conn.transaction():
                await conn.execute(path.read_text(encoding="utf-8"))
                await conn.execute(
                    "INSERT INTO schema_migrations (version) VALUES ($1) ON CONFLICT DO NOTHING",
                    version,
                )
    finally:
        await conn.close()
    print("Migrations applied successfully.")
    return 0


if __name__ == "__main__":
    target = sys.argv[1] if len(sys.argv) > 1 else None
    sys.exit(asyncio.run(apply_migrations(target)))

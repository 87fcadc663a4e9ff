"""
Example 01: Embedded Quickstart

This example demonstrates the ConnectionAdapter against a SQLite file:
bootstrapping the schema from SQL scripts, writing and reading rows,
and handling a constraint violation.
"""

import asyncio
import logging
import tempfile
from pathlib import Path

from tenant_db import ConnectionAdapter, ConstraintViolation


async def main():
    logging.basicConfig(level=logging.INFO)

    work_dir = Path(tempfile.mkdtemp())
    sql_dir = work_dir / "sql"
    sql_dir.mkdir()
    (sql_dir / "schema.sql").write_text(
        """
        CREATE TABLE IF NOT EXISTS tenants (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            slug TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL
        );
        """
    )
    (sql_dir / "indexes.sql").write_text("CREATE INDEX tenants_name ON tenants (name);")

    config = {
        "kind": "embedded",
        "path": work_dir / "data" / "tenant_manager.db",
        "script_dir": sql_dir,
    }

    async with ConnectionAdapter(config) as db:
        print("Bootstrap:", await db.bootstrap())
        # Re-running is safe: optional steps report False instead of failing
        print("Indexes again:", await db.apply_indexes())

        created = await db.query(
            "INSERT INTO tenants (slug, name) VALUES (?, ?)", ["acme", "Acme Corp"]
        )
        print("Inserted tenant id:", created.last_insert_id)

        result = await db.query("SELECT id, slug, name FROM tenants WHERE slug = :slug", {"slug": "acme"})
        print("Tenant:", result.first())

        try:
            await db.query("INSERT INTO tenants (slug, name) VALUES (?, ?)", ["acme", "Duplicate"])
        except ConstraintViolation as e:
            print(f"Rejected [{e.code}]: {e.message}")

        print("Healthy:", await db.health_check())
        print("Connection:", db.get_connection_info())


if __name__ == "__main__":
    asyncio.run(main())

"""
Example 02: Networked Pool

This example demonstrates the PostgreSQL backend: pooled connections,
retry on transient failures and an error handler for pool-level events.

Configure the target through DATABASE_* environment variables, e.g.:

    DATABASE_TYPE=postgresql DATABASE_HOST=localhost DATABASE_NAME=tenants \
    DATABASE_USER=app DATABASE_PASSWORD=secret python examples/02_networked_pool.py
"""

import asyncio
import logging

from tenant_db import AdapterConfig, ConnectionAdapter, ConnectionError, QueryError


def alert(error, message):
    logging.getLogger("alerts").warning("Database alert: %s (%r)", message, error)


async def main():
    logging.basicConfig(level=logging.INFO)

    config = AdapterConfig.from_env()
    db = ConnectionAdapter(config)
    db.register_error_handler("alerts", alert)

    try:
        await db.initialize()
    except ConnectionError as e:
        print(f"Could not connect [{e.code}]: {e.message}")
        return

    try:
        result = await db.query("SELECT current_database() AS name, version() AS version")
        print("Connected to:", result.first())

        # Queries run concurrently, each on its own pooled connection
        results = await asyncio.gather(*(db.query("SELECT $1::int AS n", [i]) for i in range(5)))
        print("Concurrent results:", [r.first()["n"] for r in results])

        try:
            await db.query("SELECT * FROM table_that_does_not_exist")
        except QueryError as e:
            print(f"Query failed [{e.code}]: {e.message}")
    finally:
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())

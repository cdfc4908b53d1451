"""Sync the Stripe product catalog into the plans table.

Usage: python scripts/sync_plans.py  (from backend/, with the app's env vars set)
"""

import asyncio

from saaskit.core.logging import configure_structlog

configure_structlog(debug=True)

from saaskit.db import close_db, close_redis, get_session_factory, init_db, init_redis  # noqa: E402
from saaskit.services.catalog_sync import CatalogSync  # noqa: E402


async def main() -> None:
    await init_db()
    await init_redis()
    try:
        result = await CatalogSync(get_session_factory()).run()
    finally:
        await close_redis()
        await close_db()

    print(f"Inserted: {len(result.inserted)} {result.inserted}")
    print(f"Updated:  {len(result.updated)} {result.updated}")
    print(f"Skipped:  {len(result.skipped)} {result.skipped}")


if __name__ == "__main__":
    asyncio.run(main())

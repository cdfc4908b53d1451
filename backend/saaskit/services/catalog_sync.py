"""Stripe catalog sync: mirrors active products and recurring prices into plans.

Each active product with at least one recurring price becomes (or updates)
the Plan whose stripe_id is the product id. Runs under a Redis lock so two
workers never interleave upserts.
"""

import asyncio
import uuid
from dataclasses import dataclass, field

import stripe
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from saaskit.core.locking import DistributedLock, get_lock
from saaskit.db.models.plan import Plan
from saaskit.domain.pricing import build_price_matrix, has_any_price, plan_key_for_product
from saaskit.integrations.stripe_api import configure_stripe, list_all

logger = structlog.get_logger(__name__)

CATALOG_SYNC_LOCK = "stripe-catalog-sync"


@dataclass
class CatalogSyncResult:
    inserted: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "inserted": len(self.inserted),
            "updated": len(self.updated),
            "skipped": len(self.skipped),
        }


class CatalogSync:
    """Synchronizes the Stripe product/price catalog into local Plan rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock: DistributedLock | None = None,
        lock_wait_timeout: float = 30,
    ):
        self.session_factory = session_factory
        self.lock = lock or get_lock()
        self.lock_wait_timeout = lock_wait_timeout

    async def run(self) -> CatalogSyncResult:
        """Fetch the catalog and upsert plans. Returns per-product outcome."""
        owner = uuid.uuid4().hex
        async with self.lock.lock(CATALOG_SYNC_LOCK, owner=owner, ttl=300, wait_timeout=self.lock_wait_timeout):
            return await self._sync()

    async def _sync(self) -> CatalogSyncResult:
        configure_stripe()
        logger.info("catalog_sync_started")

        products = await list_all(stripe.Product.list_async, active=True)
        prices = await list_all(stripe.Price.list_async, active=True)

        prices_by_product: dict[str, list] = {}
        for price in prices:
            product_ref = price.get("product")
            product_id = product_ref if isinstance(product_ref, str) else (product_ref or {}).get("id")
            if product_id and price.get("recurring"):
                prices_by_product.setdefault(product_id, []).append(price)

        result = CatalogSyncResult()

        async with self.session_factory() as session:
            for product in products:
                product_id = product["id"]
                matrix = build_price_matrix(prices_by_product.get(product_id, []))
                if not has_any_price(matrix):
                    result.skipped.append(product_id)
                    logger.info("catalog_product_skipped", product_id=product_id, reason="no_recurring_prices")
                    continue

                key = plan_key_for_product(product.get("name") or "")
                values = {
                    "key": key.value,
                    "name": product.get("name") or "",
                    "description": product.get("description") or "",
                    "prices": matrix,
                }

                existing = (
                    await session.execute(select(Plan).where(Plan.stripe_id == product_id))
                ).scalar_one_or_none()

                if existing is not None:
                    for attr, value in values.items():
                        setattr(existing, attr, value)
                    result.updated.append(product_id)
                    logger.info("catalog_plan_updated", product_id=product_id, plan_key=key.value)
                else:
                    session.add(Plan(stripe_id=product_id, **values))
                    result.inserted.append(product_id)
                    logger.info("catalog_plan_inserted", product_id=product_id, plan_key=key.value)

            await session.commit()

        logger.info("catalog_sync_completed", **result.as_dict())
        return result


async def run_periodic_catalog_sync(
    session_factory: async_sessionmaker[AsyncSession],
    interval_seconds: int,
) -> None:
    """Re-sync the catalog every interval_seconds until cancelled.

    Intended to run as: ``asyncio.create_task(run_periodic_catalog_sync(...))``
    Failures are logged and retried on the next tick.
    """
    sync = CatalogSync(session_factory)
    logger.info("catalog_sync_loop_started", interval_seconds=interval_seconds)

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await sync.run()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("catalog_sync_failed", error=str(exc), error_type=type(exc).__name__)

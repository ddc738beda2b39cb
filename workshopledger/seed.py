"""Create schema and register the tour cities on the configured backend.

    LEDGER_BACKEND=pg DATABASE_URL=postgresql://... python -m workshopledger.seed
"""

import asyncio
from typing import Iterable, Optional

from loguru import logger

from . import config
from .log import setup_logging
from .model import open_ledgers
from .model.inventory import InventoryLedger


async def seed_cities(
    ledger: InventoryLedger, cities: Optional[Iterable[str]] = None,
) -> int:
    """Register missing cities at the configured public limits.
    Returns how many cities the store now knows of."""
    cities = list(cities if cities is not None else config.WORKSHOP_CITIES)
    for city_id in cities:
        res = await ledger.ensure_city(
            city_id, config.PUBLIC_LIMITS["ga"], config.PUBLIC_LIMITS["vip"],
        )
        if not res.success:
            logger.bind(city_id=city_id).error(f"seed failed: {res.error}")
    return len(await ledger.get_all_inventory_statuses())


async def main() -> None:
    setup_logging()
    ledgers = await open_ledgers()
    try:
        n = await seed_cities(ledgers.inventory)
        logger.info(f"✅ {n} cities seeded on backend '{ledgers.backend}'")
    finally:
        await ledgers.close()


if __name__ == "__main__":
    asyncio.run(main())

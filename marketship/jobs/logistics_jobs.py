"""
Shipping Background Jobs

Job bodies run by the scheduler:
- Tracking sync for booked orders (RTO detection and settlement)
- Purge of expired shipping estimates
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Any

logger = logging.getLogger(__name__)


async def sync_logistics() -> Dict[str, Any]:
    """
    Poll carriers for every active booked order.

    Runs every LOGISTICS_SYNC_INTERVAL_MINUTES. Orders synced in the last
    12 hours are skipped by the synchronizer itself.
    """
    # Import here to avoid circular imports
    from marketship.database import get_db_session
    from marketship.services.logistics_sync import LogisticsSynchronizer

    logger.info("Starting logistics sync...")
    start_time = datetime.now(timezone.utc)

    async with get_db_session() as session:
        report = await LogisticsSynchronizer(session).sync_all()

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"Logistics sync completed in {duration:.2f}s: "
        f"{report.synced} synced, {report.skipped} skipped, {report.failed} failed, "
        f"{report.rto_detected} RTO"
    )
    return report.to_dict()


async def purge_estimate_cache() -> int:
    """Delete estimate cache rows past their TTL."""
    from marketship.database import get_db_session
    from marketship.services.estimate_cache import EstimateCache

    async with get_db_session() as session:
        deleted = await EstimateCache(session).purge_expired()

    logger.info(f"Purged {deleted} expired shipping estimates")
    return deleted

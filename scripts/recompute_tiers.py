"""
Recompute the cached affiliate_tier / affiliate_earnings labels for every affiliate.

The cached values are display-only; commission math always uses the live tier.
Run after changing tier thresholds or after bulk commission status changes so
dashboards show the right badge.

Usage:
    python scripts/recompute_tiers.py              # dry-run, report drift only
    python scripts/recompute_tiers.py --commit     # persist refreshed labels
    python scripts/recompute_tiers.py --limit 100  # first 100 affiliates only
"""
import argparse
import asyncio
import logging

from sqlalchemy import select

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)

BATCH_SIZE = 100


async def recompute(limit: int = 0, commit: bool = False) -> dict[str, int]:
    """Walk affiliates in batches, comparing cached tier and earnings against live values."""
    from affiliate_engine.database import async_session_factory
    from affiliate_engine.models.user import User
    from affiliate_engine.services.commissions import live_tier, refresh_affiliate_tier
    from affiliate_engine.services.tier_config import get_tier_thresholds
    from affiliate_engine.utils.money import to_money

    async with async_session_factory() as db:
        result = await db.execute(
            select(User.id)
            .where(User.is_affiliate == True)  # noqa: E712
            .order_by(User.created_at.asc())
        )
        affiliate_ids = list(result.scalars().all())

    if limit > 0:
        affiliate_ids = affiliate_ids[:limit]

    logger.info(
        "Checking %d affiliates%s", len(affiliate_ids), " [DRY RUN]" if not commit else "",
    )

    stats = {"checked": 0, "drifted": 0, "updated": 0}
    for start in range(0, len(affiliate_ids), BATCH_SIZE):
        batch = affiliate_ids[start:start + BATCH_SIZE]

        # Fresh session per batch
        async with async_session_factory() as db:
            thresholds = await get_tier_thresholds(db)
            for affiliate_id in batch:
                stats["checked"] += 1
                user = await db.get(User, affiliate_id)
                tier, earned = await live_tier(db, affiliate_id, thresholds)
                cached_earnings = to_money(user.affiliate_earnings)
                if user.affiliate_tier == tier and cached_earnings == earned:
                    continue

                stats["drifted"] += 1
                logger.info(
                    "  %s: cached %s/%s, live %s/%s",
                    affiliate_id, user.affiliate_tier, cached_earnings, tier, earned,
                )
                if commit:
                    await refresh_affiliate_tier(db, affiliate_id)
                    stats["updated"] += 1

    if not commit:
        logger.info("DRY RUN - no changes persisted. Use --commit to apply.")

    logger.info(
        "Summary: %d checked, %d drifted, %d updated",
        stats["checked"], stats["drifted"], stats["updated"],
    )
    return stats


def main():
    parser = argparse.ArgumentParser(description="Recompute cached affiliate tiers")
    parser.add_argument("--commit", action="store_true", help="Persist refreshed tiers")
    parser.add_argument("--limit", type=int, default=0, help="Max affiliates to process (0 = all)")
    args = parser.parse_args()
    asyncio.run(recompute(limit=args.limit, commit=args.commit))


if __name__ == "__main__":
    main()

"""arq worker for scheduled reconciliation.

Runs as a separate process. Repairs rows left behind by interrupted
approvals, recomputes denormalized counters, and mints degraded badges once
the chain is reachable again.
"""

from __future__ import annotations

import logging
from dataclasses import asdict

from arq import cron
from arq.connections import RedisSettings

from provelt.chain.dispatch import dispatcher
from provelt.chain.gateway import ChainGateway
from provelt.config import get_settings
from provelt.database import close_db, get_session_factory, init_db
from provelt.middleware.logging import setup_logging
from provelt.review.issuance import mint_window_seconds
from provelt.review.reconciliation import (
    backfill_profile_wallets,
    recompute_all_profiles,
    recompute_challenge_completions,
    repair_missing_badges,
    repair_orphaned_submissions,
    upgrade_degraded_badges,
)

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Open the database and build the treasury gateway."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    ctx["settings"] = settings
    ctx["gateway"] = ChainGateway(settings.chain_config())
    logger.info("Reconciliation worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    dispatcher.shutdown()
    await close_db()
    logger.info("Reconciliation worker shut down")


async def reconcile_store(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Repair missing rows first, then recompute counters from them."""
    settings = ctx["settings"]
    settle_seconds = mint_window_seconds(settings.chain_config(), settings.chain_timeout_seconds)
    async with get_session_factory()() as db:
        stats = {
            "wallets_backfilled": await backfill_profile_wallets(db),
            "orphans_approved": await repair_orphaned_submissions(db, settle_seconds),
            "badges_created": await repair_missing_badges(
                db, settings.chain_config(), default_image_url=settings.default_badge_image_url
            ),
            "challenges_updated": await recompute_challenge_completions(db),
            "profiles_updated": await recompute_all_profiles(db),
        }
    if any(stats.values()):
        logger.info("Store reconciled: %s", stats)
    return stats


async def upgrade_badges(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Mint degraded badges on-chain."""
    settings = ctx["settings"]
    async with get_session_factory()() as db:
        summary = await upgrade_degraded_badges(db, ctx["gateway"], timeout=settings.chain_timeout_seconds)
    result = asdict(summary)
    if summary.adopted or summary.minted or summary.failed:
        logger.info("Degraded badge upgrade: %s", result)
    return result


def _every(minutes: int) -> set[int]:
    return set(range(0, 60, max(1, min(minutes, 60))))


class WorkerSettings:
    """arq worker settings for reconciliation."""

    functions = [reconcile_store, upgrade_badges]
    cron_jobs = [
        cron(reconcile_store, minute=_every(get_settings().reconcile_interval_minutes), run_at_startup=True),
        cron(upgrade_badges, minute=_every(get_settings().reconcile_interval_minutes), second={30}),
    ]
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 2
    job_timeout = 600

"""Closure Cascade Worker for the milestone tracker."""

import asyncio
import logging
from typing import Optional

from milestone_tracker.core.config import settings
from milestone_tracker.core.database import session_manager
from milestone_tracker.services.ClosureService import run_due_cascades
from milestone_tracker.services.MilestoneNotifications import MilestoneNotifier

logger = logging.getLogger(__name__)


async def closure_cascade_worker(
    poll_interval: Optional[float] = None,
    notifier: Optional[MilestoneNotifier] = None,
):
    """Background task that sweeps due closure cascades every poll interval."""
    poll_interval = poll_interval or settings.CASCADE_POLL_INTERVAL_SECONDS
    logger.info(f"🚀 Closure cascade worker starting (every {poll_interval}s)")

    sweep_count = 0
    while True:
        try:
            sweep_count += 1
            processed = await run_due_cascades(session_manager.get_session, notifier=notifier)
            if processed:
                logger.info(f"🔄 Sweep #{sweep_count}: {len(processed)} cascade job(s) attempted")
        except asyncio.CancelledError:
            logger.info("⏹️ Closure cascade worker stopping")
            raise
        except Exception as e:
            logger.error(f"❌ Closure cascade sweep #{sweep_count} failed: {str(e)}")

        await asyncio.sleep(poll_interval)

"""
Recovery Manager for the job scheduler.

- Handles crash recovery on startup
- Returns jobs stuck in PROCESSING to PENDING

Recovery is idempotent: running multiple times produces same result.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable

from .config import STUCK_JOB_TIMEOUT_MINUTES
from .entities import utc_now
from .store import AsyncJobStore


logger = logging.getLogger(__name__)


class RecoveryManager:
    """
    Handles crash recovery and startup cleanup.

    A job left in PROCESSING longer than the stuck timeout belongs to a pass
    that died; it goes back to PENDING with its attempt count kept, so the
    next pass picks it up again.
    """

    def __init__(
        self,
        store: AsyncJobStore,
        stuck_timeout_minutes: int = STUCK_JOB_TIMEOUT_MINUTES,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.stuck_timeout = timedelta(minutes=stuck_timeout_minutes)
        self.clock = clock

    async def recover_on_startup(self) -> dict:
        """
        Perform recovery before the first pass.

        Returns:
            Recovery statistics
        """
        stats = {
            "stuck_jobs_reset": 0,
            "reset_job_ids": [],
            "errors": [],
        }

        logger.info("Starting crash recovery...")

        try:
            reset = await self.reset_stuck_jobs()
            stats["stuck_jobs_reset"] = len(reset)
            stats["reset_job_ids"] = [job.id for job in reset]
        except Exception as e:
            logger.error(f"Error resetting stuck jobs: {e}")
            stats["errors"].append(f"Stuck jobs: {e}")

        logger.info(f"Recovery complete: {stats['stuck_jobs_reset']} stuck jobs reset")

        return stats

    async def reset_stuck_jobs(self) -> list:
        cutoff = self.clock() - self.stuck_timeout
        reset = await self.store.reset_stuck_jobs(cutoff)

        for job in reset:
            logger.info(
                f"Reset stuck job {job.id} ({job.job_type}, tenant {job.tenant_id}) to pending"
            )

        return reset

"""
Async facade over the SQLite job store.

The scheduler runs on asyncio; each store call is pushed to a worker thread
so graph building and status updates suspend instead of blocking the loop.
"""

import asyncio
from datetime import datetime
from typing import Any, Optional

from .entities import Job, JobStatus
from .persistence import PersistenceAdapter


class AsyncJobStore:
    """Awaitable wrapper around PersistenceAdapter."""

    def __init__(self, persistence: PersistenceAdapter):
        self.persistence = persistence

    async def create_job(self, job: Job) -> Job:
        return await asyncio.to_thread(self.persistence.create_job, job)

    async def get_job(self, job_id: str) -> Optional[Job]:
        return await asyncio.to_thread(self.persistence.get_job, job_id)

    async def fetch_pending(
        self,
        job_type: Optional[str] = None,
        limit: int = 100,
        now: Optional[datetime] = None,
    ) -> list[Job]:
        return await asyncio.to_thread(
            self.persistence.fetch_pending, job_type, limit, now
        )

    async def fetch_latest(self, tenant_id: str, job_type: str) -> Optional[Job]:
        return await asyncio.to_thread(self.persistence.fetch_latest, tenant_id, job_type)

    async def fetch_live(self, tenant_id: str, job_type: str) -> Optional[Job]:
        return await asyncio.to_thread(self.persistence.fetch_live, tenant_id, job_type)

    async def update_status(self, job_id: str, status: JobStatus, **fields: Any) -> Job:
        return await asyncio.to_thread(
            self.persistence.update_status, job_id, status, **fields
        )

    async def claim_job(self, job_id: str, now: Optional[datetime] = None) -> Job:
        return await asyncio.to_thread(self.persistence.claim_job, job_id, now)

    async def list_jobs(self, tenant_id: Optional[str] = None, limit: int = 100) -> list[Job]:
        return await asyncio.to_thread(self.persistence.list_jobs, tenant_id, limit)

    async def count_by_status(self) -> dict[str, int]:
        return await asyncio.to_thread(self.persistence.count_by_status)

    async def reset_stuck_jobs(self, started_before: datetime) -> list[Job]:
        return await asyncio.to_thread(self.persistence.reset_stuck_jobs, started_before)

"""
Event notifier for scheduler lifecycle events.

Publishes JSON events over HTTP POST:
- scheduler.job.started / scheduler.job.completed / scheduler.job.failed
- scheduler.pass.started / scheduler.pass.completed

Delivery is retried with exponential backoff. A failed delivery is logged
and never raised to the scheduler.
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

# Event bus configuration
EVENT_BUS_URL = os.getenv("EVENT_BUS_URL", "")
EVENT_BUS_TIMEOUT_SECONDS = float(os.getenv("EVENT_BUS_TIMEOUT_SECONDS", "10"))
EVENT_BUS_MAX_RETRIES = int(os.getenv("EVENT_BUS_MAX_RETRIES", "3"))
EVENT_RETRY_BASE_DELAY = 1.0  # seconds
EVENT_RETRY_MAX_DELAY = 10.0  # seconds

JOB_STARTED = "scheduler.job.started"
JOB_COMPLETED = "scheduler.job.completed"
JOB_FAILED = "scheduler.job.failed"
PASS_STARTED = "scheduler.pass.started"
PASS_COMPLETED = "scheduler.pass.completed"


def build_event_payload(event_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Wrap event data in the common envelope."""
    return {
        "event": event_type,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def build_job_data(job, outcome=None) -> Dict[str, Any]:
    """
    Event data for a scheduler Job, merged with its JobOutcome if given.
    """
    data = {
        "job_id": job.id,
        "tenant_id": job.tenant_id,
        "job_type": job.job_type,
        "status": job.status.value,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "started_at": _iso(job.started_at),
    }
    if outcome is not None:
        data.update(
            {
                "status": outcome.status.value,
                "duration_ms": outcome.duration_ms,
                "error": outcome.error,
                "error_kind": outcome.error_kind,
                "circuit_open": outcome.circuit_open,
                "scheduled_at": _iso(outcome.scheduled_at),
            }
        )
    return data


class EventNotifier:
    """
    Publishes scheduler events to an HTTP event bus.

    Disabled (every publish is a no-op) when no URL is configured.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: float = EVENT_BUS_TIMEOUT_SECONDS,
        max_retries: int = EVENT_BUS_MAX_RETRIES,
        base_delay: float = EVENT_RETRY_BASE_DELAY,
        max_delay: float = EVENT_RETRY_MAX_DELAY,
    ):
        self.url = EVENT_BUS_URL if url is None else url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def publish(self, event_type: str, data: Dict[str, Any]) -> tuple[bool, Optional[str]]:
        """
        Send one event with retry logic.

        Returns:
            Tuple of (success: bool, error_message: Optional[str])
        """
        if not self.enabled:
            logger.debug(f"Event bus disabled, dropping {event_type}")
            return False, None

        payload = build_event_payload(event_type, data)
        last_error: Optional[str] = None

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        self.url,
                        json=payload,
                        headers={
                            "Content-Type": "application/json",
                            "User-Agent": "JobOrchestrator/1.0",
                            "X-Event-Type": event_type,
                        },
                    )

                    if 200 <= response.status_code < 300:
                        logger.debug(
                            f"Event {event_type} delivered "
                            f"(attempt {attempt + 1}/{self.max_retries}, status={response.status_code})"
                        )
                        return True, None

                    last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                    logger.warning(
                        f"Event {event_type} rejected "
                        f"(attempt {attempt + 1}/{self.max_retries}): {last_error}"
                    )

            except httpx.TimeoutException:
                last_error = f"Timeout after {self.timeout}s"
                logger.warning(
                    f"Event {event_type} timeout "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )

            except httpx.RequestError as e:
                last_error = f"Request error: {str(e)}"
                logger.warning(
                    f"Event {event_type} request error "
                    f"(attempt {attempt + 1}/{self.max_retries}): {e}"
                )

            except Exception as e:
                last_error = f"Unexpected error: {str(e)}"
                logger.error(
                    f"Event {event_type} unexpected error "
                    f"(attempt {attempt + 1}/{self.max_retries}): {e}"
                )

            if attempt < self.max_retries - 1:
                delay = min(self.base_delay * (2 ** attempt), self.max_delay)
                logger.debug(f"Retrying event delivery in {delay}s...")
                await asyncio.sleep(delay)

        logger.error(
            f"Event {event_type} failed after {self.max_retries} attempts: {last_error}"
        )
        return False, last_error

    # =========================================================================
    # Scheduler events
    # =========================================================================

    async def job_started(self, job) -> tuple[bool, Optional[str]]:
        return await self.publish(JOB_STARTED, build_job_data(job))

    async def job_finished(self, job, outcome) -> tuple[bool, Optional[str]]:
        event_type = JOB_COMPLETED if outcome.success else JOB_FAILED
        return await self.publish(event_type, build_job_data(job, outcome))

    async def pass_started(self, pass_id: str, budget: int) -> tuple[bool, Optional[str]]:
        return await self.publish(PASS_STARTED, {"pass_id": pass_id, "budget": budget})

    async def pass_completed(self, summary) -> tuple[bool, Optional[str]]:
        return await self.publish(PASS_COMPLETED, summary.to_dict())

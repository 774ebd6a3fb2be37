"""
Timezone-aware run-time planner.

Pure computation from tenant schedule configs and a target date to planned
UTC run times:
- calculate_optimal_run_time: one tenant's run at its preferred local time
- calculate_timezone_distribution: tenants per zone and their UTC window
- generate_staggered_schedule: all tenants, staggered per zone and tier

By default offsets come from the static table (no daylight saving). With
dst_aware=True the conversion uses zoneinfo.
"""

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.scheduler.config import PLANNER_DST_AWARE
from src.scheduler.errors import ConfigurationError

from .timezones import (
    DEFAULT_UTC_OFFSET,
    detect_timezone,
    static_utc_offset,
)

logger = logging.getLogger(__name__)


DEFAULT_PREFERRED_LOCAL_TIME = "00:30"
DEFAULT_PRIORITY_TIER = "standard"
PROCESSING_WINDOW_MINUTES = 30
DISTRIBUTION_LOCAL_HOUR = 1


@dataclass(frozen=True)
class TierSlot:
    """Where a priority tier starts within its zone and how it spreads."""

    nominal_local_time: str
    head_offset_minutes: int
    step_minutes: int


# Premium first; standard and economy start later so tiers do not overlap
TIER_SLOTS: dict[str, TierSlot] = {
    "premium": TierSlot("01:00", head_offset_minutes=0, step_minutes=2),
    "standard": TierSlot("01:20", head_offset_minutes=20, step_minutes=3),
    "economy": TierSlot("02:00", head_offset_minutes=60, step_minutes=5),
}


@dataclass(frozen=True)
class TenantScheduleConfig:
    """Schedule preferences of one tenant."""

    tenant_id: str
    timezone: Optional[str] = None
    preferred_local_time: Optional[str] = None
    priority_tier: str = DEFAULT_PRIORITY_TIER
    frequency: str = "daily"
    address: Optional[str] = None
    tenant_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TenantScheduleConfig":
        """Build from a mapping, ignoring keys that are not config fields."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})

    def resolved_timezone(self) -> str:
        """Explicit timezone, else one detected from the address."""
        return self.timezone or detect_timezone(self.address)


@dataclass
class ProcessingWindow:
    start: datetime
    end: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


@dataclass
class PlannedRun:
    """Planned start of one tenant's daily job chain."""

    tenant_id: str
    utc_run_time: datetime
    local_run_time: str
    priority_tier: str
    processing_window: ProcessingWindow
    timezone: str
    stagger_offset_minutes: int = 0

    def shifted(self, minutes: int) -> "PlannedRun":
        """Copy moved later by `minutes`, processing window included."""
        delta = timedelta(minutes=minutes)
        hours, mins = parse_local_time(self.local_run_time.split(" ", 1)[0])
        local_minutes = (hours * 60 + mins + minutes) % (24 * 60)
        return replace(
            self,
            utc_run_time=self.utc_run_time + delta,
            local_run_time=f"{local_minutes // 60:02d}:{local_minutes % 60:02d} {self.timezone}",
            processing_window=ProcessingWindow(
                self.processing_window.start + delta,
                self.processing_window.end + delta,
            ),
            stagger_offset_minutes=self.stagger_offset_minutes + minutes,
        )


@dataclass
class TimezoneDistribution:
    """Tenants in one zone and the UTC hour in which 01:00 local falls."""

    timezone: str
    utc_offset: int
    tenant_count: int = 0
    window_start: str = ""
    window_end: str = ""
    tenant_ids: list[str] = field(default_factory=list)


# =============================================================================
# Validation helpers
# =============================================================================


def parse_local_time(value: str) -> tuple[int, int]:
    """
    Parse "HH:MM" (24h).

    Raises:
        ConfigurationError: If the value is not a valid time of day
    """
    try:
        hours_str, minutes_str = value.strip().split(":")
        hours, minutes = int(hours_str), int(minutes_str)
    except (AttributeError, ValueError) as e:
        raise ConfigurationError(f"Invalid local time '{value}', expected HH:MM") from e

    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ConfigurationError(f"Invalid local time '{value}', expected HH:MM")
    return hours, minutes


def normalize_priority_tier(tier: Optional[str]) -> str:
    """Known tier name, or the default tier (logged) for anything else."""
    if tier in TIER_SLOTS:
        return tier
    error = ConfigurationError(
        f"Unknown priority tier '{tier}', using '{DEFAULT_PRIORITY_TIER}'"
    )
    logger.warning(str(error))
    return DEFAULT_PRIORITY_TIER


def _preferred_time(config: TenantScheduleConfig) -> tuple[str, int, int]:
    value = config.preferred_local_time or DEFAULT_PREFERRED_LOCAL_TIME
    try:
        hours, minutes = parse_local_time(value)
    except ConfigurationError as e:
        logger.warning(
            f"Tenant {config.tenant_id}: {e}, using {DEFAULT_PREFERRED_LOCAL_TIME}"
        )
        value = DEFAULT_PREFERRED_LOCAL_TIME
        hours, minutes = parse_local_time(value)
    return value, hours, minutes


def _utc_offset(zone: str) -> int:
    try:
        return static_utc_offset(zone)
    except ConfigurationError as e:
        logger.error(f"{e}, using default offset {DEFAULT_UTC_OFFSET}")
        return DEFAULT_UTC_OFFSET


def _to_utc(local: datetime, zone: str, dst_aware: bool) -> datetime:
    if dst_aware:
        try:
            return local.replace(tzinfo=ZoneInfo(zone)).astimezone(timezone.utc)
        except (ZoneInfoNotFoundError, ValueError) as e:
            logger.error(f"Unknown timezone: {zone} ({e}), falling back to static offsets")

    offset = _utc_offset(zone)
    return (local - timedelta(hours=offset)).replace(tzinfo=timezone.utc)


# =============================================================================
# Planner
# =============================================================================


def calculate_optimal_run_time(
    config: TenantScheduleConfig,
    target_date: date,
    dst_aware: bool = PLANNER_DST_AWARE,
) -> PlannedRun:
    """
    Plan one tenant's run on target_date at its preferred local time.

    utc_run_time = local wall-clock time on target_date - zone offset,
    followed by a 30-minute processing window.
    """
    zone = config.resolved_timezone()
    local_time, hours, minutes = _preferred_time(config)
    tier = normalize_priority_tier(config.priority_tier)

    local = datetime.combine(target_date, time(hours, minutes))
    utc_run_time = _to_utc(local, zone, dst_aware)

    run = PlannedRun(
        tenant_id=config.tenant_id,
        utc_run_time=utc_run_time,
        local_run_time=f"{local_time} {zone}",
        priority_tier=tier,
        processing_window=ProcessingWindow(
            utc_run_time,
            utc_run_time + timedelta(minutes=PROCESSING_WINDOW_MINUTES),
        ),
        timezone=zone,
    )

    logger.debug(
        f"Calculated run time for tenant {config.tenant_name or config.tenant_id}: "
        f"{run.local_run_time} -> {utc_run_time.isoformat()}"
    )
    return run


def calculate_timezone_distribution(
    configs: Iterable[TenantScheduleConfig],
) -> list[TimezoneDistribution]:
    """
    Count tenants per zone with the UTC hour window of 01:00 local.

    Sorted by UTC offset, westernmost zone first.
    """
    distribution: dict[str, TimezoneDistribution] = {}
    total = 0

    for config in configs:
        total += 1
        zone = config.resolved_timezone()
        entry = distribution.get(zone)
        if entry is None:
            offset = _utc_offset(zone)
            start_hour = (DISTRIBUTION_LOCAL_HOUR - offset) % 24
            entry = TimezoneDistribution(
                timezone=zone,
                utc_offset=offset,
                window_start=f"{start_hour:02d}:00",
                window_end=f"{(start_hour + 1) % 24:02d}:00",
            )
            distribution[zone] = entry
        entry.tenant_count += 1
        entry.tenant_ids.append(config.tenant_id)

    result = sorted(distribution.values(), key=lambda d: d.utc_offset)

    logger.info(
        f"Calculated timezone distribution for {total} tenants across {len(result)} timezones"
    )
    for entry in result:
        logger.info(
            f"{entry.timezone}: {entry.tenant_count} tenants, processing window "
            f"{entry.window_start}-{entry.window_end} UTC"
        )

    return result


def generate_staggered_schedule(
    configs: Iterable[TenantScheduleConfig],
    target_date: date,
    dst_aware: bool = PLANNER_DST_AWARE,
) -> list[PlannedRun]:
    """
    Plan all tenants, staggered within each zone and priority tier.

    Each tier starts at its nominal local time plus its head offset; each
    further tenant of the tier in the same zone starts step minutes later,
    in input order. The result is sorted by UTC run time.
    """
    by_zone: dict[str, list[TenantScheduleConfig]] = {}
    for config in configs:
        zone = config.resolved_timezone()
        tier = normalize_priority_tier(config.priority_tier)
        by_zone.setdefault(zone, []).append(replace(config, timezone=zone, priority_tier=tier))

    schedule: list[PlannedRun] = []

    for zone, group in by_zone.items():
        logger.info(f"Planning {len(group)} tenants in {zone}")

        for tier, slot in TIER_SLOTS.items():
            offset = slot.head_offset_minutes
            for config in (c for c in group if c.priority_tier == tier):
                run = calculate_optimal_run_time(
                    replace(config, preferred_local_time=slot.nominal_local_time),
                    target_date,
                    dst_aware=dst_aware,
                )
                schedule.append(run.shifted(offset))
                offset += slot.step_minutes

    schedule.sort(key=lambda run: run.utc_run_time)

    logger.info(
        f"Generated staggered schedule for {len(schedule)} tenants "
        f"across {len(by_zone)} timezones"
    )
    return schedule

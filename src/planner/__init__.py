"""
Run-time planner - when each tenant's daily job chain should start.
"""

from .timezones import (
    DEFAULT_TIMEZONE,
    DEFAULT_UTC_OFFSET,
    TIMEZONE_TABLE,
    CITY_TIMEZONES,
    detect_timezone,
    static_utc_offset,
)
from .run_planner import (
    TIER_SLOTS,
    TenantScheduleConfig,
    PlannedRun,
    ProcessingWindow,
    TimezoneDistribution,
    calculate_optimal_run_time,
    calculate_timezone_distribution,
    generate_staggered_schedule,
)

__all__ = [
    # timezones
    "DEFAULT_TIMEZONE",
    "DEFAULT_UTC_OFFSET",
    "TIMEZONE_TABLE",
    "CITY_TIMEZONES",
    "detect_timezone",
    "static_utc_offset",
    # run_planner
    "TIER_SLOTS",
    "TenantScheduleConfig",
    "PlannedRun",
    "ProcessingWindow",
    "TimezoneDistribution",
    "calculate_optimal_run_time",
    "calculate_timezone_distribution",
    "generate_staggered_schedule",
]

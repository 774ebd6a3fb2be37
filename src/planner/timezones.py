"""
Static timezone table and address-based timezone detection.

Most dealer inventory feeds update shortly after local midnight, so the
planner only needs a coarse zone per tenant. Offsets are standard time and
ignore daylight saving; run_planner can switch to zoneinfo for that.
"""

import logging
import re
from typing import Optional

from src.scheduler.errors import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_UTC_OFFSET = -5

# IANA zone -> standard UTC offset (hours) and the region codes it covers
TIMEZONE_TABLE: dict[str, dict] = {
    # US
    "America/New_York": {
        "offset": -5,
        "regions": (
            "NY", "FL", "GA", "NC", "SC", "VA", "MD", "PA", "NJ", "CT", "MA",
            "VT", "NH", "ME", "RI", "DE", "WV", "OH", "MI", "IN", "KY", "TN",
        ),
    },
    "America/Chicago": {
        "offset": -6,
        "regions": (
            "TX", "IL", "MO", "WI", "MN", "IA", "AR", "LA", "MS", "AL", "OK",
            "KS", "NE", "ND", "SD",
        ),
    },
    "America/Denver": {"offset": -7, "regions": ("CO", "WY", "MT", "UT", "NM", "AZ")},
    "America/Los_Angeles": {"offset": -8, "regions": ("CA", "NV", "WA", "OR")},
    # Canada
    "America/Toronto": {"offset": -5, "regions": ("ON", "QC")},
    "America/Winnipeg": {"offset": -6, "regions": ("MB", "SK")},
    "America/Edmonton": {"offset": -7, "regions": ("AB", "NT")},
    "America/Vancouver": {"offset": -8, "regions": ("BC", "YT")},
    "America/Halifax": {"offset": -4, "regions": ("NS", "NB", "PE", "NL")},
}

# Major metros, checked after region codes
CITY_TIMEZONES: dict[str, str] = {
    "NEW YORK": "America/New_York",
    "CHICAGO": "America/Chicago",
    "DENVER": "America/Denver",
    "LOS ANGELES": "America/Los_Angeles",
    "SEATTLE": "America/Los_Angeles",
    "MIAMI": "America/New_York",
    "HOUSTON": "America/Chicago",
    "PHOENIX": "America/Denver",
    "TORONTO": "America/Toronto",
    "VANCOUVER": "America/Vancouver",
}

REGION_TIMEZONES: dict[str, str] = {
    region: zone
    for zone, info in TIMEZONE_TABLE.items()
    for region in info["regions"]
}

# ", NY" / ", NY 10001" - the usual position of a state code in an address
_REGION_AFTER_COMMA = re.compile(r",\s*([A-Z]{2})\b")


def _has_token(text: str, token: str) -> bool:
    return re.search(rf"\b{re.escape(token)}\b", text) is not None


def detect_timezone(address: Optional[str]) -> str:
    """
    Guess a tenant's IANA timezone from its address.

    Region codes are matched as whole words (a code right after a comma
    first, then anywhere), then city names. Falls back to DEFAULT_TIMEZONE.
    """
    if not address:
        return DEFAULT_TIMEZONE

    upper = address.upper()

    for match in _REGION_AFTER_COMMA.finditer(upper):
        zone = REGION_TIMEZONES.get(match.group(1))
        if zone is not None:
            logger.debug(f"Detected timezone {zone} for address containing region: {match.group(1)}")
            return zone

    for zone, info in TIMEZONE_TABLE.items():
        for region in info["regions"]:
            if _has_token(upper, region):
                logger.debug(f"Detected timezone {zone} for address containing region: {region}")
                return zone

    for city, zone in CITY_TIMEZONES.items():
        if _has_token(upper, city):
            logger.debug(f"Detected timezone {zone} for address containing city: {city}")
            return zone

    logger.info(f"Could not detect timezone from address: {address}, defaulting to {DEFAULT_TIMEZONE}")
    return DEFAULT_TIMEZONE


def static_utc_offset(zone: str) -> int:
    """
    Standard-time UTC offset of a zone in hours.

    Raises:
        ConfigurationError: If the zone is not in TIMEZONE_TABLE
    """
    info = TIMEZONE_TABLE.get(zone)
    if info is None:
        raise ConfigurationError(f"Unknown timezone: {zone}")
    return info["offset"]


def is_known_timezone(zone: str) -> bool:
    return zone in TIMEZONE_TABLE

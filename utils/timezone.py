# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Timezone utilities for per-tenant wall-clock handling
"""
import logging
from datetime import datetime
from typing import Optional

import pytz

import config

logger = logging.getLogger(__name__)


def get_zone(zone_name: Optional[str] = None):
    """Return a pytz zone, falling back to DEFAULT_TIMEZONE for unknown names"""
    name = zone_name or config.DEFAULT_TIMEZONE
    try:
        return pytz.timezone(name)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown time zone '{name}', using {config.DEFAULT_TIMEZONE}")
        return pytz.timezone(config.DEFAULT_TIMEZONE)


def tenant_zone(tenant_id: str, zones: Optional[dict] = None):
    """Zone configured for a tenant; absence falls back to DEFAULT_TIMEZONE"""
    zones = config.parse_tenant_timezones() if zones is None else zones
    return get_zone(zones.get(tenant_id))


def get_local_time(zone_name: Optional[str] = None) -> datetime:
    """Get current time in the given (or default) zone"""
    return datetime.now(get_zone(zone_name))


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


def to_utc(dt: datetime, zone=None) -> datetime:
    """Convert to UTC; naive datetimes are interpreted in `zone` (default zone if omitted)"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = (zone or get_zone()).localize(dt)
    return dt.astimezone(pytz.UTC)


def to_zone(dt: datetime, zone) -> datetime:
    """Convert to `zone`; naive datetimes are assumed to be UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    return zone.normalize(dt.astimezone(zone))


def parse_iso(value: str) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp (with optional trailing Z) into an aware UTC datetime"""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except (TypeError, ValueError):
        return None
    return to_utc(dt, pytz.UTC)


def format_local_time(dt: Optional[datetime], zone=None) -> str:
    """Format datetime for display"""
    if dt is None:
        return "Never"
    local = to_zone(dt, zone or get_zone())
    return local.strftime('%b %d, %Y at %H:%M %Z')

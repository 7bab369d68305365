# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Environment-based configuration for the Course Schedule Sync service
"""
import os
import secrets

# Environment Detection
ENVIRONMENT = os.environ.get('ENVIRONMENT', 'production')
DEBUG = ENVIRONMENT == 'development'

# Development mode allows an anonymous identity (audit stamps are omitted)
DEV_MODE = os.environ.get('DEV_MODE', str(DEBUG)).lower() == 'true'

# Application Settings
SECRET_KEY = os.environ.get('SECRET_KEY', secrets.token_hex(32))
PORT = int(os.environ.get('PORT', 5000))
DEFAULT_TENANT = os.environ.get('DEFAULT_TENANT', 'login')

# Internal Schedule Store
DATABASE_URL = os.environ.get('DATABASE_URL', 'sqlite:///schedule.db')
if DATABASE_URL.startswith('postgres://'):
    DATABASE_URL = DATABASE_URL.replace('postgres://', 'postgresql://', 1)

# External Provider (Cal.com compatible booking API)
PROVIDER_ENABLED = os.environ.get('PROVIDER_ENABLED', 'True').lower() == 'true'
PROVIDER_API_URL = os.environ.get('PROVIDER_API_URL', 'https://api.cal.com/v1')
PROVIDER_API_KEY = os.environ.get('PROVIDER_API_KEY', '')
PROVIDER_TIMEOUT = int(os.environ.get('PROVIDER_TIMEOUT', 30))
PROVIDER_ATTENDEE_TIMEZONE = os.environ.get('PROVIDER_ATTENDEE_TIMEZONE', 'Asia/Bangkok')
AUTO_CREATE_EVENT_TYPES = os.environ.get('AUTO_CREATE_EVENT_TYPES', 'False').lower() == 'true'

# Retry Settings (provider calls only; the client itself never retries)
PROVIDER_MAX_RETRIES = int(os.environ.get('PROVIDER_MAX_RETRIES', 2))
PROVIDER_BASE_DELAY = float(os.environ.get('PROVIDER_BASE_DELAY', 0.5))

# Circuit Breaker Settings
CIRCUIT_BREAKER_FAIL_MAX = int(os.environ.get('CIRCUIT_BREAKER_FAIL_MAX', 5))
CIRCUIT_BREAKER_RESET_TIMEOUT = int(os.environ.get('CIRCUIT_BREAKER_RESET_TIMEOUT', 60))

# Time Grid
DEFAULT_TIMEZONE = os.environ.get('DEFAULT_TIMEZONE', 'Asia/Bangkok')
# Format: "tenant_a=Asia/Bangkok,tenant_b=Europe/Berlin"
TENANT_TIMEZONES = os.environ.get('TENANT_TIMEZONES', '')
WEEK_FIRST_DAY = int(os.environ.get('WEEK_FIRST_DAY', 0))  # 0 = Monday
# Format: "HH:MM/minutes,..." in display order
TIME_SLOTS = os.environ.get(
    'TIME_SLOTS',
    '08:00/90,09:45/90,11:30/90,14:00/90,15:45/90,18:00/90,19:45/90'
)
SLOT_MATCH_TOLERANCE_MIN = int(os.environ.get('SLOT_MATCH_TOLERANCE_MIN', 30))

# Reconciliation
RECONCILE_INTERVAL_MIN = int(os.environ.get('RECONCILE_INTERVAL_MIN', 15))
RECONCILE_IMPORT_UNTAGGED = os.environ.get('RECONCILE_IMPORT_UNTAGGED', 'True').lower() == 'true'

# Sync Log
SYNC_LOG_MAX_ENTRIES = int(os.environ.get('SYNC_LOG_MAX_ENTRIES', 1000))
SYNC_LOG_PERSIST = os.environ.get('SYNC_LOG_PERSIST', 'True').lower() == 'true'

# Service facade
SERVICE_WORKERS = int(os.environ.get('SERVICE_WORKERS', 4))

# Logging
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
STRUCTURED_LOGGING = os.environ.get('STRUCTURED_LOGGING', 'True').lower() == 'true'

# Development Settings
if DEBUG:
    LOG_LEVEL = 'DEBUG'
    RECONCILE_INTERVAL_MIN = 1  # Faster reconciliation for development


def parse_tenant_timezones(raw: str = None) -> dict:
    """Parse TENANT_TIMEZONES into {tenant_id: zone_name}"""
    raw = TENANT_TIMEZONES if raw is None else raw
    zones = {}
    for part in raw.split(','):
        if '=' not in part:
            continue
        tenant, zone = part.split('=', 1)
        if tenant.strip() and zone.strip():
            zones[tenant.strip()] = zone.strip()
    return zones


def parse_time_slots(raw: str = None) -> list:
    """Parse TIME_SLOTS into [(start 'HH:MM', duration_minutes), ...]"""
    raw = TIME_SLOTS if raw is None else raw
    slots = []
    for part in raw.split(','):
        part = part.strip()
        if not part:
            continue
        start, _, minutes = part.partition('/')
        slots.append((start.strip(), int(minutes or 90)))
    return slots

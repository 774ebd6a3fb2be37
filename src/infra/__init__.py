"""
Infrastructure module - logging, event delivery and the tenant directory.
"""

from .logging_config import setup_logging

from .events import (
    EventNotifier,
    build_event_payload,
    build_job_data,
)

from .tenant_directory import (
    JsonTenantDirectory,
    TenantDirectoryError,
    TenantRecord,
)

__all__ = [
    # logging
    "setup_logging",
    # events
    "EventNotifier",
    "build_event_payload",
    "build_job_data",
    # tenant_directory
    "JsonTenantDirectory",
    "TenantDirectoryError",
    "TenantRecord",
]

"""
Observability module - Prometheus metrics for ingestion and notifications.
"""

from .prometheus import (
    PrometheusRegistry,
    MetricType,
    get_registry,
    track_execution_time,
    record_reading_ingested,
    record_notification,
    record_fail_open,
    record_audit_write_failure,
    record_email_duration,
    record_retention_deleted,
    record_datastore_status,
)

__all__ = [
    "PrometheusRegistry",
    "MetricType",
    "get_registry",
    "track_execution_time",
    "record_reading_ingested",
    "record_notification",
    "record_fail_open",
    "record_audit_write_failure",
    "record_email_duration",
    "record_retention_deleted",
    "record_datastore_status",
]

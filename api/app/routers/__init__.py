"""API Routers."""

from . import sensor, notifications, metrics

__all__ = [
    'sensor',
    'notifications',
    'metrics',
]

"""Monitoring module for logging and metrics."""

from .logger import Logger
from .metrics import MetricsCollector

__all__ = ["Logger", "MetricsCollector"]

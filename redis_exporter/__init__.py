"""Prometheus exporter bootstrap for Redis."""

__version__ = "1.0.0"

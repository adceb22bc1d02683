"""
Misskey Metrics Exporter - Prometheus exporter for Misskey instances.

This package samples a Misskey server's PostgreSQL store and HTTP API on a
fixed cadence and serves the results in the Prometheus text exposition format.
"""

__version__ = "0.1.0"

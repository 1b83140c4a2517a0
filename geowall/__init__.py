"""Geo-restricted firewall provisioning and connectivity watchdog."""

__version__ = "1.0.0"

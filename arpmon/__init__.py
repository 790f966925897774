"""
ArpMon - Scheduled Network Presence Monitor

Periodically discovers devices on configured network segments, keeps
per-device history, and raises alerts on state transitions.
"""

__version__ = "1.0.0"

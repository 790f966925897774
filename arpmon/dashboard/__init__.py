"""
ArpMon Dashboard Package

FastAPI JSON API and WebSocket push for the monitoring engine.
"""

from .app import create_app

__all__ = ["create_app"]

"""
Homes Calendar API module.

Provides FastAPI HTTP endpoints for the calendar and its integrations.
"""

from homes_calendar.api.main import app, run_server

__all__ = ["app", "run_server"]

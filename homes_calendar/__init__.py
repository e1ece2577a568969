"""
Homes Calendar.

Shared co-parenting calendar: home-day proposals that a second guardian
confirms or rejects, plus read-only imports from Google Calendar and
Apple/ICS subscriptions.
"""

__version__ = "0.1.0"

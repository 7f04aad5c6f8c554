"""
Email notification pipeline for the expense tracker.

This module handles:
- Per-user email preferences, unsubscribe tokens and delivery status
- Rendering and sending templated emails via Resend
- Transaction notifications, budget alerts, reports and tips
- Recurring jobs (weekly/monthly reports, budget checks, newsletters, digests)
"""

from .email_sender import EmailGateway
from .notification_engine import NotificationEngine
from .pipeline import NotificationPipeline, build_pipeline
from .preference_store import PreferenceStore
from .scheduler import Cadence, NotificationScheduler

__all__ = [
    'EmailGateway',
    'NotificationEngine',
    'NotificationPipeline',
    'NotificationScheduler',
    'Cadence',
    'PreferenceStore',
    'build_pipeline',
]

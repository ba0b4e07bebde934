"""
Scheduled and on-demand jobs.

This module provides:
- Run tracking for the alert poller and the checklist reset
- The APScheduler setup that fires them on their cron schedules
"""

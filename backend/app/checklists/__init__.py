"""
Preparedness checklists.

This module provides:
- Checklist definitions and per-user progress records
- Completion period tokens shared with the mobile app
- The scheduled reset of recurring checklists
"""

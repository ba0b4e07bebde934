"""
alerts — GDACS alert ingestion and user notification fan-out.

Sub-modules:
    channels/           — Push delivery backends (Expo)
    alert_service       — Poll cycle orchestration: fetch, store, fan out
    normalizer          — Feed feature → stored AlertRecord, once per episode
    geo_fence           — Affected countries → affected users and push tokens
    notification_writer — Idempotent per-user notification records
    location_reactor    — Catch-up notifications after a country change
    models              — Data structures shared across the system
"""

"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON / pretty logging with scoped context
    errors          — exception hierarchy & handlers
    middleware      — request logging & correlation IDs
    health          — health check aggregation
    database        — async PostgreSQL engine for the SQL document store
"""

"""
Core package — cross-cutting concerns.

Modules:
    config    — environment variables & settings
    logging   — structured JSON logging
    errors    — exception hierarchy & handlers
    middleware — request ID + timing
    retry     — bounded retry with backoff + jitter
    pool      — bounded asyncio worker pool
    cache     — in-process TTL cache + Redis
    database  — async SQLAlchemy engine for the user directory
    health    — health check aggregation
"""

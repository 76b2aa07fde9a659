"""
Ingestion package: getting daily series out of the archive within quota.

Modules:
    throttle       : FIFO request throttle and hard per-feed limiter
    archive_client : Open-Meteo archive/forecast client (httpx + pydantic)
    acquisition    : cache-first, throttled fetch strategy with fallback
"""

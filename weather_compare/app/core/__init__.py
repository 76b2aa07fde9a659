"""
Core package: cross-cutting concerns.

Modules:
    config         : environment variables & settings
    logging_config : structured JSON logging
    errors         : exception hierarchy & handlers
    clock          : injectable time source
    cache          : temporal (TTL) cache over a memory or Redis store
    middleware     : request logging & correlation IDs
    health         : health check aggregation
"""

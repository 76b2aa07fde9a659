"""
Analytics package: pure computation over daily observation series.

Modules:
    models      : observations, comparison records, events, trends
    aggregation : yearly / monthly / seasonal buckets and percentiles
    events      : streak-based extreme event detection
    trends      : least-squares trend estimation
    summary     : combined statistics bundle for one location
"""

"""
Prometheus metrics for Stitch dispatches.
Registered in the global REGISTRY on import.
"""

from prometheus_client import Counter, Histogram

DISPATCH_TOTAL = Counter(
    "stitch_dispatch_total",
    "Total number of batch requests sent to the Stitch import API",
    ["endpoint", "outcome"],
)

RECORDS_TOTAL = Counter(
    "stitch_records_total",
    "Total number of records carried by batch requests",
    ["endpoint", "outcome"],
)

DISPATCH_LATENCY_MS = Histogram(
    "stitch_dispatch_latency_ms",
    "Batch request latency in milliseconds",
    ["endpoint"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
)


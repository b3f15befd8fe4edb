from prometheus_client import Counter, Gauge

REPORTS_GENERATED = Counter(
    "embywrapped_reports_generated_total", "Reports aggregated from fresh data", ["kind"]
)
REPORT_CACHE_HITS = Counter("embywrapped_report_cache_hits_total", "Reports served from cache")
UPSTREAM_FAILURES = Counter(
    "embywrapped_upstream_failures_total", "Failed upstream requests", ["upstream"]
)
SERVER_STATS_SECONDS = Gauge(
    "embywrapped_server_stats_generation_seconds", "Duration of the last server-wide rollup"
)
CACHED_REPORTS = Gauge("embywrapped_cached_reports", "Reports currently held in the report cache")

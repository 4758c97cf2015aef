"""
Prometheus метрики для мониторинга.
"""

from prometheus_client import Counter, Gauge, Histogram

# Аудиты
audits_total = Counter(
    "storeaudit_audits_total",
    "Audits that reached a terminal state",
    ["status"]
)

audit_duration = Histogram(
    "storeaudit_audit_duration_seconds",
    "Audit wall time from RUNNING to terminal state",
    buckets=[0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0]
)

check_failures = Counter(
    "storeaudit_check_failures_total",
    "Checks that raised or timed out",
    ["check"]
)

# Гейты
cooldown_rejections = Counter(
    "storeaudit_cooldown_rejections_total",
    "Audit starts rejected by the cooldown guard",
)

quota_rejections = Counter(
    "storeaudit_quota_rejections_total",
    "Requests rejected by the daily usage quota",
    ["action"]
)

# Кэш
cache_hits = Counter("storeaudit_cache_hits_total", "Cache hits")
cache_misses = Counter("storeaudit_cache_misses_total", "Cache misses (including expired)")
cache_evictions = Counter("storeaudit_cache_evictions_total", "Entries evicted by the LRU ceiling")

# Circuit Breaker
circuit_breaker_state = Gauge(
    "storeaudit_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["service"]
)

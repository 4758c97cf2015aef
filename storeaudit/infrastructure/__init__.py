"""
Инфраструктура: retry, circuit breaker, rate limiter, метрики Prometheus.
"""

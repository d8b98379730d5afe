"""
Prometheus metrics endpoint.

Exposes request and authorization metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Authorization Metrics
# ============================================

authorization_decisions = Counter(
    'authorization_decisions_total',
    'Authorization decisions by outcome and deciding rule',
    ['result', 'rule']
)

cache_evictions = Counter(
    'authz_cache_evictions_total',
    'Cache keys evicted after authorization mutations'
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Called by LoggingMiddleware after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_decision(allowed: bool, rule: str):
    """Record one authorize() outcome."""
    authorization_decisions.labels(result="allow" if allowed else "deny", rule=rule).inc()


def track_evictions(count: int):
    cache_evictions.inc(count)


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

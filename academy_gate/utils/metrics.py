"""
Prometheus-based metrics for production monitoring.
Exposed by whichever process embeds the library (generate_latest()).
"""
from prometheus_client import Counter, Gauge, Histogram


# Counters
access_decisions_total = Counter(
    "access_decisions_total",
    "Access decisions by outcome",
    ["outcome"],  # allow, not_found, status_not_allowed, period_expired_downgraded
)

subscription_downgrades_total = Counter(
    "subscription_downgrades_total",
    "Lazy downgrades to PAST_DUE persisted on the access path",
)

discord_requests_total = Counter(
    "discord_requests_total",
    "Total Discord guild API requests",
    ["operation", "outcome"],
)

guild_reconciliations_total = Counter(
    "guild_reconciliations_total",
    "Membership reconciliation runs by operation and result",
    ["operation", "result"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
discord_request_duration_seconds = Histogram(
    "discord_request_duration_seconds",
    "Discord guild API request duration",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1, 2, 5, 10],
)

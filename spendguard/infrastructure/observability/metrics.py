"""Prometheus metrics for monitoring enforcement outcomes, escrow flows and reputation"""

from prometheus_client import Counter, Histogram

# Validation metrics
validation_counter = Counter(
    "spendguard_validation_total",
    "Total payment validations",
    ["outcome"],  # approved | rejected | emergency
)

rejection_counter = Counter(
    "spendguard_rejection_total",
    "Rejected payments by first failing check",
    ["check"],
)

emergency_override_counter = Counter(
    "spendguard_emergency_override_total",
    "Payments approved through the emergency override",
)

validation_latency_histogram = Histogram(
    "spendguard_validation_latency_seconds",
    "Rule pipeline latency",
    buckets=[0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1],
)

# Escrow metrics
milestone_release_counter = Counter(
    "spendguard_milestone_release_total",
    "Escrow milestones released",
)

clawback_counter = Counter(
    "spendguard_clawback_total",
    "Escrow clawbacks",
    ["reason"],
)

# Reputation metrics
reputation_event_counter = Counter(
    "spendguard_reputation_event_total",
    "Reputation events recorded",
    ["kind"],
)

reputation_write_failures_counter = Counter(
    "spendguard_reputation_write_failures_total",
    "Reputation events that failed to persist after a committed mutation",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_validation(approved: bool, emergency: bool, failed_at_check: str | None, latency_ms: float) -> None:
    """Record validation metrics for monitoring approval rates and rejection causes"""
    if emergency:
        outcome = "emergency"
        emergency_override_counter.inc()
    else:
        outcome = "approved" if approved else "rejected"
    validation_counter.labels(outcome=outcome).inc()

    if failed_at_check:
        rejection_counter.labels(check=failed_at_check).inc()

    validation_latency_histogram.observe(latency_ms / 1000)

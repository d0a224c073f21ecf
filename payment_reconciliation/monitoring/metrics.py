"""
Prometheus metrics for payment reconciliation monitoring.

Tracks:
- Payment initiations by method, purpose and result
- Gateway session latency and errors
- Inbound callbacks by channel
- Reconciliation results (applied, duplicate, ignored, rejected)
- Side effects fired on completion
"""
from prometheus_client import Counter, Gauge, Histogram

# Initiation metrics
payment_initiations_total = Counter(
    "payment_initiations_total",
    "Total payment initiation requests",
    ["method", "purpose", "result"],  # result: redirected, rejected, gateway_error
)

payment_amount = Histogram(
    "payment_amount",
    "Initiated payment amounts in major currency units",
    buckets=(100, 250, 500, 1000, 2500, 5000, 10000, 50000, 100000),
)

# Gateway metrics
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total gateway session requests",
    ["gateway", "status"],
)

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Gateway session request duration in seconds",
    ["gateway"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, 15.0),
)

gateway_circuit_breaker_state = Gauge(
    "gateway_circuit_breaker_state",
    "Gateway circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Callback metrics
callbacks_received_total = Counter(
    "callbacks_received_total",
    "Total gateway callbacks received",
    ["channel"],  # success, fail, cancel, ipn
)

reconciliation_results_total = Counter(
    "reconciliation_results_total",
    "Reconciliation results",
    ["outcome", "result"],  # result: applied, duplicate, ignored, not_found, error
)

reconciliation_duration_seconds = Histogram(
    "reconciliation_duration_seconds",
    "Reconciliation duration in seconds",
    ["outcome"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

side_effects_total = Counter(
    "payment_side_effects_total",
    "Side effects fired on payment completion",
    ["effect"],  # credit_fund, elevate_membership, elevate_membership_skipped
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_initiation(method: str, purpose: str, result: str, amount: float = 0) -> None:
        """Record a payment initiation."""
        payment_initiations_total.labels(method=method, purpose=purpose, result=result).inc()
        if amount > 0:
            payment_amount.observe(amount)

    @staticmethod
    def record_gateway_call(gateway: str, status: str, duration_seconds: float) -> None:
        """Record a gateway session call."""
        gateway_requests_total.labels(gateway=gateway, status=status).inc()
        gateway_request_duration_seconds.labels(gateway=gateway).observe(duration_seconds)

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        gateway_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_callback(channel: str) -> None:
        callbacks_received_total.labels(channel=channel).inc()

    @staticmethod
    def record_reconciliation(outcome: str, result: str, duration_seconds: float) -> None:
        """Record a reconciliation attempt."""
        reconciliation_results_total.labels(outcome=outcome, result=result).inc()
        reconciliation_duration_seconds.labels(outcome=outcome).observe(duration_seconds)

    @staticmethod
    def record_side_effect(effect: str) -> None:
        side_effects_total.labels(effect=effect).inc()


# Export singleton instance
metrics = MetricsCollector()

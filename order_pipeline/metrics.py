"""
Prometheus metrics: order status transitions (by outcome), rejected and forced
transitions, audit-trail write failures, post-payment validation outcomes.
"""
from prometheus_client import Counter, generate_latest

# result: applied | idempotent | rejected | not_found | conflict | error
order_transitions_total = Counter(
    "order_transitions_total",
    "Total order status transition requests by outcome",
    ["result"],
)
order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total transitions rejected because the target is not reachable from the current status",
    ["current_status", "target_status"],
)
order_transitions_forced_total = Counter(
    "order_transitions_forced_total",
    "Total transitions applied with force=True (validation bypassed)",
)
order_status_history_write_failures_total = Counter(
    "order_status_history_write_failures_total",
    "Total history rows that could not be written after a status change was committed",
)

# outcome: valid | invalid
payment_validations_total = Counter(
    "payment_validations_total",
    "Total post-payment state validations by outcome",
    ["outcome"],
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()

"""
Prometheus metrics: bids, status transitions, and rejected operations by outcome code.
"""
from prometheus_client import Counter, generate_latest

bids_submitted_total = Counter(
    "bids_submitted_total",
    "Total bids stored in the bid ledger",
)
bids_withdrawn_total = Counter(
    "bids_withdrawn_total",
    "Total bids withdrawn by their driver while the delivery was open",
)
deliveries_created_total = Counter(
    "deliveries_created_total",
    "Total deliveries created by sellers",
)
transitions_total = Counter(
    "delivery_transitions_total",
    "Total committed delivery status transitions",
    ["from_status", "to_status"],
)
# Conflicts are expected outcomes (lost compare-and-swap, stale UI); a spike means clients act on stale state
operations_rejected_total = Counter(
    "delivery_operations_rejected_total",
    "Total engine operations rejected with a business outcome",
    ["operation", "code"],
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()

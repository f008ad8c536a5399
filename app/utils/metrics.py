"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
payment_transitions_total = Counter(
    "payment_transitions_total",
    "Total payment status transitions",
    ["status"],  # pending_verification, success, rejected
)

points_operations_total = Counter(
    "points_operations_total",
    "Total points ledger operations",
    ["type"],  # order, redeem, admin_add, ...
)

points_rejected_total = Counter(
    "points_rejected_total",
    "Total debits rejected for insufficient balance",
)

vouchers_redeemed_total = Counter(
    "vouchers_redeemed_total",
    "Total voucher grants issued",
    ["funding"],  # points, free, welcome
)

package_grants_total = Counter(
    "package_grants_total",
    "Total user package grants created by payment confirmation",
)

order_automation_actions_total = Counter(
    "order_automation_actions_total",
    "Orders acted upon by the automation passes",
    ["action"],  # cancelled, warning, reminder
)

order_automation_failures_total = Counter(
    "order_automation_failures_total",
    "Per-order failures inside automation passes",
    ["action"],
)

ledger_errors_total = Counter(
    "ledger_errors_total",
    "Domain errors returned to callers",
    ["kind"],
)

# Histograms
order_automation_duration_seconds = Histogram(
    "order_automation_duration_seconds",
    "Duration of one order automation run",
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )

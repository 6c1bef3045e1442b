"""
Prometheus metrics endpoint.

Exposes request and ledger metrics for monitoring.
"""
from decimal import Decimal
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

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
# Marketplace Metrics
# ============================================

listings_created = Counter(
    'credit_listings_created_total',
    'Total credit listings and transfers created',
    ['kind']
)

credits_listed = Counter(
    'credits_listed_total',
    'Total credits reserved by new listings'
)

transactions_transitioned = Counter(
    'credit_transactions_transitions_total',
    'Credit transaction status transitions',
    ['status']
)

settlements_failed = Counter(
    'credit_settlements_failed_total',
    'Settlements rolled back to the listing',
    ['reason']
)

credits_transferred = Counter(
    'credits_transferred_total',
    'Total credits moved between organisations by settlement'
)

# ============================================
# Account Metrics
# ============================================

org_tradable_credits = Gauge(
    'org_tradable_credits',
    'Current tradable credit balance per organisation',
    ['org_id']
)

org_cash_balance = Gauge(
    'org_cash_balance',
    'Current cash balance per organisation',
    ['org_id']
)

# ============================================
# Reconciliation Metrics
# ============================================

reconciliations_total = Counter(
    'reconciliations_total',
    'Reconciliation runs',
    ['outcome']
)

reconciliation_drift = Counter(
    'reconciliation_drift_credits_total',
    'Absolute tradable credit drift corrected by reconciliation'
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """Record HTTP request metrics."""
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_listing_created(kind: str, amount: Decimal):
    """Record a new listing (kind: listing or transfer)."""
    listings_created.labels(kind=kind).inc()
    credits_listed.inc(float(amount))


def track_transition(status: str):
    transactions_transitioned.labels(status=status).inc()


def track_settlement_failed(reason: str):
    settlements_failed.labels(reason=reason).inc()


def track_credits_transferred(amount: Decimal):
    credits_transferred.inc(float(amount))


def update_balances(org_id: str, tradable: Decimal, cash: Decimal):
    """Update balance gauges for an organisation."""
    org_tradable_credits.labels(org_id=org_id).set(float(tradable))
    org_cash_balance.labels(org_id=org_id).set(float(cash))


def track_reconciliation(changed: bool, drift: Decimal):
    reconciliations_total.labels(outcome="corrected" if changed else "clean").inc()
    if drift:
        reconciliation_drift.inc(float(abs(drift)))


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

"""Prometheus metrics for the API and the scheduled-send worker.

Exposes key metrics for monitoring:
- Request counts by endpoint and status
- Request duration histograms
- Invoice document uploads
- Invoice emails sent (manual and scheduled)
- Scheduled sweep runs and duration

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Document metrics
invoice_documents_uploaded_total = Counter(
    "invoice_documents_uploaded_total",
    "Total invoice documents stored",
    ["type"],  # invoice, as
)

# Email metrics
invoice_emails_sent_total = Counter(
    "invoice_emails_sent_total",
    "Total invoice emails dispatched",
    ["source", "status"],  # source: manual, scheduled; status: success, failed
)

# Scheduled sweep metrics
scheduled_sweep_runs_total = Counter(
    "scheduled_sweep_runs_total",
    "Total scheduled-send sweep runs",
    ["status"],  # completed, error
)

scheduled_sweep_duration_seconds = Histogram(
    "scheduled_sweep_duration_seconds",
    "Scheduled-send sweep duration in seconds",
    buckets=(0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0),
)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics in text format.

    Returns:
        Tuple of (metrics bytes, content type)
    """
    return generate_latest(), CONTENT_TYPE_LATEST

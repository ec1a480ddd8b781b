"""Prometheus metrics for monitoring webhook outcomes, classifier health and alert delivery"""

from prometheus_client import Counter, Histogram, Gauge

# Webhook metrics
webhook_event_counter = Counter(
    "anchor_webhook_events_total",
    "Inbound webhook events by outcome",
    ["outcome"],  # processed | ignored | duplicate | rejected | failed
)

signature_failure_counter = Counter(
    "anchor_signature_failures_total",
    "Webhooks rejected for a missing or invalid signature",
    ["reason"],  # missing | invalid
)

# Classification metrics
classification_counter = Counter(
    "anchor_classifications_total",
    "Transactions classified",
    ["gambling"],  # true | false
)

gambling_confidence_histogram = Histogram(
    "anchor_gambling_confidence",
    "Detection head confidence",
    buckets=[0.1, 0.25, 0.5, 0.75, 0.9, 0.97, 1.0],
)

inference_failure_counter = Counter(
    "anchor_inference_failures_total",
    "Transactions whose classification failed",
)

inference_latency_histogram = Histogram(
    "anchor_inference_seconds",
    "Feature extraction plus forward pass latency",
    buckets=[0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1],
)

model_trained_gauge = Gauge(
    "anchor_model_trained",
    "1 when a trained model is serving, 0 when the untrained fallback is",
)

# Intervention metrics
intervention_counter = Counter(
    "anchor_interventions_total",
    "Intervention decisions by status",
    ["status"],  # alert | no_alert | resolved_whitelisted | alert_unclassified
)

# Alert delivery metrics
alert_latency_histogram = Histogram(
    "anchor_alert_latency_seconds",
    "Alert webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

alert_failure_counter = Counter(
    "anchor_alert_failures_total",
    "Failed alert deliveries",
)

# Store / upstream metrics
store_failure_counter = Counter(
    "anchor_store_failures_total",
    "Failed transaction store writes",
)

up_fetch_failures_counter = Counter(
    "anchor_up_fetch_failures_total",
    "Failed Up API transaction fetches",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_intervention(status: str, gambling: bool | None, confidence: float | None) -> None:
    """Record decision metrics for alert rate and confidence distribution"""
    intervention_counter.labels(status=status).inc()

    # Whitelisted and failed classifications carry no prediction
    if gambling is None or confidence is None:
        return

    classification_counter.labels(gambling="true" if gambling else "false").inc()
    gambling_confidence_histogram.observe(confidence)

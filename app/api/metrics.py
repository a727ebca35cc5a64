"""
Prometheus metrics for the API service.

Tracks WebSocket connections and subscriptions, real-time deliveries,
message throughput, authentication and image uploads.
"""
from prometheus_client import Counter, Histogram, Gauge

# WebSocket connection metrics
websocket_connections_active = Gauge(
    "websocket_connections_active",
    "Number of open WebSocket connections",
    labelnames=["state"]
)

websocket_connections_total = Counter(
    "websocket_connections_total",
    "Total number of WebSocket connections established",
    labelnames=["state"]
)

websocket_subscriptions_active = Gauge(
    "websocket_subscriptions_active",
    "Number of live chat subscriptions"
)

websocket_subscriptions_rejected_total = Counter(
    "websocket_subscriptions_rejected_total",
    "Subscription requests refused",
    labelnames=["reason"]
)

websocket_events_delivered_total = Counter(
    "websocket_events_delivered_total",
    "Events pushed to WebSocket clients"
)

# Message metrics
messages_created_total = Counter(
    "messages_created_total",
    "Total number of messages persisted",
    labelnames=["chat_type"]
)

message_publish_listeners = Histogram(
    "message_publish_listeners",
    "Listeners reached per published message",
    buckets=[0, 1, 2, 5, 10, 25, 50, 100]
)

message_processing_duration_seconds = Histogram(
    "message_processing_duration_seconds",
    "Time to validate, persist, enrich and publish a message",
    labelnames=["status"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0]
)

# Authentication metrics
auth_requests_total = Counter(
    "auth_requests_total",
    "Total number of authentication requests",
    labelnames=["type", "status"]
)

# Upload metrics
image_uploads_total = Counter(
    "image_uploads_total",
    "Image upload attempts",
    labelnames=["status"]
)

image_upload_size_bytes = Histogram(
    "image_upload_size_bytes",
    "Size of accepted images in bytes",
    buckets=[1024, 10240, 102400, 524288, 1048576, 2097152, 5242880]
)

"""Prometheus metrics registry."""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

# Uplink path
UPLINK_COUNTER = Counter(
    "lorabridge_uplinks_total",
    "Uplink messages delivered by application server transports",
    labelnames=("provider",),
)
DROPPED_COUNTER = Counter(
    "lorabridge_dropped_messages_total",
    "Uplink messages dropped before reaching the context broker",
    labelnames=("reason",),
)
PROVISIONED_COUNTER = Counter(
    "lorabridge_auto_provisioned_devices_total",
    "Devices provisioned on their first uplink",
    labelnames=("provider",),
)
CONTEXT_UPDATE_COUNTER = Counter(
    "lorabridge_context_updates_total",
    "Context broker update attempts",
    labelnames=("status",),
)
CONTEXT_UPDATE_LATENCY = Histogram(
    "lorabridge_context_update_latency_seconds",
    "Time spent pushing attribute updates",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

# Application servers
ACTIVE_APP_SERVERS = Gauge(
    "lorabridge_app_servers_active",
    "Application server adapters held by the registry",
)
SUBSCRIBED_TOPICS = Gauge(
    "lorabridge_subscribed_topics",
    "MQTT topics subscribed per application",
    labelnames=("provider", "application_id"),
)
TRANSPORT_CONNECT_FAILURES = Counter(
    "lorabridge_transport_connect_failures_total",
    "Failed MQTT connect attempts",
    labelnames=("reason",),
)


def record_uplink(provider: str) -> None:
    UPLINK_COUNTER.labels(provider=provider).inc()


def record_dropped(reason: str) -> None:
    DROPPED_COUNTER.labels(reason=reason).inc()


def record_provisioned(provider: str) -> None:
    PROVISIONED_COUNTER.labels(provider=provider).inc()


def observe_context_update(status: str, elapsed: float) -> None:
    CONTEXT_UPDATE_COUNTER.labels(status=status).inc()
    CONTEXT_UPDATE_LATENCY.observe(elapsed)


def set_active_app_servers(count: int) -> None:
    ACTIVE_APP_SERVERS.set(count)


def set_subscribed_topics(provider: str, application_id: str, count: int) -> None:
    SUBSCRIBED_TOPICS.labels(provider=provider, application_id=application_id).set(count)


def mark_connect_failure(reason: str) -> None:
    TRANSPORT_CONNECT_FAILURES.labels(reason=reason).inc()


def export_prometheus() -> tuple[bytes, str]:
    """Prometheus text exposition and its Content-Type."""

    data = generate_latest()
    return data, CONTENT_TYPE_LATEST

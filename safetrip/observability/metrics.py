"""
Metrics definitions for SafeTrip.

This module defines Prometheus metrics for monitoring
scoring, the alert lifecycle and notification delivery.
"""

from prometheus_client import Counter, Histogram, Gauge

# 카운터 메트릭
location_updates = Counter(
    "location_updates_total",
    "Number of accepted agent location updates"
)

score_fallbacks = Counter(
    "safety_score_fallbacks_total",
    "Safety score computations that fell back to a cached/default score",
    ["reason"]
)

alerts_created = Counter(
    "alerts_created_total",
    "Number of alerts created",
    ["kind", "severity"]
)

alert_transitions = Counter(
    "alert_transitions_total",
    "Committed alert status transitions",
    ["from_status", "to_status"]
)

alert_transitions_rejected = Counter(
    "alert_transitions_rejected_total",
    "Alert status transitions rejected by the lifecycle",
    ["reason"]
)

incidents_filed = Counter(
    "incidents_filed_total",
    "Number of incidents filed",
    ["severity", "assigned"]
)

notifications_enqueued = Counter(
    "notifications_enqueued_total",
    "Notifications accepted by the dispatcher",
    ["channel"]
)

notifications_sent = Counter(
    "notifications_sent_total",
    "Notifications delivered to the provider",
    ["channel"]
)

notifications_failed = Counter(
    "notifications_failed_total",
    "Notification attempts that failed",
    ["channel", "stage"]
)

notifications_dropped = Counter(
    "notifications_dropped_total",
    "Notifications dropped after exhausting retries",
    ["channel"]
)

# 히스토그램 메트릭
safety_score = Histogram(
    "safety_score",
    "Distribution of computed safety scores",
    buckets=[10, 20, 30, 40, 50, 60, 70, 80, 90, 100]
)

score_seconds = Histogram(
    "score_duration_seconds",
    "Time spent computing a safety score",
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0]
)

# 게이지 메트릭
outbox_size = Gauge(
    "outbox_size",
    "Current number of items in the notification outbox"
)

active_zones = Gauge(
    "active_zones",
    "Number of active zones held by the zone index"
)

uptime_seconds = Gauge(
    "uptime_seconds",
    "Service uptime in seconds"
)

"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


REQUEST_COUNTER = Counter(
	"kinnect_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"kinnect_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"kinnect_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"kinnect_socketio_events_total",
	"Socket.IO events handled or emitted per namespace",
	["namespace", "event"],
)

ONLINE_USERS = Gauge(
	"kinnect_presence_online_users",
	"Users with at least one active realtime session",
)

PRESENCE_TRANSITIONS = Counter(
	"kinnect_presence_transitions_total",
	"Users going online or offline",
	["status"],
)

CONNECTION_REQUESTS = Counter(
	"kinnect_connection_requests_total",
	"Connection request lifecycle transitions",
	["result"],
)

CONNECTION_REQUEST_REJECTS = Counter(
	"kinnect_connection_request_rejects_total",
	"Connection requests refused before creation",
	["reason"],
)

CONNECTIONS_REMOVED = Counter(
	"kinnect_connections_removed_total",
	"Connections deactivated by either party",
)

DEGREE_LOOKUPS = Counter(
	"kinnect_degree_lookups_total",
	"Degree-of-separation computations by result",
	["degree"],
)

CHAT_MESSAGES_SENT = Counter(
	"kinnect_chat_messages_sent_total",
	"Chat messages persisted",
	["transport"],
)

CHAT_SEND_REJECTS = Counter(
	"kinnect_chat_send_rejects_total",
	"Chat sends refused",
	["reason"],
)

NOTIFICATIONS_CREATED = Counter(
	"kinnect_notifications_created_total",
	"Notifications persisted by kind",
	["kind"],
)

NOTIFICATION_FAILURES = Counter(
	"kinnect_notification_failures_total",
	"Background notification dispatches that failed",
)

REACTION_TOGGLES = Counter(
	"kinnect_reaction_toggles_total",
	"Reaction toggles by outcome",
	["action"],
)

REDIS_UP = Gauge("kinnect_redis_up", "Redis availability as seen by readiness checks")
POSTGRES_UP = Gauge("kinnect_postgres_up", "Postgres availability as seen by readiness checks")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def set_online_users(count: int) -> None:
	ONLINE_USERS.set(count)


def presence_transition(status: str) -> None:
	PRESENCE_TRANSITIONS.labels(status=status).inc()


def inc_connection_request(result: str) -> None:
	CONNECTION_REQUESTS.labels(result=result).inc()


def inc_connection_request_reject(reason: str) -> None:
	CONNECTION_REQUEST_REJECTS.labels(reason=reason).inc()


def inc_connection_removed() -> None:
	CONNECTIONS_REMOVED.inc()


def inc_degree_lookup(degree: int) -> None:
	DEGREE_LOOKUPS.labels(degree=str(int(degree))).inc()


def inc_chat_send(transport: str) -> None:
	CHAT_MESSAGES_SENT.labels(transport=transport).inc()


def inc_chat_send_reject(reason: str) -> None:
	CHAT_SEND_REJECTS.labels(reason=reason).inc()


def inc_notification(kind: str) -> None:
	NOTIFICATIONS_CREATED.labels(kind=kind).inc()


def inc_notification_failure() -> None:
	NOTIFICATION_FAILURES.inc()


def inc_reaction_toggle(action: str) -> None:
	REACTION_TOGGLES.labels(action=action).inc()


def mark_redis(ok: bool) -> None:
	REDIS_UP.set(1 if ok else 0)


def mark_postgres(ok: bool) -> None:
	POSTGRES_UP.set(1 if ok else 0)

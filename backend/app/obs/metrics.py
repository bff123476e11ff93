"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram


REQUEST_COUNTER = Counter(
	"shoprooms_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"shoprooms_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

ROOMS_CREATED = Counter(
	"shoprooms_rooms_created_total",
	"Shopping rooms created",
)

ROOMS_DELETED = Counter(
	"shoprooms_rooms_deleted_total",
	"Shopping rooms deleted or closed",
	["reason"],
)

ROOMS_JOIN = Counter(
	"shoprooms_rooms_join_total",
	"Room join operations",
	["via"],
)

ROOM_MEMBER_CHANGES = Counter(
	"shoprooms_room_member_changes_total",
	"Membership changes other than joins",
	["action"],
)

ROOM_CODE_COLLISIONS = Counter(
	"shoprooms_room_code_collisions_total",
	"Room code allocations retried after a collision",
)

CART_MUTATIONS = Counter(
	"shoprooms_cart_mutations_total",
	"Cart line item mutations",
	["scope", "action"],
)

ROOM_POLICY_REJECTS = Counter(
	"shoprooms_room_policy_rejects_total",
	"Room operations rejected by policy",
	["code"],
)

REDIS_UP = Gauge("shoprooms_redis_up", "Redis reachability (1 = up)")
REDIS_LATENCY = Histogram("shoprooms_redis_ping_seconds", "Redis ping latency")
POSTGRES_UP = Gauge("shoprooms_postgres_up", "Postgres reachability (1 = up)")
POSTGRES_LATENCY = Histogram("shoprooms_postgres_ping_seconds", "Postgres ping latency")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_room_created() -> None:
	ROOMS_CREATED.inc()


def inc_room_deleted(reason: str) -> None:
	ROOMS_DELETED.labels(reason=reason).inc()


def inc_room_join(via: str) -> None:
	ROOMS_JOIN.labels(via=via).inc()


def inc_member_change(action: str) -> None:
	ROOM_MEMBER_CHANGES.labels(action=action).inc()


def inc_code_collision() -> None:
	ROOM_CODE_COLLISIONS.inc()


def inc_cart_mutation(scope: str, action: str) -> None:
	CART_MUTATIONS.labels(scope=scope, action=action).inc()


def inc_policy_reject(code: str) -> None:
	ROOM_POLICY_REJECTS.labels(code=code).inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)

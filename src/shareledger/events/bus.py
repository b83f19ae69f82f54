from __future__ import annotations

import json
import os
import logging

import redis

from .schema import EventEnvelope
from .metrics import get_events_total, get_events_dropped_total


DEFAULT_STREAM_EVENTS = "shareledger.events"
DEFAULT_STREAM_DLQ = "shareledger.dlq"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"

log = logging.getLogger("shareledger.events")


def _stream_events() -> str:
    return os.getenv("EVENTS_STREAM", DEFAULT_STREAM_EVENTS)


def _stream_dlq() -> str:
    return os.getenv("EVENTS_DLQ", DEFAULT_STREAM_DLQ)


def _get_redis():
    return redis.Redis.from_url(os.getenv("REDIS_URL", DEFAULT_REDIS_URL), decode_responses=True)


def encode(env: EventEnvelope) -> str:
    return json.dumps({
        "schema_version": env.schema_version,
        "correlation_id": env.correlation_id,
        "sequence": env.sequence,
        "event": env.event.model_dump(),
    }, separators=(",", ":"))


def publish(env: EventEnvelope) -> None:
    """Publish an event to Redis Streams and log a single-line JSON record.

    Accounting has already committed by the time an event is published, so
    an unreachable Redis is logged and counted rather than raised.
    """
    event_type = env.event.event_type
    get_events_total().labels(event_type).inc()

    line = encode(env)
    try:
        _get_redis().xadd(_stream_events(), {"json": line})
    except redis.RedisError as exc:
        log.warning(f"event stream unavailable ({exc}); routing to DLQ")
        try:
            _get_redis().xadd(_stream_dlq(), {"json": line})
        except redis.RedisError as dlq_exc:
            log.warning(f"event DLQ unavailable ({dlq_exc}); event kept in log only")
            get_events_dropped_total().labels(event_type).inc()
    # Always log for log-based ingestion
    log.info(line)


def ensure_group(group: str) -> None:
    try:
        _get_redis().xgroup_create(name=_stream_events(), groupname=group, id="$", mkstream=True)
    except redis.ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise


def consume(group: str, consumer: str, block_ms: int = 15000, count: int = 100):
    """Yield ``(entry_id, json_line)`` for ledger events read through ``group``.

    Yields ``None`` when a blocking read times out so callers can heartbeat.
    Acknowledging with XACK is left to the caller.
    """
    r = _get_redis()
    ensure_group(group)
    stream = _stream_events()
    while True:
        resp = r.xreadgroup(group, consumer, {stream: ">"}, count=count, block=block_ms)
        if not resp:
            yield None
            continue
        for _stream, entries in resp:
            for entry_id, fields in entries:
                yield (entry_id, fields.get("json", ""))

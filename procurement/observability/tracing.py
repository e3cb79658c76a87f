"""Structured workflow events.

Events are written as one JSON object per line on stdout so they can be
shipped by whatever log collector runs next to the service. Every event
carries a trace id; dispatch calls are additionally wrapped in spans so
slow cart automation shows up with its duration.
"""

from __future__ import annotations

import json
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator

SERVICE_NAME = 'procurement'


@dataclass
class Span:
    name: str
    trace_id: str
    span_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    start_ns: int = field(default_factory=time.time_ns)
    end_ns: int | None = None
    error: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    def end(self, *, error: str | None = None) -> None:
        self.end_ns = time.time_ns()
        self.error = error

    @property
    def duration_ms(self) -> float | None:
        if self.end_ns is None:
            return None
        return (self.end_ns - self.start_ns) / 1_000_000.0


def new_trace_id() -> str:
    return uuid.uuid4().hex


def request_fields(record: Any) -> dict[str, Any]:
    """Identifying fields of a purchase request, for event payloads."""
    status = getattr(record, 'status', None)
    return {
        'request_id': getattr(record, 'id', None),
        'request_number': getattr(record, 'request_number', None),
        'status': getattr(status, 'value', status),
    }


def log_event(event: str, *, trace_id: str, span: Span | None = None, **fields: Any) -> None:
    payload: dict[str, Any] = {
        'ts': datetime.now(timezone.utc).isoformat(),
        'service': SERVICE_NAME,
        'event': event,
        'trace_id': trace_id,
        **fields,
    }
    if span is not None:
        payload['span'] = {
            'name': span.name,
            'span_id': span.span_id,
            'duration_ms': span.duration_ms,
            'error': span.error,
            'attributes': span.attributes,
        }
    print(json.dumps(payload, ensure_ascii=False, default=str))


@contextmanager
def traced(name: str, *, trace_id: str, **attributes: Any) -> Iterator[Span]:
    """Time the enclosed block and emit ``span.end`` when it exits, failed or not."""
    span = Span(name=name, trace_id=trace_id, attributes=dict(attributes))
    try:
        yield span
    except BaseException as exc:
        span.end(error=f'{type(exc).__name__}: {exc}')
        log_event('span.end', trace_id=trace_id, span=span)
        raise
    span.end()
    log_event('span.end', trace_id=trace_id, span=span)

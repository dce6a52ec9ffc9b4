from __future__ import annotations

import json
import logging
from threading import Lock
from typing import Any, Iterable


logger = logging.getLogger("cochera_admin")

_SCALARS = (str, int, float, bool)


def _jsonable(value: Any) -> Any:
    """Reduce a log or label value to something ``json.dumps`` accepts."""
    if value is None or isinstance(value, _SCALARS):
        return value
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, Iterable) and not isinstance(value, (bytes, bytearray)):
        return [_jsonable(item) for item in value]
    return str(value)


class CounterSet:
    """Process-local counters keyed as ``name|label=value,...``.

    Exposed read-only through the global-admin metrics endpoint; nothing is
    exported elsewhere.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._values: dict[str, int] = {}

    @staticmethod
    def key(name: str, labels: dict[str, Any]) -> str:
        if not labels:
            return name
        rendered = ",".join(f"{label}={_jsonable(labels[label])}" for label in sorted(labels))
        return f"{name}|{rendered}"

    def add(self, name: str, amount: int, labels: dict[str, Any]) -> None:
        key = self.key(name, labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0) + amount

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._values)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()


counters = CounterSet()


def incr_metric(name: str, value: int = 1, **labels: Any) -> None:
    counters.add(name, value, labels)


def metrics_snapshot() -> dict[str, int]:
    return counters.snapshot()


def reset_metrics() -> None:
    counters.clear()


def log_event(
    event: str,
    *,
    level: int = logging.INFO,
    request_id: str | None = None,
    **fields: Any,
) -> None:
    """One JSON line per event on the ``cochera_admin`` logger."""
    if not logger.isEnabledFor(level):
        return
    record: dict[str, Any] = {name: _jsonable(value) for name, value in fields.items()}
    record["event"] = event
    if request_id:
        record["request_id"] = request_id
    logger.log(level, json.dumps(record, sort_keys=True, default=str))

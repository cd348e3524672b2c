from __future__ import annotations

"""
Best-effort StatsD counters and timings.

Usage:
  from gigflow.utils.metrics import incr, timing_ms
  incr('payments.confirmation.duplicate', tags={'source': 'webhook'})
  with Timer('maintenance.run_ms'):
      ...

Env:
  METRICS_STATSD_ADDR = "host:port" (unset disables emission)
  METRICS_TAGS = "0" drops the Datadog-style |#key:val suffix
"""

import os
import socket
import time
from typing import Dict, Optional

_ADDR = os.getenv("METRICS_STATSD_ADDR", "").strip()
_USE_TAGS = os.getenv("METRICS_TAGS", "1") not in ("0", "false", "False")
_SOCK: Optional[socket.socket] = None


def _get_sock() -> Optional[socket.socket]:
    global _SOCK
    if not _ADDR:
        return None
    if _SOCK is None:
        host, port = _ADDR.split(":", 1)
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.connect((host, int(port)))
        _SOCK = sock
    return _SOCK


def _suffix(tags: Optional[Dict[str, object]]) -> str:
    if not tags or not _USE_TAGS:
        return ""
    parts = [f"{str(k).replace(',', '_')}:{str(v).replace(',', '_')}" for k, v in tags.items()]
    return "|#" + ",".join(parts)


def _send(line: str) -> None:
    try:
        sock = _get_sock()
        if sock is not None:
            sock.send(line.encode("utf-8"))
    except OSError:
        # metrics never break the caller
        pass


def incr(name: str, value: int = 1, tags: Optional[Dict[str, object]] = None) -> None:
    _send(f"{name}:{int(value)}|c{_suffix(tags)}")


def timing_ms(name: str, ms: float, tags: Optional[Dict[str, object]] = None) -> None:
    _send(f"{name}:{float(ms):.2f}|ms{_suffix(tags)}")


class Timer:
    def __init__(self, name: str, tags: Optional[Dict[str, object]] = None):
        self.name = name
        self.tags = tags or {}
        self._t0 = 0.0

    def __enter__(self):
        self._t0 = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        timing_ms(self.name, (time.perf_counter() - self._t0) * 1000.0, tags=self.tags)
        return False

"""
Diagnostics for the gradebook: storage failures, blocked upgrades and smoke
suite progress.

Entries are dicts with ``time``, ``css``, ``msg`` and ``run_id``. A page that
renders them itself installs sinks with set_sinks(); otherwise each entry is
written to the browser console (stdout under plain CPython).
"""

from __future__ import annotations

import datetime
from typing import Any, Callable, Dict, Optional

try:
    from js import console
except ImportError:  # pragma: no cover - non-browser usage
    console = None


LogEntry = Dict[str, Any]

LEVELS = ("info", "success", "fail", "loading", "warn")

_sink: Optional[Callable[[LogEntry], None]] = None
_reset: Optional[Callable[[], None]] = None


def set_sinks(
    sink: Optional[Callable[[LogEntry], None]] = None,
    reset: Optional[Callable[[], None]] = None,
) -> None:
    """Route entries to ``sink`` and clear() to ``reset``; None restores the console."""
    global _sink, _reset
    _sink = sink
    _reset = reset


def emit(
    msg: Any,
    css_class: str = "info",
    *,
    time: Optional[str] = None,
    run_id: Optional[str] = None,
) -> None:
    entry = {
        "time": time or datetime.datetime.now().strftime("%H:%M:%S.%f")[:-3],
        "css": css_class if css_class in LEVELS else "info",
        "msg": "" if msg is None else str(msg),
        "run_id": run_id,
    }
    if _sink is not None:
        _sink(entry)
    elif console is None:
        print(f"[{entry['time']}] {entry['msg']}")
    elif entry["css"] == "fail":
        console.error(entry["msg"])
    elif entry["css"] == "warn":
        console.warn(entry["msg"])
    else:
        console.log(entry["msg"])


def clear() -> None:
    if _reset is not None:
        _reset()

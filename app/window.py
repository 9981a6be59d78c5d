from __future__ import annotations

from typing import Any, Tuple


def time_range(event: Any) -> Tuple[float, float]:
    """Return ``(start, end)`` for an event; a missing end means ``end == start``.

    Accepts schema objects (``event.time``), nested dicts (``{"time": {...}}``)
    and flat dicts carrying ``start``/``end`` or a bare ``timestamp``.
    """
    rng = getattr(event, "time", None)
    if rng is None and isinstance(event, dict):
        rng = event.get("time") or event
    if rng is None:
        rng = event

    if isinstance(rng, dict):
        raw_start = rng.get("start", rng.get("timestamp"))
        raw_end = rng.get("end")
    else:
        raw_start = getattr(rng, "start", None)
        raw_end = getattr(rng, "end", None)

    start = float(raw_start or 0.0)
    end = start if raw_end is None else float(raw_end)
    return start, end


def duration(event: Any) -> float:
    start, end = time_range(event)
    return max(0.0, end - start)


def is_active(event: Any, t: float) -> bool:
    """True when the event covers ``t``.

    Point events (``end == start``) stay active for every ``t >= start``;
    they never fall out of the window on their own.
    """
    start, end = time_range(event)
    return start <= t and (end >= t or end == start)

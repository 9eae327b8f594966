"""Lightweight conversation metrics backed by JSONL."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from wabot.utils.helpers import ensure_dir


def _now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _to_iso(ts: datetime | None = None) -> str:
    return (ts or _now_utc()).isoformat()


def _parse_iso(value: str | None) -> datetime | None:
    raw = (value or "").strip()
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except ValueError:
        return None


def _pct(numerator: int, denominator: int) -> float:
    if denominator <= 0:
        return 0.0
    return round((numerator / denominator) * 100.0, 2)


def _p95(values: list[float]) -> float:
    if not values:
        return 0.0
    data = sorted(float(v) for v in values)
    index = int(0.95 * (len(data) - 1))
    return round(data[index], 2)


def metrics_path(workspace: Path) -> Path:
    return workspace / "state" / "metrics" / "events.jsonl"


class MetricsStore:
    """Append-only event store for turns, deliveries and orders."""

    def __init__(self, events_path: Path):
        self.events_path = events_path
        ensure_dir(events_path.parent)

    def _append(self, payload: dict[str, Any]) -> bool:
        record = dict(payload)
        record.setdefault("ts", _to_iso())
        line = json.dumps(record, ensure_ascii=False)
        try:
            with self.events_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
            return True
        except OSError:
            return False

    def record_turn(self, *, contact: str, outcome: str, latency_ms: float, media: int = 0) -> bool:
        return self._append(
            {
                "type": "turn",
                "contact": (contact or "").strip(),
                "outcome": (outcome or "").strip(),
                "latency_ms": round(float(latency_ms), 2),
                "media": max(0, int(media)),
            }
        )

    def record_delivery(
        self,
        *,
        contact: str,
        kind: str,
        success: bool,
        fallback: bool = False,
        error: str = "",
    ) -> bool:
        return self._append(
            {
                "type": "delivery",
                "contact": (contact or "").strip(),
                "kind": (kind or "").strip(),
                "success": bool(success),
                "fallback": bool(fallback),
                "error": (error or "").strip()[:500],
            }
        )

    def record_order(self, *, contact: str, bucket: str) -> bool:
        return self._append({"type": "order", "contact": (contact or "").strip(), "bucket": bucket})

    def _iter_events(self, since: datetime | None = None) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        try:
            if not self.events_path.exists():
                return []
            for raw_line in self.events_path.read_text(encoding="utf-8").splitlines():
                line = raw_line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(event, dict):
                    continue
                if since is not None:
                    ts = _parse_iso(str(event.get("ts", "")))
                    if ts is None or ts < since:
                        continue
                items.append(event)
        except OSError:
            return []
        return items

    def snapshot(self, hours: int = 24) -> dict[str, Any]:
        """Aggregate the events of the last `hours` hours."""
        window_hours = max(1, int(hours))
        since = _now_utc() - timedelta(hours=window_hours)
        events = self._iter_events(since=since)

        turn_events = [e for e in events if e.get("type") == "turn"]
        delivery_events = [e for e in events if e.get("type") == "delivery"]
        order_events = [e for e in events if e.get("type") == "order"]

        outcomes: dict[str, int] = {}
        for item in turn_events:
            name = str(item.get("outcome", "")).strip() or "unknown"
            outcomes[name] = outcomes.get(name, 0) + 1

        delivered = sum(1 for e in delivery_events if bool(e.get("success")))
        via_fallback = sum(1 for e in delivery_events if bool(e.get("fallback")))
        latencies = [float(e.get("latency_ms", 0.0) or 0.0) for e in turn_events]

        return {
            "window_hours": window_hours,
            "generated_at": _to_iso(),
            "events_file": str(self.events_path),
            "totals": {"events": len(events)},
            "turns": {
                "count": len(turn_events),
                "outcomes": outcomes,
                "latency_ms_p95": _p95(latencies),
                "contacts": len({str(e.get("contact", "")) for e in turn_events}),
            },
            "deliveries": {
                "count": len(delivery_events),
                "success": delivered,
                "errors": len(delivery_events) - delivered,
                "success_rate": _pct(delivered, len(delivery_events)),
                "inline_fallbacks": via_fallback,
            },
            "orders": {"count": len(order_events)},
        }

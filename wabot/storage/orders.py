"""Append-only order records (JSONL)."""

import json
from pathlib import Path
from typing import Any

from loguru import logger

from wabot.utils.helpers import ensure_dir


class OrderStore:
    """Store order records in workspace/state/orders/orders.jsonl."""

    def __init__(self, workspace: Path):
        self.workspace = workspace
        self.path = ensure_dir(workspace / "state" / "orders") / "orders.jsonl"

    def append(self, record: dict[str, Any]) -> bool:
        try:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
            return True
        except OSError as e:
            logger.error(f"Failed to append order record: {e}")
            return False

    def _iter_records(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        records: list[dict[str, Any]] = []
        try:
            with self.path.open("r", encoding="utf-8") as f:
                for line in f:
                    raw = line.strip()
                    if not raw:
                        continue
                    try:
                        parsed = json.loads(raw)
                    except json.JSONDecodeError:
                        continue
                    if isinstance(parsed, dict):
                        records.append(parsed)
        except OSError:
            return []
        return records

    def last_for_contact(self, contact: str) -> dict[str, Any] | None:
        for record in reversed(self._iter_records()):
            if record.get("contact") == contact:
                return record
        return None

    def list_recent(self, limit: int = 20) -> list[dict[str, Any]]:
        """Newest first."""
        if limit <= 0:
            return []
        return list(reversed(self._iter_records()[-limit:]))

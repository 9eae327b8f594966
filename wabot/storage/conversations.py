"""Per-contact conversation transcripts stored as JSON documents."""

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from wabot.utils.helpers import ensure_dir, safe_filename


def _now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat()


class ConversationStore:
    """Store bounded turn history in workspace/state/conversations/<contact>.json."""

    def __init__(self, workspace: Path, max_turns: int = 100):
        self.workspace = workspace
        self.max_turns = max(1, int(max_turns))
        self.dir = ensure_dir(workspace / "state" / "conversations")

    def _path(self, contact: str) -> Path:
        return self.dir / f"{safe_filename(contact)}.json"

    def _safe_read(self, path: Path) -> dict[str, Any] | None:
        try:
            if not path.exists():
                return None
            parsed = json.loads(path.read_text(encoding="utf-8"))
            return parsed if isinstance(parsed, dict) else None
        except (OSError, json.JSONDecodeError):
            return None

    def _safe_write(self, path: Path, payload: dict[str, Any]) -> bool:
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
            tmp_path.replace(path)
            return True
        except OSError as e:
            logger.error(f"Failed to write conversation file {path}: {e}")
            return False

    def get(self, contact: str) -> dict[str, Any] | None:
        return self._safe_read(self._path(contact))

    def append_turn(
        self,
        contact: str,
        user_text: str,
        ai_text: str,
        ai_media: list[dict[str, str]] | None = None,
        ai_order: dict[str, Any] | None = None,
    ) -> bool:
        """Append one turn, dropping the oldest turns beyond max_turns."""
        path = self._path(contact)
        now = _now_iso()
        doc = self._safe_read(path) or {"contact": contact, "createdAt": now, "history": []}
        history = doc.get("history")
        if not isinstance(history, list):
            history = []

        turn: dict[str, Any] = {"userText": user_text, "aiText": ai_text, "createdAt": now}
        if ai_media:
            turn["aiMedia"] = ai_media
        if ai_order:
            turn["aiOrder"] = ai_order
        history.append(turn)

        doc["history"] = history[-self.max_turns:]
        doc["updatedAt"] = now
        return self._safe_write(path, doc)

    def recent(self, contact: str, limit: int = 10) -> list[dict[str, Any]]:
        """Last `limit` turns, oldest first."""
        doc = self.get(contact)
        history = doc.get("history") if doc else None
        if not isinstance(history, list) or limit <= 0:
            return []
        return [turn for turn in history[-limit:] if isinstance(turn, dict)]

    def list_contacts(self) -> list[str]:
        contacts: list[str] = []
        for path in sorted(self.dir.glob("*.json")):
            doc = self._safe_read(path)
            if doc:
                contacts.append(str(doc.get("contact") or path.stem))
        return contacts

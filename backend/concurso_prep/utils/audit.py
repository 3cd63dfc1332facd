"""Structured audit events for study completions."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Optional

from ..config import audit_log_dir


_LOGGER = logging.getLogger("app.audit")


class AuditLogger:
    """Append-only jsonl sink for completion events.

    When `root` is not given the directory is resolved from
    `AUDIT_LOG_DIR` on every write.
    """

    def __init__(self, root: Optional[Path] = None):
        self._root = root
        self._lock = Lock()

    def _events_path(self) -> Path:
        root = self._root or audit_log_dir()
        root.mkdir(parents=True, exist_ok=True)
        return root / "audit_events.jsonl"

    def log_simulado_complete(self, user_id: int, simulado_id: str, score: float, time_taken: int) -> dict:
        return self.record(
            "simulado_complete",
            user_id,
            {"simulado_id": simulado_id, "score": score, "time_taken_minutes": time_taken},
        )

    def log_questao_complete(self, user_id: int, questoes_id: str, score: float) -> dict:
        return self.record(
            "questao_complete",
            user_id,
            {"questoes_semanais_id": questoes_id, "score": score},
        )

    def record(self, action: str, user_id: int, details: dict) -> dict:
        """Write one event line and mirror it to the `app.audit` logger."""
        payload = {
            "action": action,
            "user_id": user_id,
            "details": details,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            with self._events_path().open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(payload, ensure_ascii=True) + "\n")
        _LOGGER.info("audit_event %s", json.dumps(payload, ensure_ascii=True))
        return payload

    def read_events(self, user_id: Optional[int] = None, limit: int = 50) -> list[dict]:
        """Return up to `limit` most recent events, newest first."""
        path = self._events_path()
        if not path.exists():
            return []
        events = []
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue
            if user_id is None or event.get("user_id") == user_id:
                events.append(event)
        events.reverse()
        return events[: max(0, limit)]

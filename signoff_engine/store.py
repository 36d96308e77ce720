"""JSON-file adapters for the ledger and the review queue.

Host applications with a real record store supply their own callables to
``Collaborators``; these adapters back the CLI and the tests. Writes happen
under a per-file process lock and are written atomically, so a reader never
sees a half-written file.
"""
from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Iterator

from .identity import UNKNOWN, digits_only, normalize_issuer_key, normalize_wo_number
from .logging import get_logger
from .merge import merge_fields
from .review import ReviewEntry
from .utils import load_json, write_json

log = get_logger(__name__)

_LOCKS: dict[str, threading.Lock] = {}
_LOCKS_GUARD = threading.Lock()


def file_lock(path: Path) -> threading.Lock:
    """Process-wide lock shared by every adapter instance that writes ``path``."""
    key = str(path.resolve())
    with _LOCKS_GUARD:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = _LOCKS[key] = threading.Lock()
        return lock


class JsonLedger:
    """``ledger.json``: ``{"rows": {record_key: row}}``."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = file_lock(self.path)

    def _read(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        data = load_json(self.path)
        rows = data.get("rows", {}) if isinstance(data, dict) else {}
        return {str(k): dict(v) for k, v in rows.items() if isinstance(v, dict)}

    def upsert(self, record_key: str, fields: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            rows = self._read()
            existing = rows.get(record_key)
            merged = merge_fields(existing, fields)
            merged["record_key"] = record_key
            rows[record_key] = merged
            write_json(self.path, {"rows": rows})
        log.info(
            "ledger_upsert",
            record_key=record_key,
            created=existing is None,
            status=merged.get("status"),
        )
        return merged

    def get(self, record_key: str) -> dict[str, Any] | None:
        return self._read().get(record_key)

    def rows(self) -> list[dict[str, Any]]:
        rows = self._read()
        return [rows[k] for k in sorted(rows)]

    def find_by_wo_number(self, wo_number: Any) -> dict[str, Any] | None:
        """First row (by record key) whose normalised number equals ``wo_number``'s."""
        target = normalize_wo_number(wo_number)
        if target == UNKNOWN:
            return None
        rows = self._read()
        for key in sorted(rows):
            if normalize_wo_number(rows[key].get("wo_number")) == target:
                return rows[key]
        return None

    def last_signed_wo_number(self, issuer: Any) -> str | None:
        """Highest signed work order number for ``issuer``, digits only."""
        prefix = normalize_issuer_key(issuer) + ":"
        numbers: list[int] = []
        for key, row in self._read().items():
            digits = digits_only(row.get("wo_number"))
            if key.startswith(prefix) and row.get("status") == "SIGNED" and digits:
                numbers.append(int(digits))
        return str(max(numbers)) if numbers else None


class JsonReviewQueue:
    """``review_queue.json``: ``{"items": [entry, ...]}``; entries are never removed."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = file_lock(self.path)

    def _read(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        data = load_json(self.path)
        items = data.get("items", []) if isinstance(data, dict) else []
        return [dict(it) for it in items if isinstance(it, dict) and it.get("review_id")]

    def persist(self, entry: ReviewEntry | dict[str, Any]) -> ReviewEntry:
        if not isinstance(entry, ReviewEntry):
            entry = ReviewEntry.from_dict(entry)
        with self._lock:
            items = self._read()
            payload = entry.to_dict()
            for i, it in enumerate(items):
                if it["review_id"] == entry.review_id:
                    items[i] = payload
                    break
            else:
                items.append(payload)
            write_json(self.path, {"items": items})
        log.info(
            "review_persisted",
            review_id=entry.review_id,
            reason_code=entry.reason_code,
            resolved=entry.resolved,
        )
        return entry

    def load(self, review_id: str) -> ReviewEntry | None:
        for it in self._read():
            if it["review_id"] == review_id:
                return ReviewEntry.from_dict(it)
        return None

    def entries(self, resolved: bool | None = None) -> list[ReviewEntry]:
        out = [ReviewEntry.from_dict(it) for it in self._read()]
        if resolved is None:
            return out
        return [e for e in out if e.resolved is resolved]

    def __iter__(self) -> Iterator[ReviewEntry]:
        return iter(self.entries())

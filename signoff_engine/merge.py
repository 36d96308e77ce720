"""Ledger merge semantics shared by every write path.

Initial extraction, signed auto-merge, manual resolve and manual override all
derive the row key with ``record_key`` and merge into that row. A later write
that supplies fewer fields never erases what an earlier write stored
(last-write-wins per field, not per row).
"""
from __future__ import annotations

from typing import Any, Callable

from .errors import LedgerWriteConflict
from .identity import normalize_issuer_key, record_key
from .utils import utc_now_iso

UpsertFn = Callable[[str, dict[str, Any]], Any]

STICKY_FIELDS = ("created_at",)

# A re-ingested work order must not demote a row that was already signed.
STATUS_RANK = {"OPEN": 0, "SIGNED": 1}


def merge_fields(existing: dict[str, Any] | None, incoming: dict[str, Any]) -> dict[str, Any]:
    out = dict(existing or {})
    for k, v in incoming.items():
        if v is None:
            continue
        if k in STICKY_FIELDS and out.get(k) is not None:
            continue
        if k == "status" and v in STATUS_RANK and out.get("status") in STATUS_RANK:
            if STATUS_RANK[v] < STATUS_RANK[out["status"]]:
                continue
        out[k] = v
    return out


def upsert_with_retry(
    upsert: UpsertFn,
    key: str,
    fields: dict[str, Any],
    *,
    attempts: int = 3,
) -> int:
    """Call ``upsert(key, fields)``; retry on LedgerWriteConflict.

    Returns the number of attempts used. The final conflict is re-raised.
    """
    attempts = max(1, int(attempts))
    for attempt in range(1, attempts + 1):
        try:
            upsert(key, fields)
            return attempt
        except LedgerWriteConflict:
            if attempt == attempts:
                raise
    return attempts


def signed_fields(
    *,
    issuer: Any,
    wo_number: str,
    fm_key: Any,
    confidence_label: str,
    confidence_raw: float | None,
    low_confidence_merge: bool = False,
    manually_overridden: bool = False,
    signed_pdf_url: str | None = None,
    signed_preview_image_url: str | None = None,
    document_id: str | None = None,
    source: str = "signed_upload",
    now: str | None = None,
) -> dict[str, Any]:
    now = now or utc_now_iso()
    return {
        "record_key": record_key(issuer, wo_number),
        "issuer": normalize_issuer_key(issuer),
        "wo_number": wo_number.strip(),
        "fm_key": normalize_issuer_key(fm_key),
        "status": "SIGNED",
        "signed_at": now,
        "confidence": confidence_label,
        "confidence_raw": confidence_raw,
        "low_confidence_merge": bool(low_confidence_merge),
        "manually_overridden": bool(manually_overridden),
        "signed_pdf_url": signed_pdf_url,
        "signed_preview_image_url": signed_preview_image_url,
        "signed_document_id": document_id,
        "source": source,
        "created_at": now,
        "last_updated_at": now,
    }


def ingest_work_order(
    upsert: UpsertFn,
    issuer: Any,
    wo_number: str,
    fields: dict[str, Any] | None = None,
    *,
    attempts: int = 3,
    now: str | None = None,
) -> str:
    """Initial extraction write path: create (or refresh) the job row."""
    now = now or utc_now_iso()
    key = record_key(issuer, wo_number)
    row = dict(fields or {})
    row.update(
        {
            "record_key": key,
            "issuer": normalize_issuer_key(issuer),
            "wo_number": str(wo_number).strip(),
            "created_at": now,
            "last_updated_at": now,
        }
    )
    row.setdefault("status", "OPEN")
    upsert_with_retry(upsert, key, row, attempts=attempts)
    return key

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any

from .context import Collaborators, DecisionContext, Outcome
from .errors import ReviewNotFound
from .identity import normalize_issuer_key
from .merge import signed_fields, upsert_with_retry
from .reasons import NO_MATCHING_JOB_ROW
from .utils import utc_now_iso


@dataclass
class ReviewEntry:
    """One document whose confidence failed to clear the auto-merge bar.

    Append-only audit trail: entries are never deleted, only flipped to
    ``resolved=True``, after which they stay resolved.
    """
    review_id: str
    fm_key: str
    candidate_number: str | None
    confidence_raw: float | None
    reason_code: str
    resolved: bool = False
    manual_number: str | None = None
    resolved_at: str | None = None
    note: str | None = None
    document_id: str | None = None
    confidence_band: str | None = None
    signed_pdf_url: str | None = None
    preview_image_url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    conflicts: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReviewEntry":
        known = {f for f in cls.__dataclass_fields__}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["resolved"] = bool(kwargs.get("resolved", False))
        kwargs["conflicts"] = list(kwargs.get("conflicts") or [])
        return cls(**kwargs)


@dataclass
class ResolveResult:
    outcome: Outcome
    review_id: str
    record_key: str | None = None
    reason_code: str | None = None
    review_entry: ReviewEntry | None = None
    events: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class OverrideResult:
    outcome: Outcome
    record_key: str | None = None
    reason_code: str | None = None
    events: list[dict[str, Any]] = field(default_factory=list)


def merge_signed(
    collaborators: Collaborators,
    row: dict[str, Any],
    wo_number: str,
    *,
    fm_key: str,
    confidence_label: str,
    confidence_raw: float | None,
    low_confidence_merge: bool = False,
    manually_overridden: bool = False,
    signed_pdf_url: str | None = None,
    preview_image_url: str | None = None,
    document_id: str | None = None,
    source: str = "signed_upload",
    attempts: int = 3,
    now: str | None = None,
) -> tuple[str, dict[str, Any]]:
    """Merge signed evidence into the job row ``row``; returns (record_key, event)."""
    issuer = row.get("issuer") or fm_key
    fields = signed_fields(
        issuer=issuer,
        wo_number=str(row.get("wo_number") or wo_number),
        fm_key=fm_key,
        confidence_label=confidence_label,
        confidence_raw=confidence_raw,
        low_confidence_merge=low_confidence_merge,
        manually_overridden=manually_overridden,
        signed_pdf_url=signed_pdf_url,
        signed_preview_image_url=preview_image_url,
        document_id=document_id,
        source=source,
        now=now,
    )
    key = fields["record_key"]
    used = upsert_with_retry(collaborators.upsert_ledger_row, key, fields, attempts=attempts)
    event = {
        "event": "ledger_merged",
        "record_key": key,
        "confidence": confidence_label,
        "low_confidence_merge": bool(low_confidence_merge),
        "manually_overridden": bool(manually_overridden),
        "attempts": used,
    }
    return key, event


def open_review(
    ctx: DecisionContext,
    review_id: str,
    *,
    candidate_number: str | None,
    confidence_raw: float | None,
    reason_code: str,
    confidence_band: str | None,
    existing: ReviewEntry | None = None,
) -> tuple[ReviewEntry, dict[str, Any]]:
    """Create, refresh, or (when already resolved) annotate the review entry."""
    now = ctx.timestamp()
    persist = ctx.collaborators.persist_review_entry

    if existing is not None and existing.resolved:
        conflict = {
            "at": now,
            "candidate_number": candidate_number,
            "confidence_raw": confidence_raw,
            "reason_code": reason_code,
        }
        entry = replace(existing, conflicts=[*existing.conflicts, conflict], updated_at=now)
        persist(entry)
        return entry, {"event": "review_conflict_recorded", "review_id": review_id, "reason_code": reason_code}

    if existing is not None:
        entry = replace(
            existing,
            candidate_number=candidate_number,
            confidence_raw=confidence_raw,
            reason_code=reason_code,
            confidence_band=confidence_band,
            signed_pdf_url=ctx.signed_pdf_url or existing.signed_pdf_url,
            preview_image_url=ctx.preview_image_url or existing.preview_image_url,
            updated_at=now,
        )
        persist(entry)
        return entry, {"event": "review_updated", "review_id": review_id, "reason_code": reason_code}

    entry = ReviewEntry(
        review_id=review_id,
        fm_key=normalize_issuer_key(ctx.fm_key),
        candidate_number=candidate_number,
        confidence_raw=confidence_raw,
        reason_code=reason_code,
        document_id=ctx.document_id,
        confidence_band=confidence_band,
        signed_pdf_url=ctx.signed_pdf_url,
        preview_image_url=ctx.preview_image_url,
        created_at=now,
        updated_at=now,
    )
    persist(entry)
    return entry, {"event": "review_created", "review_id": review_id, "reason_code": reason_code}


def resolve_review(
    review_id: str,
    manual_number: str,
    note: str | None = None,
    *,
    collaborators: Collaborators,
    merge_attempts: int = 3,
    now: str | None = None,
) -> ResolveResult:
    """Apply a human-supplied work order number to a pending review entry.

    - job row exists: merge exactly like an auto-merge (flagged as manual) and
      mark the entry resolved -> RESOLVED_UPDATED
    - no job row: store the number, reason ``no_matching_job_row``, leave the
      entry unresolved so it can be retried once the job exists
      -> RESOLVED_NO_MATCH
    - entry already resolved: nothing is written -> RESOLVED_UPDATED
    """
    entry = collaborators.load_review_entry(review_id)
    if entry is None:
        raise ReviewNotFound(review_id)

    manual = str(manual_number or "").strip()
    if not manual:
        raise ValueError("manual_number must be a non-empty string")

    now = now or utc_now_iso()

    if entry.resolved:
        return ResolveResult(
            outcome=Outcome.RESOLVED_UPDATED,
            review_id=review_id,
            reason_code=entry.reason_code,
            review_entry=entry,
            events=[{"event": "review_already_resolved", "review_id": review_id}],
        )

    row = collaborators.find_ledger_row_by_wo_number(manual)
    if row is None:
        updated = replace(
            entry,
            manual_number=manual,
            reason_code=NO_MATCHING_JOB_ROW,
            note=note if note is not None else entry.note,
            updated_at=now,
        )
        collaborators.persist_review_entry(updated)
        return ResolveResult(
            outcome=Outcome.RESOLVED_NO_MATCH,
            review_id=review_id,
            reason_code=NO_MATCHING_JOB_ROW,
            review_entry=updated,
            events=[{"event": "review_no_matching_job", "review_id": review_id, "manual_number": manual}],
        )

    key, merged = merge_signed(
        collaborators,
        row,
        manual,
        fm_key=entry.fm_key,
        confidence_label="high",
        confidence_raw=entry.confidence_raw,
        manually_overridden=True,
        signed_pdf_url=entry.signed_pdf_url,
        preview_image_url=entry.preview_image_url,
        document_id=entry.document_id,
        source="manual_resolve",
        attempts=merge_attempts,
        now=now,
    )
    resolved = replace(
        entry,
        resolved=True,
        resolved_at=now,
        manual_number=manual,
        note=note if note is not None else entry.note,
        updated_at=now,
    )
    collaborators.persist_review_entry(resolved)
    return ResolveResult(
        outcome=Outcome.RESOLVED_UPDATED,
        review_id=review_id,
        record_key=key,
        reason_code=entry.reason_code,
        review_entry=resolved,
        events=[merged, {"event": "review_resolved", "review_id": review_id, "record_key": key}],
    )


def override_signed(
    wo_number: str,
    signed_pdf_url: str,
    *,
    fm_key: str,
    collaborators: Collaborators,
    preview_image_url: str | None = None,
    review_id: str | None = None,
    merge_attempts: int = 3,
    now: str | None = None,
) -> OverrideResult:
    """Force a signed merge for a known-good signed PDF, bypassing confidence.

    Requires a matching job row; without one nothing is written and the
    outcome is RESOLVED_NO_MATCH.
    """
    wo = str(wo_number or "").strip()
    if not wo:
        raise ValueError("wo_number must be a non-empty string")
    if not signed_pdf_url:
        raise ValueError("signed_pdf_url is required for an override")

    now = now or utc_now_iso()
    row = collaborators.find_ledger_row_by_wo_number(wo)
    if row is None:
        return OverrideResult(
            outcome=Outcome.RESOLVED_NO_MATCH,
            reason_code=NO_MATCHING_JOB_ROW,
            events=[{"event": "override_no_matching_job", "wo_number": wo}],
        )

    key, merged = merge_signed(
        collaborators,
        row,
        wo,
        fm_key=fm_key,
        confidence_label="high",
        confidence_raw=None,
        manually_overridden=True,
        signed_pdf_url=signed_pdf_url,
        preview_image_url=preview_image_url,
        source="manual_override",
        attempts=merge_attempts,
        now=now,
    )
    events = [merged]

    if review_id:
        entry = collaborators.load_review_entry(review_id)
        if entry is not None and not entry.resolved:
            collaborators.persist_review_entry(
                replace(entry, resolved=True, resolved_at=now, manual_number=wo, updated_at=now)
            )
            events.append({"event": "review_resolved", "review_id": review_id, "record_key": key})

    return OverrideResult(outcome=Outcome.AUTO_MERGED, record_key=key, events=events)

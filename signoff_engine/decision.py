"""Confidence decision engine.

Given the extracted work order number and the extractor's confidence, decide
between auto-merging the signed evidence into the ledger and parking the
document in the review queue. Bands are data, so deployments can retune the
thresholds without touching the branching below.

The engine never logs and never talks to storage directly: it calls the
``Collaborators`` from the context and returns structured events for the
host to record.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from .context import Collaborators, DecisionContext, Outcome
from .identity import digits_only, normalize_wo_number
from .reasons import (
    INVALID_WORK_ORDER_NUMBER,
    LOW_CONFIDENCE,
    MULTIPLE_CANDIDATES,
    NO_MATCHING_JOB_ROW,
    NO_WORK_ORDER_NUMBER,
    SEQ_OUTLIER,
)
from .review import ReviewEntry, merge_signed, open_review
from .utils import is_number

__all__ = [
    "BandRule",
    "Collaborators",
    "ConfidenceBand",
    "DEFAULT_BANDS",
    "DecisionContext",
    "DecisionResult",
    "Outcome",
    "build_bands",
    "classify_confidence",
    "decide_and_merge",
]


class ConfidenceBand(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    def __str__(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        return self.value.lower()


@dataclass(frozen=True)
class BandRule:
    name: ConfidenceBand
    threshold: float  # inclusive lower bound
    outcome: Outcome
    flagged: bool = False


DEFAULT_BANDS: tuple[BandRule, ...] = (
    BandRule(ConfidenceBand.HIGH, 0.90, Outcome.AUTO_MERGED),
    BandRule(ConfidenceBand.MEDIUM, 0.60, Outcome.AUTO_MERGED, flagged=True),
    BandRule(ConfidenceBand.LOW, 0.0, Outcome.PENDING_REVIEW),
)


def build_bands(high: float = 0.90, medium: float = 0.60, medium_outcome: str = "AUTO_MERGED") -> tuple[BandRule, ...]:
    """Band table from configuration values."""
    if not (0.0 <= medium <= high <= 1.0):
        raise ValueError(f"band thresholds must satisfy 0 <= medium <= high <= 1 (got medium={medium}, high={high})")
    outcome = Outcome(str(medium_outcome).upper())
    if outcome not in (Outcome.AUTO_MERGED, Outcome.PENDING_REVIEW):
        raise ValueError(f"medium_outcome must be AUTO_MERGED or PENDING_REVIEW (got {medium_outcome})")
    return (
        BandRule(ConfidenceBand.HIGH, float(high), Outcome.AUTO_MERGED),
        BandRule(ConfidenceBand.MEDIUM, float(medium), outcome, flagged=outcome is Outcome.AUTO_MERGED),
        BandRule(ConfidenceBand.LOW, 0.0, Outcome.PENDING_REVIEW),
    )


def classify_confidence(confidence_raw: Any, bands: tuple[BandRule, ...] | None = None) -> BandRule:
    if not is_number(confidence_raw) or not math.isfinite(confidence_raw):
        raise ValueError(f"confidence must be a finite number (got {confidence_raw!r})")
    if confidence_raw < 0.0 or confidence_raw > 1.0:
        raise ValueError(f"confidence must be within [0, 1] (got {confidence_raw})")
    table = sorted(bands or DEFAULT_BANDS, key=lambda b: b.threshold, reverse=True)
    for band in table:
        if confidence_raw >= band.threshold:
            return band
    return table[-1]


@dataclass
class DecisionResult:
    outcome: Outcome
    band: ConfidenceBand
    candidate_number: str | None = None
    record_key: str | None = None
    review_id: str | None = None
    reason_code: str | None = None
    review_entry: ReviewEntry | None = None
    events: list[dict[str, Any]] = field(default_factory=list)


def _clean_candidate(candidate_number: Any) -> str | None:
    if candidate_number is None:
        return None
    text = str(candidate_number).strip()
    return text or None


def _candidates(candidate_number: Any) -> list[str]:
    """Cleaned candidates in encounter order, one per normalised number."""
    raw = candidate_number if isinstance(candidate_number, (list, tuple)) else [candidate_number]
    out: list[str] = []
    seen: set[str] = set()
    for item in raw:
        text = _clean_candidate(item)
        if text is None:
            continue
        key = normalize_wo_number(text)
        if key not in seen:
            seen.add(key)
            out.append(text)
    return out


def _sequence_gap(candidate: str, last_known_wo: Any) -> int | None:
    a, b = digits_only(candidate), digits_only(last_known_wo)
    if not a or not b:
        return None
    return int(a) - int(b)


def _out_of_sequence(candidate: str, ctx: DecisionContext) -> bool:
    gap = _sequence_gap(candidate, ctx.last_known_wo)
    return gap is not None and (gap < 0 or gap > ctx.max_sequence_gap)


def _pick_candidate(candidates: list[str], ctx: DecisionContext) -> tuple[str | None, str | None]:
    """Choose one candidate; returns (candidate, reason code or None).

    With ``expected_digits`` only numbers of that length are considered. When
    several remain, the closest number at or after ``last_known_wo`` wins;
    without a sequence anchor the choice is left to a human.
    """
    if not candidates:
        return None, NO_WORK_ORDER_NUMBER
    valid = candidates
    if ctx.expected_digits:
        valid = [c for c in candidates if len(digits_only(c)) == int(ctx.expected_digits)]
        if not valid:
            return candidates[0], INVALID_WORK_ORDER_NUMBER
    if len(valid) == 1:
        return valid[0], None
    gaps = [(_sequence_gap(c, ctx.last_known_wo), c) for c in valid]
    ahead = [(gap, c) for gap, c in gaps if gap is not None and gap >= 0]
    if ahead:
        return min(ahead, key=lambda pair: pair[0])[1], None
    return valid[0], MULTIPLE_CANDIDATES


def decide_and_merge(candidate_number: Any, confidence_raw: Any, ctx: DecisionContext) -> DecisionResult:
    """Route one extraction to the ledger or the review queue.

    ``candidate_number`` may be a single value or a list of candidates read
    from the same crop zone.
    """
    band = classify_confidence(confidence_raw, ctx.bands)
    candidates = _candidates(candidate_number)
    candidate, reason = _pick_candidate(candidates, ctx)
    collab = ctx.collaborators
    events: list[dict[str, Any]] = [
        {
            "event": "confidence_classified",
            "fm_key": ctx.fm_key,
            "band": band.name.value,
            "confidence_raw": confidence_raw,
            "candidate_number": candidate,
        }
    ]
    if len(candidates) > 1:
        events[0]["candidates"] = candidates

    review_id = ctx.review_id(candidate)
    existing = collab.load_review_entry(review_id)

    if reason is None and _out_of_sequence(candidate, ctx):
        reason = SEQ_OUTLIER
    if reason is None and band.outcome is Outcome.PENDING_REVIEW:
        reason = LOW_CONFIDENCE
    if reason is None:
        row = collab.find_ledger_row_by_wo_number(candidate)
        if row is None:
            reason = NO_MATCHING_JOB_ROW
        else:
            key, merged = merge_signed(
                collab,
                row,
                candidate,
                fm_key=ctx.fm_key,
                confidence_label=band.name.label,
                confidence_raw=float(confidence_raw),
                low_confidence_merge=band.flagged,
                signed_pdf_url=ctx.signed_pdf_url,
                preview_image_url=ctx.preview_image_url,
                document_id=ctx.document_id,
                attempts=ctx.merge_attempts,
                now=ctx.now,
            )
            events.append(merged)

            entry = existing
            if existing is not None and not existing.resolved:
                now = ctx.timestamp()
                entry = replace(existing, resolved=True, resolved_at=now, updated_at=now)
                collab.persist_review_entry(entry)
                events.append({"event": "review_resolved", "review_id": review_id, "record_key": key})

            return DecisionResult(
                outcome=Outcome.AUTO_MERGED,
                band=band.name,
                candidate_number=candidate,
                record_key=key,
                review_id=review_id if entry is not None else None,
                review_entry=entry,
                events=events,
            )

    entry, opened = open_review(
        ctx,
        review_id,
        candidate_number=candidate,
        confidence_raw=float(confidence_raw),
        reason_code=reason,
        confidence_band=band.name.value,
        existing=existing,
    )
    events.append(opened)
    return DecisionResult(
        outcome=Outcome.PENDING_REVIEW,
        band=band.name,
        candidate_number=candidate,
        review_id=review_id,
        reason_code=reason,
        review_entry=entry,
        events=events,
    )

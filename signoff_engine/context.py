from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from .identity import normalize_wo_number, review_id_for
from .utils import utc_now_iso


class Outcome(str, Enum):
    AUTO_MERGED = "AUTO_MERGED"
    PENDING_REVIEW = "PENDING_REVIEW"
    RESOLVED_UPDATED = "RESOLVED_UPDATED"
    RESOLVED_NO_MATCH = "RESOLVED_NO_MATCH"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Collaborators:
    """Host-supplied storage calls. The engine performs no I/O of its own."""
    upsert_ledger_row: Callable[[str, dict[str, Any]], Any]
    find_ledger_row_by_wo_number: Callable[[str], dict[str, Any] | None]
    persist_review_entry: Callable[[Any], Any]
    load_review_entry: Callable[[str], Any]


@dataclass(frozen=True)
class DecisionContext:
    fm_key: str
    collaborators: Collaborators
    document_id: str | None = None
    signed_pdf_url: str | None = None
    preview_image_url: str | None = None
    expected_digits: int | None = None
    bands: tuple[Any, ...] | None = None  # None -> decision.DEFAULT_BANDS
    merge_attempts: int = 3
    now: str | None = None
    # highest work order number already signed for this issuer; enables the sequence check
    last_known_wo: str | None = None
    max_sequence_gap: int = 5000

    def timestamp(self) -> str:
        return self.now or utc_now_iso()

    def review_id(self, candidate_number: str | None) -> str:
        if self.document_id:
            return review_id_for(self.fm_key, self.document_id)
        if candidate_number:
            return review_id_for(self.fm_key, "wo:" + normalize_wo_number(candidate_number))
        return "review_" + uuid.uuid4().hex[:16]

"""Exception types raised by the engine.

"No matching job" is deliberately absent: it is an outcome
(``Outcome.RESOLVED_NO_MATCH``), not an error.
"""
from __future__ import annotations


class SignoffError(Exception):
    """Base class for engine errors."""


class GeometryError(SignoffError, ValueError):
    """Malformed geometry input (non-finite numbers, zero display size, ...)."""


class InvalidRegion(GeometryError):
    """A rectangle failed Region validation (shape or page containment)."""


class NonStandardPage(SignoffError, ValueError):
    """Page dimensions do not match any catalogued standard size."""

    def __init__(self, width_pt: float, height_pt: float):
        super().__init__(f"non_standard_page: {width_pt}x{height_pt}pt")
        self.width_pt = width_pt
        self.height_pt = height_pt


class ReviewNotFound(SignoffError, LookupError):
    def __init__(self, review_id: str):
        super().__init__(f"review_not_found: {review_id}")
        self.review_id = review_id


class LedgerWriteConflict(SignoffError):
    """Raised by ledger adapters when a row appeared between read and write."""

"""Standard page size catalogue.

Template capture relies on proportional math, which only holds when the page a
crop was measured against is the same physical page the template was authored
on. Phone photos and odd scans have non-standard dimensions and are rejected
before any geometry work.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

from .errors import NonStandardPage
from .utils import is_number

DEFAULT_TOLERANCE_PT = 5.0


@dataclass(frozen=True)
class StandardPageSize:
    name: str
    width_pt: float
    height_pt: float
    tolerance_pt: float = DEFAULT_TOLERANCE_PT

    def matches(self, width_pt: float, height_pt: float) -> bool:
        # inclusive at the boundary
        return (
            abs(width_pt - self.width_pt) <= self.tolerance_pt
            and abs(height_pt - self.height_pt) <= self.tolerance_pt
        )

    def landscape(self) -> "StandardPageSize":
        return StandardPageSize(
            name=f"{self.name} (landscape)",
            width_pt=self.height_pt,
            height_pt=self.width_pt,
            tolerance_pt=self.tolerance_pt,
        )


@dataclass(frozen=True)
class PageClassification:
    is_standard: bool
    matched_size: str | None = None


PORTRAIT_SIZES: tuple[tuple[str, float, float], ...] = (
    ("Letter", 612.0, 792.0),
    ("A4", 595.276, 841.890),
    ("Legal", 612.0, 1008.0),
    ("Tabloid", 792.0, 1224.0),
)


def build_catalogue(tolerance_pt: float = DEFAULT_TOLERANCE_PT) -> tuple[StandardPageSize, ...]:
    """Portrait entries first, then their landscape variants, in that order."""
    portrait = [StandardPageSize(name, w, h, float(tolerance_pt)) for name, w, h in PORTRAIT_SIZES]
    return tuple(portrait + [p.landscape() for p in portrait])


STANDARD_PAGE_SIZES = build_catalogue()


def classify_page_size(
    width_pt: float,
    height_pt: float,
    catalogue: tuple[StandardPageSize, ...] = STANDARD_PAGE_SIZES,
) -> PageClassification:
    """Match page dimensions (points) against the catalogue. First match wins."""
    if not (is_number(width_pt) and is_number(height_pt)):
        return PageClassification(is_standard=False)
    if not (math.isfinite(width_pt) and math.isfinite(height_pt)):
        return PageClassification(is_standard=False)
    if width_pt <= 0 or height_pt <= 0:
        return PageClassification(is_standard=False)

    for entry in catalogue:
        if entry.matches(width_pt, height_pt):
            return PageClassification(is_standard=True, matched_size=entry.name)
    return PageClassification(is_standard=False)


def require_standard_page(
    width_pt: float,
    height_pt: float,
    catalogue: tuple[StandardPageSize, ...] = STANDARD_PAGE_SIZES,
) -> str:
    """Return the matched size name or raise NonStandardPage."""
    result = classify_page_size(width_pt, height_pt, catalogue)
    if not result.is_standard or result.matched_size is None:
        raise NonStandardPage(width_pt, height_pt)
    return result.matched_size

from __future__ import annotations

from dataclasses import dataclass

LOW_CONFIDENCE = "low_confidence"
NO_WORK_ORDER_NUMBER = "no_work_order_number"
NO_MATCHING_JOB_ROW = "no_matching_job_row"
INVALID_WORK_ORDER_NUMBER = "invalid_work_order_number"
TEMPLATE_NOT_FOUND = "template_not_found"
INVALID_CROP = "invalid_crop"
CROP_TOO_SMALL = "crop_too_small"
TEMPLATE_PAGE_SIZE_MISMATCH = "template_page_size_mismatch"
NON_STANDARD_PAGE = "non_standard_page"
UPDATE_FAILED = "update_failed"
MANUALLY_RESOLVED = "manually_resolved"
MULTIPLE_CANDIDATES = "multiple_candidates"
SEQ_OUTLIER = "seq_outlier"


@dataclass(frozen=True)
class ReasonInfo:
    title: str
    message: str
    tone: str  # info|warning|danger|success


_REASONS: dict[str, ReasonInfo] = {
    LOW_CONFIDENCE: ReasonInfo(
        "Document quality, please verify",
        "Extraction was uncertain. Verify the work order number or enter it manually.",
        "info",
    ),
    NO_WORK_ORDER_NUMBER: ReasonInfo(
        "Work order number not detected",
        "No work order number was found in the crop zone. Enter it manually.",
        "info",
    ),
    NO_MATCHING_JOB_ROW: ReasonInfo(
        "No matching job",
        "The original work order is not in the ledger yet. Create the job first, then resolve.",
        "danger",
    ),
    INVALID_WORK_ORDER_NUMBER: ReasonInfo(
        "Work order number looks unusual",
        "The extracted number does not match the issuer's format. Confirm or enter it manually.",
        "warning",
    ),
    MULTIPLE_CANDIDATES: ReasonInfo(
        "Several work order numbers found",
        "More than one number in the crop zone fits the issuer's format. Pick the right one.",
        "warning",
    ),
    SEQ_OUTLIER: ReasonInfo(
        "Work order number out of sequence",
        "The number is behind, or far ahead of, the last signed work order for this issuer. Confirm it.",
        "warning",
    ),
    TEMPLATE_NOT_FOUND: ReasonInfo(
        "Template not found",
        "No crop zone is saved for this issuer. Draw a rectangle and save a template.",
        "warning",
    ),
    INVALID_CROP: ReasonInfo(
        "Invalid crop zone",
        "The saved crop is off-page or outside the issuer's expected range. Re-draw and save it.",
        "warning",
    ),
    CROP_TOO_SMALL: ReasonInfo(
        "Crop zone too small",
        "The rectangle is too small to read reliably. Make it bigger and save.",
        "warning",
    ),
    TEMPLATE_PAGE_SIZE_MISMATCH: ReasonInfo(
        "Template doesn't match this PDF",
        "This page is a different size from the page the template was drawn on.",
        "warning",
    ),
    NON_STANDARD_PAGE: ReasonInfo(
        "Non-standard page size",
        "The page is not Letter, A4, Legal or Tabloid (likely a phone photo). Template capture is disabled.",
        "warning",
    ),
    UPDATE_FAILED: ReasonInfo(
        "Could not update the job row",
        "The job row was found but the update did not apply. Retry or verify manually.",
        "warning",
    ),
    MANUALLY_RESOLVED: ReasonInfo(
        "Resolved manually",
        "This item was resolved by manual entry.",
        "success",
    ),
}

_FALLBACK = ReasonInfo("Verification", "This item needs verification.", "info")


def describe_reason(code: str | None) -> ReasonInfo:
    return _REASONS.get(str(code or "").lower(), _FALLBACK)


def known_reasons() -> list[str]:
    return sorted(_REASONS)

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable

from PIL import Image

from .config import EngineConfig
from .context import DecisionContext, Outcome
from .decision import ConfidenceBand, classify_confidence, decide_and_merge
from .errors import GeometryError
from .geometry import expand_region, scale_region_to_page
from .identity import document_fingerprint, normalize_issuer_key
from .logging import get_logger, log_events
from .page_sizes import build_catalogue, classify_page_size
from .reasons import INVALID_CROP, TEMPLATE_NOT_FOUND, TEMPLATE_PAGE_SIZE_MISMATCH
from .region import Region, check_region_rule
from .render import RenderedPage, render_page as default_render_page, save_snippet
from .review import open_review
from .workspace import WorkspacePaths, collaborators_for, ledger, record_event, template_store

log = get_logger(__name__)

RenderFn = Callable[[bytes, int, int], RenderedPage]
# (page image, region) -> (candidate, list of candidates or None; confidence in [0, 1])
ExtractFn = Callable[[Image.Image, Region], tuple[Any, float]]


@dataclass
class ProcessResult:
    outcome: Outcome
    document_id: str
    fm_key: str
    band: ConfidenceBand | None = None
    candidate_number: str | None = None
    confidence_raw: float | None = None
    record_key: str | None = None
    review_id: str | None = None
    reason_code: str | None = None
    snippet_path: str | None = None
    events: list[dict[str, Any]] = field(default_factory=list)


class SignedDocumentProcessor:
    """Signed sign-off sheet in, ledger merge or review entry out.

    Rendering and number extraction are injected; everything else (template
    lookup, page-size gate, region checks, the decision, snippets and the
    audit trail) happens here.
    """

    def __init__(
        self,
        paths: WorkspacePaths,
        cfg: EngineConfig,
        extract_candidate_number: ExtractFn,
        render_page: RenderFn = default_render_page,
    ):
        self.paths = paths
        self.cfg = cfg
        self.extract = extract_candidate_number
        self.render = render_page
        self.collab = collaborators_for(paths)
        self.templates = template_store(paths)
        self.ledger = ledger(paths)

    def _context(self, fm_key: str, document_id: str, signed_pdf_url: str | None, expected_digits: int | None) -> DecisionContext:
        return DecisionContext(
            fm_key=fm_key,
            collaborators=self.collab,
            document_id=document_id,
            signed_pdf_url=signed_pdf_url,
            expected_digits=expected_digits,
            bands=self.cfg.bands(),
            merge_attempts=self.cfg.merge_attempts,
            last_known_wo=self.ledger.last_signed_wo_number(fm_key) if self.cfg.sequence_check else None,
            max_sequence_gap=self.cfg.max_sequence_gap,
        )

    def _park(self, ctx: DecisionContext, reason_code: str, result: ProcessResult, **details: Any) -> ProcessResult:
        review_id = ctx.review_id(None)
        entry, event = open_review(
            ctx,
            review_id,
            candidate_number=None,
            confidence_raw=None,
            reason_code=reason_code,
            confidence_band=None,
            existing=self.collab.load_review_entry(review_id),
        )
        result.outcome = Outcome.PENDING_REVIEW
        result.review_id = entry.review_id
        result.reason_code = reason_code
        result.events.append({**event, **details})
        return result

    def _extract(self, rendered: RenderedPage, region: Region) -> tuple[Any, float, Region]:
        candidate, confidence = self.extract(rendered.image, region)
        band = classify_confidence(confidence, self.cfg.bands())
        pad = self.cfg.retry_padding_pt
        if pad > 0 and (not candidate or band.name is ConfidenceBand.LOW):
            wider = expand_region(region, pad)
            retry_candidate, retry_confidence = self.extract(rendered.image, wider)
            if retry_candidate and (not candidate or retry_confidence > confidence):
                return retry_candidate, retry_confidence, wider
        return candidate, confidence, region

    def process(
        self,
        document_bytes: bytes,
        fm_key: Any,
        *,
        signed_pdf_url: str | None = None,
    ) -> ProcessResult:
        issuer = normalize_issuer_key(fm_key)
        document_id = document_fingerprint(document_bytes)
        result = ProcessResult(outcome=Outcome.PENDING_REVIEW, document_id=document_id, fm_key=issuer)

        template = self.templates.get(issuer)
        ctx = self._context(issuer, document_id, signed_pdf_url, template.expected_digits if template else None)

        if template is None:
            return self._finish(self._park(ctx, TEMPLATE_NOT_FOUND, result), None, None)

        rendered = self.render(document_bytes, template.page_number, self.cfg.dpi)
        page = rendered.page
        size = classify_page_size(page.width_pt, page.height_pt, build_catalogue(self.cfg.page_tolerance_pt))
        if not size.is_standard or size.matched_size != template.matched_size:
            self._park(
                ctx,
                TEMPLATE_PAGE_SIZE_MISMATCH,
                result,
                expected_size=template.matched_size,
                page_size=size.matched_size,
                width_pt=page.width_pt,
                height_pt=page.height_pt,
            )
            return self._finish(result, None, None)

        try:
            region = scale_region_to_page(template.region, page)
        except GeometryError as e:
            self._park(ctx, INVALID_CROP, result, message=str(e))
            return self._finish(result, None, None)

        rule_reason = check_region_rule(region, self.cfg.rule_for(issuer))
        if rule_reason is not None:
            self._park(ctx, rule_reason, result, x_pt=region.x_pt, y_pt=region.y_pt)
            return self._finish(result, rendered, region)

        candidate, confidence, used_region = self._extract(rendered, region)
        decision = decide_and_merge(candidate, confidence, ctx)

        result.outcome = decision.outcome
        result.band = decision.band
        result.candidate_number = decision.candidate_number
        result.confidence_raw = float(confidence)
        result.record_key = decision.record_key
        result.review_id = decision.review_id
        result.reason_code = decision.reason_code
        result.events.extend(decision.events)
        return self._finish(result, rendered, used_region)

    def _finish(self, result: ProcessResult, rendered: RenderedPage | None, region: Region | None) -> ProcessResult:
        if result.outcome is Outcome.PENDING_REVIEW and rendered is not None and region is not None and result.review_id:
            snippet = save_snippet(rendered.image, region, self.paths.snippets_dir / f"{result.review_id}.png")
            result.snippet_path = str(Path(snippet).relative_to(self.paths.root))
            entry = self.collab.load_review_entry(result.review_id)
            if entry is not None and not entry.resolved and not entry.preview_image_url:
                self.collab.persist_review_entry(replace(entry, preview_image_url=result.snippet_path))
            result.events.append({"event": "snippet_saved", "review_id": result.review_id, "path": result.snippet_path})

        for ev in result.events:
            record_event(self.paths, {**ev, "document_id": result.document_id})
        log_events(log, result.events, document_id=result.document_id, fm_key=result.fm_key)
        log.info(
            "document_processed",
            document_id=result.document_id,
            fm_key=result.fm_key,
            outcome=result.outcome.value,
            reason_code=result.reason_code,
        )
        return result

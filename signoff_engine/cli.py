from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any

from .config import EngineConfig, load_config
from .context import DecisionContext
from .decision import decide_and_merge
from .errors import SignoffError
from .geometry import css_to_pdf_points
from .identity import record_key
from .logging import configure_logging, get_logger, log_events
from .merge import ingest_work_order
from .page_sizes import build_catalogue, classify_page_size
from .reasons import describe_reason
from .review import override_signed, resolve_review
from .templates import capture_template
from .validator import validate_workspace
from .workspace import (
    apply_resolution_feedback,
    collaborators_for,
    create_workspace,
    ledger,
    record_event,
    review_queue,
    template_store,
)

log = get_logger(__name__)

DEFAULT_CONFIG = str(Path("config") / "default.json")


def _floats(text: str, n: int, label: str) -> list[float]:
    parts = [p.strip() for p in str(text).split(",")]
    if len(parts) != n:
        raise ValueError(f"--{label} expects {n} comma-separated numbers, got {text!r}")
    return [float(p) for p in parts]


def _rect(text: str, label: str) -> dict[str, float]:
    x, y, w, h = _floats(text, 4, label)
    return {"x": x, "y": y, "width": w, "height": h}


def _size(text: str, label: str) -> dict[str, float]:
    w, h = _floats(text, 2, label)
    return {"width": w, "height": h}


def _page(args: argparse.Namespace) -> dict[str, Any]:
    page: dict[str, Any] = _size(args.page, "page")
    if args.bounds:
        x0, y0, x1, y1 = _floats(args.bounds, 4, "bounds")
        page["bounds_offset"] = {"x0": x0, "y0": y0, "x1": x1, "y1": y1}
    return page


def _config(args: argparse.Namespace) -> EngineConfig:
    """Load ``--config``; only the untouched default path may be absent."""
    path = getattr(args, "config", None)
    if not path or (path == DEFAULT_CONFIG and not Path(path).exists()):
        return load_config(None)
    return load_config(path)


def _print_region(region_dict: dict[str, Any]) -> None:
    for k in ("xPt", "yPt", "wPt", "hPt", "pageWidthPt", "pageHeightPt", "coordSystem"):
        print(f"{k}={region_dict[k]}")


def _emit_events(paths: Any, events: list[dict[str, Any]]) -> None:
    for ev in events:
        record_event(paths, ev)
    log_events(log, events)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="signoff_engine")
    p.add_argument("--log-level", default="WARNING", help="Log level for structured logs (stderr)")
    sub = p.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Create a workspace (ledger, review queue, templates)")
    init.add_argument("--workspace", default="./workspace", help="Workspace root")

    conv = sub.add_parser("convert", help="Convert an on-screen crop (CSS px) into PDF points")
    conv.add_argument("--crop", required=True, help="x,y,w,h in CSS px")
    conv.add_argument("--displayed", required=True, help="w,h of the displayed image in CSS px")
    conv.add_argument("--canvas", required=True, help="w,h of the rendered bitmap in px")
    conv.add_argument("--page", required=True, help="w,h of the page in points")
    conv.add_argument("--bounds", default=None, help="x0,y0,x1,y1 page box when not at the origin")
    conv.add_argument("--config", default=DEFAULT_CONFIG, help="Config path")

    cls = sub.add_parser("classify", help="Classify page dimensions against standard sizes")
    cls.add_argument("--width", required=True, type=float, help="Page width in points")
    cls.add_argument("--height", required=True, type=float, help="Page height in points")
    cls.add_argument("--config", default=DEFAULT_CONFIG, help="Config path")

    rk = sub.add_parser("record-key", help="Print the ledger identity for an issuer and number")
    rk.add_argument("--issuer", required=True)
    rk.add_argument("--wo", required=True, help="Work order number")

    ing = sub.add_parser("ingest", help="Create or refresh a job row from an original work order")
    ing.add_argument("--workspace", default="./workspace", help="Workspace root")
    ing.add_argument("--issuer", required=True)
    ing.add_argument("--wo", required=True, help="Work order number")
    ing.add_argument("--field", action="append", default=[], help="Extra key=value field (repeatable)")
    ing.add_argument("--config", default=DEFAULT_CONFIG, help="Config path")

    dec = sub.add_parser("decide", help="Apply the confidence decision to an extracted number")
    dec.add_argument("--workspace", default="./workspace", help="Workspace root")
    dec.add_argument("--fm-key", required=True, help="Issuer key (platform, domain or address)")
    dec.add_argument("--candidate", action="append", default=None, help="Extracted work order number (repeatable)")
    dec.add_argument("--confidence", required=True, type=float, help="Extractor confidence in [0, 1]")
    dec.add_argument("--document-id", default=None, help="Stable document id (fingerprint)")
    dec.add_argument("--signed-pdf-url", default=None)
    dec.add_argument("--last-known-wo", default=None, help="Anchor for the sequence check (default: ledger, when enabled)")
    dec.add_argument("--config", default=DEFAULT_CONFIG, help="Config path")

    res = sub.add_parser("resolve", help="Resolve a review entry with a manual work order number")
    res.add_argument("--workspace", default="./workspace", help="Workspace root")
    res.add_argument("--review-id", default=None)
    res.add_argument("--manual-number", default=None)
    res.add_argument("--note", default=None)
    res.add_argument("--feedback", default=None, help="Batch resolutions JSON (list of review_id/manual_number)")
    res.add_argument("--config", default=DEFAULT_CONFIG, help="Config path")

    ovr = sub.add_parser("override", help="Force a signed merge for a known-good signed PDF")
    ovr.add_argument("--workspace", default="./workspace", help="Workspace root")
    ovr.add_argument("--fm-key", required=True)
    ovr.add_argument("--wo", required=True, help="Work order number")
    ovr.add_argument("--signed-pdf-url", required=True)
    ovr.add_argument("--review-id", default=None)
    ovr.add_argument("--config", default=DEFAULT_CONFIG, help="Config path")

    rev = sub.add_parser("reviews", help="List review entries")
    rev.add_argument("--workspace", default="./workspace", help="Workspace root")
    state = rev.add_mutually_exclusive_group()
    state.add_argument("--open", action="store_true", help="Only unresolved entries")
    state.add_argument("--resolved", action="store_true", help="Only resolved entries")

    ts = sub.add_parser("template-save", help="Save an issuer's crop template")
    ts.add_argument("--workspace", default="./workspace", help="Workspace root")
    ts.add_argument("--fm-key", required=True)
    ts.add_argument("--page-number", type=int, default=1)
    ts.add_argument("--crop", required=True, help="x,y,w,h in CSS px")
    ts.add_argument("--displayed", required=True, help="w,h of the displayed image in CSS px")
    ts.add_argument("--canvas", required=True, help="w,h of the rendered bitmap in px")
    ts.add_argument("--page", required=True, help="w,h of the page in points")
    ts.add_argument("--bounds", default=None, help="x0,y0,x1,y1 page box when not at the origin")
    ts.add_argument("--expected-digits", type=int, default=None)
    ts.add_argument("--config", default=DEFAULT_CONFIG, help="Config path")

    val = sub.add_parser("validate", help="Validate workspace files and identities")
    val.add_argument("--workspace", default="./workspace", help="Workspace root")

    return p


def cmd_init(args: argparse.Namespace) -> int:
    paths = create_workspace(args.workspace)
    print(str(paths.root))
    return 0


def cmd_convert(args: argparse.Namespace) -> int:
    try:
        cfg = _config(args)
        region = css_to_pdf_points(
            _rect(args.crop, "crop"),
            _size(args.displayed, "displayed"),
            _size(args.canvas, "canvas"),
            _page(args),
            tolerance_pt=cfg.region_tolerance_pt,
        )
        _print_region(region.to_dict())
        return 0
    except (SignoffError, ValueError, OSError) as e:
        print(f"convert_failed: {e}")
        return 1


def cmd_classify(args: argparse.Namespace) -> int:
    try:
        cfg = _config(args)
    except (ValueError, OSError) as e:
        print(f"classify_failed: {e}")
        return 2
    result = classify_page_size(args.width, args.height, build_catalogue(cfg.page_tolerance_pt))
    print(f"is_standard={str(result.is_standard).lower()}")
    print(f"matched_size={result.matched_size or ''}")
    return 0 if result.is_standard else 1


def cmd_record_key(args: argparse.Namespace) -> int:
    print(f"record_key={record_key(args.issuer, args.wo)}")
    return 0


def cmd_ingest(args: argparse.Namespace) -> int:
    try:
        cfg = _config(args)
        paths = create_workspace(args.workspace)
        fields: dict[str, Any] = {}
        for item in args.field:
            if "=" not in item:
                raise ValueError(f"--field expects key=value, got {item!r}")
            k, v = item.split("=", 1)
            fields[k.strip()] = v
        key = ingest_work_order(
            ledger(paths).upsert, args.issuer, args.wo, fields, attempts=cfg.merge_attempts
        )
        _emit_events(paths, [{"event": "work_order_ingested", "record_key": key}])
        print(f"record_key={key}")
        return 0
    except (SignoffError, ValueError, OSError) as e:
        print(f"ingest_failed: {e}")
        return 1


def cmd_decide(args: argparse.Namespace) -> int:
    try:
        cfg = _config(args)
        paths = create_workspace(args.workspace)
        template = template_store(paths).get(args.fm_key)
        last_known = args.last_known_wo
        if last_known is None and cfg.sequence_check:
            last_known = ledger(paths).last_signed_wo_number(args.fm_key)
        ctx = DecisionContext(
            fm_key=args.fm_key,
            collaborators=collaborators_for(paths),
            document_id=args.document_id,
            signed_pdf_url=args.signed_pdf_url,
            expected_digits=template.expected_digits if template else None,
            bands=cfg.bands(),
            merge_attempts=cfg.merge_attempts,
            last_known_wo=last_known,
            max_sequence_gap=cfg.max_sequence_gap,
        )
        result = decide_and_merge(args.candidate, args.confidence, ctx)
        _emit_events(paths, result.events)
        print(f"outcome={result.outcome.value}")
        print(f"band={result.band.value}")
        print(f"candidate={result.candidate_number or ''}")
        print(f"record_key={result.record_key or ''}")
        print(f"review_id={result.review_id or ''}")
        print(f"reason_code={result.reason_code or ''}")
        return 0
    except (SignoffError, ValueError, OSError) as e:
        print(f"decide_failed: {e}")
        return 1


def cmd_resolve(args: argparse.Namespace) -> int:
    try:
        cfg = _config(args)
        paths = create_workspace(args.workspace)
        if args.feedback:
            stats = apply_resolution_feedback(paths, args.feedback, merge_attempts=cfg.merge_attempts)
            print(
                f"feedback_items={stats.feedback_items} resolved={stats.resolved} no_match={stats.no_match} "
                f"skipped_already_resolved={stats.skipped_already_resolved} "
                f"skipped_unknown_review={stats.skipped_unknown_review}"
            )
            return 0
        if not args.review_id or not args.manual_number:
            print("resolve_failed: --review-id and --manual-number are required without --feedback")
            return 2
        result = resolve_review(
            args.review_id,
            args.manual_number,
            args.note,
            collaborators=collaborators_for(paths),
            merge_attempts=cfg.merge_attempts,
        )
        _emit_events(paths, result.events)
        print(f"outcome={result.outcome.value}")
        print(f"record_key={result.record_key or ''}")
        print(f"reason_code={result.reason_code or ''}")
        return 0
    except (SignoffError, ValueError, OSError) as e:
        print(f"resolve_failed: {e}")
        return 1


def cmd_override(args: argparse.Namespace) -> int:
    try:
        cfg = _config(args)
        paths = create_workspace(args.workspace)
        result = override_signed(
            args.wo,
            args.signed_pdf_url,
            fm_key=args.fm_key,
            collaborators=collaborators_for(paths),
            review_id=args.review_id,
            merge_attempts=cfg.merge_attempts,
        )
        _emit_events(paths, result.events)
        print(f"outcome={result.outcome.value}")
        print(f"record_key={result.record_key or ''}")
        print(f"reason_code={result.reason_code or ''}")
        return 0
    except (SignoffError, ValueError, OSError) as e:
        print(f"override_failed: {e}")
        return 1


def cmd_reviews(args: argparse.Namespace) -> int:
    paths = create_workspace(args.workspace)
    resolved = True if args.resolved else (False if args.open else None)
    entries = review_queue(paths).entries(resolved=resolved)
    for e in entries:
        info = describe_reason(e.reason_code)
        print(
            f"review_id={e.review_id} fm_key={e.fm_key} reason_code={e.reason_code} tone={info.tone} "
            f"candidate={e.candidate_number or ''} resolved={str(e.resolved).lower()}"
        )
        print(f"  {info.title}: {info.message}")
    print(f"total={len(entries)}")
    return 0


def cmd_template_save(args: argparse.Namespace) -> int:
    try:
        cfg = _config(args)
        paths = create_workspace(args.workspace)
        template = capture_template(
            args.fm_key,
            args.page_number,
            _rect(args.crop, "crop"),
            _size(args.displayed, "displayed"),
            _size(args.canvas, "canvas"),
            _page(args),
            cfg=cfg,
            expected_digits=args.expected_digits,
        )
        saved = template_store(paths).save(template)
        print(f"fm_key={saved.fm_key}")
        print(f"matched_size={saved.matched_size}")
        _print_region(saved.region.to_dict())
        return 0
    except (SignoffError, ValueError, OSError) as e:
        print(f"template_save_failed: {e}")
        return 1


def cmd_validate(args: argparse.Namespace) -> int:
    ok, summary = validate_workspace(args.workspace)
    print(f"missing_contract_files={summary['missing_contract_files']}")
    print(f"invalid_rows={summary['invalid_rows']}")
    print(f"invalid_review_items={summary['invalid_review_items']}")
    print(f"invalid_templates={summary['invalid_templates']}")
    if not ok:
        for m in summary["errors"]:
            print(m)
        return 1
    print("OK")
    return 0


COMMANDS = {
    "init": cmd_init,
    "convert": cmd_convert,
    "classify": cmd_classify,
    "record-key": cmd_record_key,
    "ingest": cmd_ingest,
    "decide": cmd_decide,
    "resolve": cmd_resolve,
    "override": cmd_override,
    "reviews": cmd_reviews,
    "template-save": cmd_template_save,
    "validate": cmd_validate,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    handler = COMMANDS.get(args.command)
    if handler is None:
        raise SystemExit(2)
    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())

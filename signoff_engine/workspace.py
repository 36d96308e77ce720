from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .context import Collaborators
from .errors import ReviewNotFound
from .review import resolve_review
from .store import JsonLedger, JsonReviewQueue
from .templates import TemplateStore
from .utils import append_jsonl, ensure_dir, load_json, utc_now_iso, write_json


@dataclass
class WorkspacePaths:
    root: Path
    ledger_json: Path
    review_json: Path
    templates_json: Path
    events_jsonl: Path
    snippets_dir: Path


def workspace_paths(root: str | Path) -> WorkspacePaths:
    root = Path(root)
    return WorkspacePaths(
        root=root,
        ledger_json=root / "ledger.json",
        review_json=root / "review_queue.json",
        templates_json=root / "templates.json",
        events_jsonl=root / "events.jsonl",
        snippets_dir=root / "snippets",
    )


def create_workspace(root: str | Path) -> WorkspacePaths:
    """Create the workspace layout. Existing files are left untouched."""
    paths = workspace_paths(root)
    ensure_dir(paths.root)
    ensure_dir(paths.snippets_dir)
    if not paths.ledger_json.exists():
        write_json(paths.ledger_json, {"rows": {}})
    if not paths.review_json.exists():
        write_json(paths.review_json, {"items": []})
    if not paths.templates_json.exists():
        write_json(paths.templates_json, {"templates": {}})
    paths.events_jsonl.touch(exist_ok=True)
    return paths


def record_event(paths: WorkspacePaths, event: dict[str, Any]) -> None:
    row = dict(event)
    row.setdefault("at", utc_now_iso())
    append_jsonl(paths.events_jsonl, row)


def ledger(paths: WorkspacePaths) -> JsonLedger:
    return JsonLedger(paths.ledger_json)


def review_queue(paths: WorkspacePaths) -> JsonReviewQueue:
    return JsonReviewQueue(paths.review_json)


def template_store(paths: WorkspacePaths) -> TemplateStore:
    return TemplateStore(paths.templates_json)


def collaborators_for(paths: WorkspacePaths) -> Collaborators:
    led = ledger(paths)
    queue = review_queue(paths)
    return Collaborators(
        upsert_ledger_row=led.upsert,
        find_ledger_row_by_wo_number=led.find_by_wo_number,
        persist_review_entry=queue.persist,
        load_review_entry=queue.load,
    )


@dataclass
class ApplyResolutionStats:
    feedback_items: int = 0
    resolved: int = 0
    no_match: int = 0
    skipped_already_resolved: int = 0
    skipped_unknown_review: int = 0


def apply_resolution_feedback(
    paths: WorkspacePaths,
    feedback_path: str | Path,
    *,
    merge_attempts: int = 3,
) -> ApplyResolutionStats:
    """Apply a batch of manual resolutions to the review queue.

    Feedback JSON format:
    [
      {"review_id": "...", "manual_number": "...", "note": "..."}
    ]

    Idempotent: entries already resolved are skipped, so re-running the same
    feedback file writes nothing new.
    """
    feedback_obj = load_json(feedback_path)
    if isinstance(feedback_obj, list):
        items = feedback_obj
    elif isinstance(feedback_obj, dict):
        items = feedback_obj.get("items")
        if not isinstance(items, list):
            raise ValueError("resolution feedback object must contain list field: items")
    else:
        raise ValueError("resolution feedback must be a list or an object with items")

    collab = collaborators_for(paths)
    stats = ApplyResolutionStats(feedback_items=len(items))

    for item in items:
        if not isinstance(item, dict):
            continue
        review_id = str(item.get("review_id") or "")
        manual = str(item.get("manual_number") or "").strip()
        if not review_id or not manual:
            raise ValueError(f"feedback item needs review_id and manual_number: {item}")

        existing = collab.load_review_entry(review_id)
        if existing is None:
            stats.skipped_unknown_review += 1
            record_event(paths, {"event": "feedback_unknown_review", "review_id": review_id})
            continue
        if existing.resolved:
            stats.skipped_already_resolved += 1
            continue

        try:
            result = resolve_review(
                review_id,
                manual,
                item.get("note"),
                collaborators=collab,
                merge_attempts=merge_attempts,
            )
        except ReviewNotFound:
            stats.skipped_unknown_review += 1
            continue

        for ev in result.events:
            record_event(paths, ev)
        if result.review_entry is not None and result.review_entry.resolved:
            stats.resolved += 1
        else:
            stats.no_match += 1

    return stats

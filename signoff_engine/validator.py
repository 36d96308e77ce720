from __future__ import annotations

from pathlib import Path
from typing import Any

from .identity import UNKNOWN, normalize_issuer_key, normalize_wo_number, record_key
from .region import is_region
from .utils import load_json

_REVIEW_REQUIRED = ("review_id", "fm_key", "candidate_number", "confidence_raw", "reason_code", "resolved")


def _validate_ledger(obj: Any, errors: list[str]) -> int:
    invalid = 0
    rows = obj.get("rows") if isinstance(obj, dict) else None
    if not isinstance(rows, dict):
        errors.append("ledger.json: rows must be an object")
        return 1

    seen: dict[tuple[str, str], str] = {}
    for key, row in rows.items():
        if not isinstance(row, dict):
            errors.append(f"ledger.json: row {key}: not an object")
            invalid += 1
            continue
        expected = record_key(row.get("issuer"), row.get("wo_number"))
        if key != expected:
            errors.append(f"ledger.json: row {key}: key does not match identity {expected}")
            invalid += 1
        if row.get("record_key") not in (None, key):
            errors.append(f"ledger.json: row {key}: record_key field is {row.get('record_key')}")
            invalid += 1
        ident = (normalize_issuer_key(row.get("issuer")), normalize_wo_number(row.get("wo_number")))
        if ident[1] == UNKNOWN:
            errors.append(f"ledger.json: row {key}: missing wo_number")
            invalid += 1
        if ident in seen:
            errors.append(f"ledger.json: rows {seen[ident]} and {key} share identity {ident[0]}:{ident[1]}")
            invalid += 1
        else:
            seen[ident] = key
        if row.get("status") == "SIGNED" and not row.get("signed_at"):
            errors.append(f"ledger.json: row {key}: SIGNED without signed_at")
            invalid += 1
    return invalid


def _validate_review_schema(obj: Any, errors: list[str]) -> int:
    invalid = 0
    items = obj.get("items") if isinstance(obj, dict) else None
    if not isinstance(items, list):
        errors.append("review_queue.json: items must be a list")
        return 1

    ids: set[str] = set()
    for idx, it in enumerate(items):
        if not isinstance(it, dict):
            errors.append(f"review_queue.json: invalid item[{idx}]: not an object")
            invalid += 1
            continue
        rid = str(it.get("review_id") or "")
        missing = [k for k in _REVIEW_REQUIRED if k not in it]
        if missing:
            errors.append(f"review_queue.json: item[{idx}] review_id={rid}: missing {', '.join(missing)}")
            invalid += 1
            continue
        if not isinstance(it["resolved"], bool):
            errors.append(f"review_queue.json: item[{idx}] review_id={rid}: resolved must be a boolean")
            invalid += 1
        elif it["resolved"] and not it.get("resolved_at"):
            errors.append(f"review_queue.json: item[{idx}] review_id={rid}: resolved without resolved_at")
            invalid += 1
        if rid in ids:
            errors.append(f"review_queue.json: duplicate review_id {rid}")
            invalid += 1
        ids.add(rid)
    return invalid


def _validate_templates(obj: Any, errors: list[str]) -> int:
    invalid = 0
    items = obj.get("templates") if isinstance(obj, dict) else None
    if not isinstance(items, dict):
        errors.append("templates.json: templates must be an object")
        return 1
    for key, tpl in items.items():
        region = tpl.get("region") if isinstance(tpl, dict) else None
        if not is_region(region):
            errors.append(f"templates.json: template {key}: invalid region")
            invalid += 1
    return invalid


def validate_workspace(root: str | Path) -> tuple[bool, dict[str, Any]]:
    root = Path(root)
    errors: list[str] = []

    missing_contract_files = 0
    invalid_rows = 0
    invalid_review_items = 0
    invalid_templates = 0

    for f in ("ledger.json", "review_queue.json", "templates.json", "events.jsonl"):
        p = root / f
        if not p.exists():
            missing_contract_files += 1
            errors.append(f"missing: {p}")

    checks = (
        ("ledger.json", _validate_ledger),
        ("review_queue.json", _validate_review_schema),
        ("templates.json", _validate_templates),
    )
    counts: dict[str, int] = {}
    for name, check in checks:
        p = root / name
        if not p.exists():
            continue
        try:
            obj = load_json(p)
        except (OSError, ValueError) as e:
            errors.append(f"failed to read {name}: {e}")
            counts[name] = 1
            continue
        counts[name] = check(obj, errors)

    invalid_rows = counts.get("ledger.json", 0)
    invalid_review_items = counts.get("review_queue.json", 0)
    invalid_templates = counts.get("templates.json", 0)

    summary: dict[str, Any] = {
        "missing_contract_files": missing_contract_files,
        "invalid_rows": invalid_rows,
        "invalid_review_items": invalid_review_items,
        "invalid_templates": invalid_templates,
        "errors": errors,
    }

    ok = not errors
    return ok, summary

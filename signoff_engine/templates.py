from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import EngineConfig, default_config
from .errors import InvalidRegion
from .geometry import css_to_pdf_points
from .identity import normalize_issuer_key
from .logging import get_logger
from .page_sizes import build_catalogue, require_standard_page
from .region import Region, enforce_region_rule, region_from_dict
from .store import file_lock
from .types import PageGeometry
from .utils import load_json, utc_now_iso, write_json

log = get_logger(__name__)


@dataclass(frozen=True)
class Template:
    """Where one issuer prints the work order number on its sign-off sheet."""
    fm_key: str
    page_number: int
    region: Region
    matched_size: str
    expected_digits: int | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "fm_key": self.fm_key,
            "page_number": self.page_number,
            "region": self.region.to_dict(),
            "matched_size": self.matched_size,
            "expected_digits": self.expected_digits,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Template":
        if not isinstance(data, dict):
            raise InvalidRegion(f"template must be an object, got {type(data).__name__}")
        digits = data.get("expected_digits")
        return cls(
            fm_key=normalize_issuer_key(data.get("fm_key")),
            page_number=int(data.get("page_number", 1)),
            region=region_from_dict(data.get("region")),
            matched_size=str(data.get("matched_size") or ""),
            expected_digits=int(digits) if digits else None,
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


def capture_template(
    fm_key: Any,
    page_number: int,
    crop_css: Any,
    displayed: Any,
    canvas: Any,
    page: Any,
    *,
    cfg: EngineConfig | None = None,
    expected_digits: int | None = None,
    now: str | None = None,
) -> Template:
    """Turn an operator's on-screen rectangle into a storable Template.

    Raises NonStandardPage before any geometry is attempted, GeometryError or
    InvalidRegion for a bad rectangle, and InvalidRegion when the issuer's
    RegionRule rejects the crop.
    """
    cfg = cfg or default_config()
    if int(page_number) < 1:
        raise ValueError(f"page_number must be >= 1, got {page_number}")
    geometry = PageGeometry.from_any(page)
    matched = require_standard_page(
        geometry.width_pt, geometry.height_pt, build_catalogue(cfg.page_tolerance_pt)
    )
    region = css_to_pdf_points(
        crop_css, displayed, canvas, geometry, tolerance_pt=cfg.region_tolerance_pt
    )
    issuer = normalize_issuer_key(fm_key)
    enforce_region_rule(region, cfg.rule_for(issuer), label=issuer)
    now = now or utc_now_iso()
    return Template(
        fm_key=issuer,
        page_number=int(page_number),
        region=region,
        matched_size=matched,
        expected_digits=int(expected_digits) if expected_digits else None,
        created_at=now,
        updated_at=now,
    )


class TemplateStore:
    """``templates.json``: ``{"templates": {fm_key: template}}``, one per issuer."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = file_lock(self.path)

    def _read(self) -> dict[str, dict[str, Any]]:
        if not self.path.exists():
            return {}
        data = load_json(self.path)
        items = data.get("templates", {}) if isinstance(data, dict) else {}
        return {str(k): v for k, v in items.items() if isinstance(v, dict)}

    def save(self, template: Template) -> Template:
        key = normalize_issuer_key(template.fm_key)
        with self._lock:
            items = self._read()
            previous = items.get(key)
            payload = template.to_dict()
            if previous and previous.get("created_at"):
                payload["created_at"] = previous["created_at"]
            items[key] = payload
            write_json(self.path, {"templates": items})
        log.info(
            "template_saved",
            fm_key=key,
            page_number=template.page_number,
            matched_size=template.matched_size,
            replaced=previous is not None,
        )
        return Template.from_dict(payload)

    def get(self, fm_key: Any) -> Template | None:
        raw = self._read().get(normalize_issuer_key(fm_key))
        return Template.from_dict(raw) if raw is not None else None

    def raw(self) -> dict[str, dict[str, Any]]:
        return self._read()

    def all(self) -> list[Template]:
        items = self._read()
        return [Template.from_dict(items[k]) for k in sorted(items)]

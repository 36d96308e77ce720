"""Canonical region model: a rectangle in PDF points, top-left origin.

Point space is the only accepted wire format. Percentages lose precision
across re-renders at different resolutions and hide the bounds offset, so any
payload carrying ``xPct``-style fields is rejected outright.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping

from .errors import GeometryError, InvalidRegion
from .types import BoundsOffset
from .utils import is_finite_number, is_number

DEFAULT_TOLERANCE_PT = 1.0
DEFAULT_ROUND_DIGITS = 2

_PCT_KEYS = ("xPct", "yPct", "wPct", "hPct", "x_pct", "y_pct", "w_pct", "h_pct")

# (canonical name, accepted keys)
_FIELDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("x_pt", ("x_pt", "xPt")),
    ("y_pt", ("y_pt", "yPt")),
    ("w_pt", ("w_pt", "wPt")),
    ("h_pt", ("h_pt", "hPt")),
    ("page_width_pt", ("page_width_pt", "pageWidthPt")),
    ("page_height_pt", ("page_height_pt", "pageHeightPt")),
)


class CoordSystem(str, Enum):
    PDF_POINTS_TOP_LEFT = "PDF_POINTS_TOP_LEFT"


_LEGACY_COORD_TAGS = {"", "PDF_POINTS", "PDF_POINTS_TOP_LEFT"}


def migrate_coord_system(tag: Any) -> CoordSystem:
    """Map a stored coordinate-system tag (including legacy aliases) to CoordSystem."""
    if tag is None or isinstance(tag, CoordSystem):
        return CoordSystem.PDF_POINTS_TOP_LEFT
    if isinstance(tag, str) and tag.strip().upper() in _LEGACY_COORD_TAGS:
        return CoordSystem.PDF_POINTS_TOP_LEFT
    raise InvalidRegion(f"unsupported coordinate system: {tag!r}")


@dataclass(frozen=True)
class Region:
    x_pt: float
    y_pt: float
    w_pt: float
    h_pt: float
    page_width_pt: float
    page_height_pt: float
    bounds_offset: BoundsOffset | None = None
    coord_system: CoordSystem = CoordSystem.PDF_POINTS_TOP_LEFT

    @property
    def right_pt(self) -> float:
        return self.x_pt + self.w_pt

    @property
    def bottom_pt(self) -> float:
        return self.y_pt + self.h_pt

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "xPt": self.x_pt,
            "yPt": self.y_pt,
            "wPt": self.w_pt,
            "hPt": self.h_pt,
            "pageWidthPt": self.page_width_pt,
            "pageHeightPt": self.page_height_pt,
            "coordSystem": self.coord_system.value,
        }
        if self.bounds_offset is not None:
            out["boundsPt"] = self.bounds_offset.to_dict()
        return out


def _read_fields(raw: Any) -> tuple[dict[str, Any], Any]:
    if isinstance(raw, Region):
        values = {name: getattr(raw, name) for name, _ in _FIELDS}
        return values, raw.bounds_offset
    if not isinstance(raw, Mapping):
        raise InvalidRegion(f"region must be a mapping, got {type(raw).__name__}")

    present_pct = [k for k in _PCT_KEYS if k in raw]
    if present_pct:
        raise InvalidRegion(
            f"percentage fields are not accepted ({', '.join(present_pct)}); use PDF points"
        )

    values: dict[str, Any] = {}
    missing: list[str] = []
    for name, keys in _FIELDS:
        found = next((k for k in keys if k in raw), None)
        if found is None:
            missing.append(keys[-1])
        else:
            values[name] = raw[found]
    if missing:
        raise InvalidRegion(f"missing PDF point fields: {', '.join(missing)}")

    bounds = raw.get("bounds_offset", raw.get("boundsOffset", raw.get("boundsPt")))
    return values, bounds


def make_region(
    raw: Any,
    *,
    tolerance_pt: float = DEFAULT_TOLERANCE_PT,
    round_digits: int | None = DEFAULT_ROUND_DIGITS,
) -> Region:
    """Validate ``raw`` and return a Region, or raise InvalidRegion.

    Values are rounded to ``round_digits`` first so every check sees the
    numbers that get stored. Checks run in order: field presence and types,
    finiteness, positive sizes, non-negative origin, containment in the page
    box (``tolerance_pt`` slack), and, when a bounds offset is given, that the
    offset agrees with the page size and the offset-adjusted box stays inside
    it. Nothing is clamped.
    """
    values, bounds_raw = _read_fields(raw)

    for name, v in values.items():
        if not is_number(v):
            raise InvalidRegion(f"{name} must be a number, got {type(v).__name__}")
        if not is_finite_number(v):
            raise InvalidRegion(f"{name} must be finite, got {v}")

    nums = {name: float(v) for name, v in values.items()}
    if round_digits is not None:
        # + 0.0 turns a rounded -0.0 into 0.0
        nums = {name: round(v, round_digits) + 0.0 for name, v in nums.items()}
    x, y, w, h = nums["x_pt"], nums["y_pt"], nums["w_pt"], nums["h_pt"]
    pw, ph = nums["page_width_pt"], nums["page_height_pt"]

    if pw <= 0 or ph <= 0:
        raise InvalidRegion(f"page dimensions must be positive, got {pw}x{ph}")
    if w <= 0 or h <= 0:
        raise InvalidRegion(f"region width/height must be positive, got w={w} h={h}")
    if x < 0 or y < 0:
        raise InvalidRegion(f"region origin must be >= 0, got x={x} y={y}")
    if x + w > pw + tolerance_pt or y + h > ph + tolerance_pt:
        raise InvalidRegion(
            f"region out of bounds: x={x} y={y} w={w} h={h} page={pw}x{ph}"
        )

    try:
        bounds = BoundsOffset.from_any(bounds_raw)
    except GeometryError as e:
        raise InvalidRegion(str(e)) from e
    if bounds is not None:
        if abs(bounds.width - pw) > tolerance_pt or abs(bounds.height - ph) > tolerance_pt:
            raise InvalidRegion(
                f"bounds {bounds.width}x{bounds.height} disagree with page {pw}x{ph}"
            )
        bx, by = x + bounds.x0, y + bounds.y0
        if (
            bx < bounds.x0
            or by < bounds.y0
            or bx + w > bounds.x1 + tolerance_pt
            or by + h > bounds.y1 + tolerance_pt
        ):
            raise InvalidRegion(f"offset-adjusted region escapes page bounds {bounds.to_dict()}")

    coord = CoordSystem.PDF_POINTS_TOP_LEFT
    if isinstance(raw, Mapping):
        coord = migrate_coord_system(raw.get("coordSystem", raw.get("coord_system")))

    return Region(x, y, w, h, pw, ph, bounds_offset=bounds, coord_system=coord)


def is_region(obj: Any) -> bool:
    """Total predicate: True when ``obj`` is (or describes) a valid Region."""
    try:
        make_region(obj, round_digits=None)
    except (InvalidRegion, TypeError, ValueError):
        return False
    return True


def region_from_dict(data: Any) -> Region:
    """Deserialise a persisted region of unknown provenance."""
    return make_region(data)


# ---------------------------------------------------------------------------
# Per-issuer rules (supplied by configuration)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RegionRule:
    """Extra constraints one issuer's template must satisfy."""
    x_range_pt: tuple[float, float] | None = None
    y_range_pt: tuple[float, float] | None = None
    min_w_pt: float = 0.0
    min_h_pt: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "RegionRule":
        data = data or {}
        xr = data.get("x_range_pt")
        yr = data.get("y_range_pt")
        return cls(
            x_range_pt=(float(xr[0]), float(xr[1])) if xr else None,
            y_range_pt=(float(yr[0]), float(yr[1])) if yr else None,
            min_w_pt=float(data.get("min_w_pt", 0.0)),
            min_h_pt=float(data.get("min_h_pt", 0.0)),
        )

    def merged(self, other: "RegionRule") -> "RegionRule":
        """``other`` wins wherever it sets something."""
        return replace(
            self,
            x_range_pt=other.x_range_pt or self.x_range_pt,
            y_range_pt=other.y_range_pt or self.y_range_pt,
            min_w_pt=max(self.min_w_pt, other.min_w_pt),
            min_h_pt=max(self.min_h_pt, other.min_h_pt),
        )


def check_region_rule(region: Region, rule: RegionRule | None) -> str | None:
    """Return a review reason code when ``region`` violates ``rule``."""
    if rule is None:
        return None
    if rule.x_range_pt and not (rule.x_range_pt[0] <= region.x_pt <= rule.x_range_pt[1]):
        return "invalid_crop"
    if rule.y_range_pt and not (rule.y_range_pt[0] <= region.y_pt <= rule.y_range_pt[1]):
        return "invalid_crop"
    if region.w_pt < rule.min_w_pt or region.h_pt < rule.min_h_pt:
        return "crop_too_small"
    return None


def enforce_region_rule(region: Region, rule: RegionRule | None, *, label: str = "region") -> Region:
    reason = check_region_rule(region, rule)
    if reason is not None:
        raise InvalidRegion(f"[{label}] {reason}: x={region.x_pt} y={region.y_pt} w={region.w_pt} h={region.h_pt}")
    return region

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping

from .errors import GeometryError
from .utils import is_finite_number

# x1-x0 must equal the page width up to float noise from the renderer.
_BOUNDS_EPS_PT = 0.01


def _pick(obj: Mapping[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in obj:
            return obj[k]
    return None


def _finite(name: str, v: Any) -> float:
    if not is_finite_number(v):
        raise GeometryError(f"{name} must be a finite number, got {v!r}")
    return float(v)


@dataclass(frozen=True)
class Size:
    """Displayed (CSS) or rendered canvas size in pixels."""
    width: float
    height: float

    @classmethod
    def from_any(cls, obj: Any) -> "Size":
        if isinstance(obj, Size):
            return obj
        if isinstance(obj, Mapping):
            return cls(_pick(obj, "width", "w"), _pick(obj, "height", "h"))
        if isinstance(obj, (tuple, list)) and len(obj) == 2:
            return cls(obj[0], obj[1])
        raise GeometryError(f"cannot read a size from {obj!r}")

    def require_positive(self, label: str) -> "Size":
        w = _finite(f"{label}.width", self.width)
        h = _finite(f"{label}.height", self.height)
        if w <= 0 or h <= 0:
            raise GeometryError(f"{label} dimensions must be > 0, got {w}x{h}")
        return self

    def to_dict(self) -> dict[str, float]:
        return {"width": self.width, "height": self.height}


@dataclass(frozen=True)
class Rect:
    """Top-left anchored rectangle in CSS or canvas pixels (never persisted)."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_any(cls, obj: Any) -> "Rect":
        if isinstance(obj, Rect):
            return obj
        if isinstance(obj, Mapping):
            return cls(
                _pick(obj, "x"),
                _pick(obj, "y"),
                _pick(obj, "width", "w"),
                _pick(obj, "height", "h"),
            )
        raise GeometryError(f"cannot read a rectangle from {obj!r}")

    def require_finite(self, label: str) -> "Rect":
        for name in ("x", "y", "width", "height"):
            _finite(f"{label}.{name}", getattr(self, name))
        return self

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


CssRect = Rect
CanvasRect = Rect


@dataclass(frozen=True)
class BoundsOffset:
    """Page bounding box as reported by a renderer; may not start at (0,0)."""
    x0: float
    y0: float
    x1: float
    y1: float

    def __post_init__(self) -> None:
        for name in ("x0", "y0", "x1", "y1"):
            _finite(f"bounds.{name}", getattr(self, name))

    @property
    def width(self) -> float:
        return self.x1 - self.x0

    @property
    def height(self) -> float:
        return self.y1 - self.y0

    @property
    def is_origin(self) -> bool:
        return self.x0 == 0 and self.y0 == 0

    @classmethod
    def from_any(cls, obj: Any) -> "BoundsOffset | None":
        if obj is None or isinstance(obj, BoundsOffset):
            return obj
        if isinstance(obj, Mapping):
            return cls(obj.get("x0"), obj.get("y0"), obj.get("x1"), obj.get("y1"))
        if isinstance(obj, (tuple, list)) and len(obj) == 4:
            return cls(obj[0], obj[1], obj[2], obj[3])
        raise GeometryError(f"cannot read bounds from {obj!r}")

    def to_dict(self) -> dict[str, float]:
        return {"x0": self.x0, "y0": self.y0, "x1": self.x1, "y1": self.y1}


@dataclass(frozen=True)
class PageGeometry:
    """One PDF page's physical size in points, computed once per render."""
    width_pt: float
    height_pt: float
    bounds_offset: BoundsOffset | None = None

    def __post_init__(self) -> None:
        w = _finite("page.width_pt", self.width_pt)
        h = _finite("page.height_pt", self.height_pt)
        if w <= 0 or h <= 0:
            raise GeometryError(f"page dimensions must be > 0, got {w}x{h}")
        b = self.bounds_offset
        if b is not None:
            if not math.isclose(b.width, w, abs_tol=_BOUNDS_EPS_PT) or not math.isclose(
                b.height, h, abs_tol=_BOUNDS_EPS_PT
            ):
                raise GeometryError(
                    f"bounds {b.width}x{b.height} disagree with page size {w}x{h}"
                )

    @classmethod
    def from_any(cls, obj: Any) -> "PageGeometry":
        if isinstance(obj, PageGeometry):
            return obj
        if isinstance(obj, Mapping):
            return cls(
                _pick(obj, "width_pt", "widthPt", "width"),
                _pick(obj, "height_pt", "heightPt", "height"),
                BoundsOffset.from_any(_pick(obj, "bounds_offset", "boundsOffset", "boundsPt")),
            )
        raise GeometryError(f"cannot read page geometry from {obj!r}")

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"widthPt": self.width_pt, "heightPt": self.height_pt}
        if self.bounds_offset is not None:
            out["boundsPt"] = self.bounds_offset.to_dict()
        return out

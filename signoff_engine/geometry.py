"""Coordinate conversion between screen pixels, canvas pixels and PDF points.

Four spaces are involved:

1. CSS pixels: the rectangle a human drew on the (possibly scaled) preview.
2. Canvas pixels: the full-resolution rendered page image.
3. PDF points: persisted space, 1/72 inch, top-left origin, 0-based.
4. Renderer bounds: some renderers report a page box that does not start at
   (0,0); its ``x0/y0`` is subtracted on the way in and added back on the way
   out.

All conversion is proportional against the page size in points; no DPI is
assumed anywhere.
"""
from __future__ import annotations

from typing import Any

from .errors import GeometryError
from .region import DEFAULT_TOLERANCE_PT, Region, make_region
from .types import BoundsOffset, PageGeometry, Rect, Size


def _scale(rect: Rect, sx: float, sy: float) -> Rect:
    return Rect(rect.x * sx, rect.y * sy, rect.width * sx, rect.height * sy)


def css_to_canvas(crop_css: Any, displayed: Any, canvas: Any) -> Rect:
    rect = Rect.from_any(crop_css).require_finite("crop")
    d = Size.from_any(displayed).require_positive("displayed")
    c = Size.from_any(canvas).require_positive("canvas")
    return _scale(rect, c.width / d.width, c.height / d.height)


def canvas_to_css(rect_canvas: Any, canvas: Any, displayed: Any) -> Rect:
    rect = Rect.from_any(rect_canvas).require_finite("canvas_rect")
    c = Size.from_any(canvas).require_positive("canvas")
    d = Size.from_any(displayed).require_positive("displayed")
    return _scale(rect, d.width / c.width, d.height / c.height)


def canvas_to_pdf_points(rect_canvas: Any, canvas: Any, page: Any) -> tuple[float, float, float, float]:
    """Proportional canvas px -> points, in the renderer's bounds space (no validation)."""
    rect = Rect.from_any(rect_canvas).require_finite("canvas_rect")
    c = Size.from_any(canvas).require_positive("canvas")
    p = PageGeometry.from_any(page)
    return (
        rect.x / c.width * p.width_pt,
        rect.y / c.height * p.height_pt,
        rect.width / c.width * p.width_pt,
        rect.height / c.height * p.height_pt,
    )


def css_to_pdf_points(
    crop_css: Any,
    displayed: Any,
    canvas: Any,
    page: Any,
    bounds_offset: Any = None,
    *,
    tolerance_pt: float = DEFAULT_TOLERANCE_PT,
) -> Region:
    """Convert a UI crop (CSS px) into a validated Region.

    Raises GeometryError for malformed input (zero display size, non-finite
    numbers, negative crop size) and InvalidRegion when the resulting box does
    not fit the page.
    """
    rect = Rect.from_any(crop_css).require_finite("crop")
    if rect.width < 0 or rect.height < 0:
        raise GeometryError(f"crop width/height must not be negative, got {rect.width}x{rect.height}")

    geometry = PageGeometry.from_any(page)
    bounds = BoundsOffset.from_any(bounds_offset) if bounds_offset is not None else geometry.bounds_offset

    canvas_rect = css_to_canvas(rect, displayed, canvas)
    x_b, y_b, w_pt, h_pt = canvas_to_pdf_points(canvas_rect, canvas, geometry)

    x0 = bounds.x0 if bounds is not None else 0.0
    y0 = bounds.y0 if bounds is not None else 0.0

    return make_region(
        {
            "x_pt": x_b - x0,
            "y_pt": y_b - y0,
            "w_pt": w_pt,
            "h_pt": h_pt,
            "page_width_pt": geometry.width_pt,
            "page_height_pt": geometry.height_pt,
            "bounds_offset": bounds,
        },
        tolerance_pt=tolerance_pt,
    )


def pdf_points_to_css(
    region: Region,
    page: Any,
    canvas: Any,
    displayed: Any,
    bounds_offset: Any = None,
) -> Rect:
    """Reciprocal of css_to_pdf_points.

    Proportions are taken against the page size the region was saved with;
    ``page`` supplies the bounds offset when none is passed explicitly.
    """
    if not isinstance(region, Region):
        region = make_region(region)
    c = Size.from_any(canvas).require_positive("canvas")
    d = Size.from_any(displayed).require_positive("displayed")

    bounds = BoundsOffset.from_any(bounds_offset) if bounds_offset is not None else None
    if bounds is None and page is not None:
        bounds = PageGeometry.from_any(page).bounds_offset
    if bounds is None:
        bounds = region.bounds_offset
    x0 = bounds.x0 if bounds is not None else 0.0
    y0 = bounds.y0 if bounds is not None else 0.0

    pw, ph = region.page_width_pt, region.page_height_pt
    canvas_rect = Rect(
        (region.x_pt + x0) / pw * c.width,
        (region.y_pt + y0) / ph * c.height,
        region.w_pt / pw * c.width,
        region.h_pt / ph * c.height,
    )
    return _scale(canvas_rect, d.width / c.width, d.height / c.height)


def scale_region_to_page(region: Region, page: Any) -> Region:
    """Rescale a template region authored on one page size onto ``page``.

    Used when a document page is the same standard size as the template page
    but its reported dimensions differ slightly.
    """
    p = PageGeometry.from_any(page)
    sx = p.width_pt / region.page_width_pt
    sy = p.height_pt / region.page_height_pt
    if sx == 1.0 and sy == 1.0 and p.bounds_offset == region.bounds_offset:
        return region
    return make_region(
        {
            "x_pt": region.x_pt * sx,
            "y_pt": region.y_pt * sy,
            "w_pt": region.w_pt * sx,
            "h_pt": region.h_pt * sy,
            "page_width_pt": p.width_pt,
            "page_height_pt": p.height_pt,
            "bounds_offset": p.bounds_offset,
        }
    )


def expand_region(region: Region, pad_pt: float) -> Region:
    """Grow ``region`` by ``pad_pt`` on every side, kept inside the page.

    Produces the wider retry crop used when a first extraction is unreliable.
    """
    if pad_pt < 0:
        raise GeometryError(f"pad_pt must be >= 0, got {pad_pt}")
    x = max(0.0, region.x_pt - pad_pt)
    y = max(0.0, region.y_pt - pad_pt)
    right = min(region.page_width_pt, region.right_pt + pad_pt)
    bottom = min(region.page_height_pt, region.bottom_pt + pad_pt)
    return make_region(
        {
            "x_pt": x,
            "y_pt": y,
            "w_pt": right - x,
            "h_pt": bottom - y,
            "page_width_pt": region.page_width_pt,
            "page_height_pt": region.page_height_pt,
            "bounds_offset": region.bounds_offset,
        }
    )

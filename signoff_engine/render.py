from __future__ import annotations

import math
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

from PIL import Image

from .region import Region
from .types import BoundsOffset, PageGeometry, Size


@dataclass(frozen=True)
class RenderedPage:
    page_number: int
    canvas: Size  # rendered bitmap size in pixels
    page: PageGeometry
    image: Image.Image


def render_page(document_bytes: bytes, page_number: int, dpi: int = 200) -> RenderedPage:
    """Rasterise one page (1-based) of a PDF held in memory."""
    try:
        import fitz  # PyMuPDF
    except Exception as e:  # pragma: no cover
        raise RuntimeError("PyMuPDF is required for rendering. Install pymupdf.") from e

    if page_number < 1:
        raise ValueError(f"page_number must be >= 1, got {page_number}")

    with fitz.open(stream=document_bytes, filetype="pdf") as doc:
        if page_number > doc.page_count:
            raise ValueError(f"page {page_number} out of range (document has {doc.page_count})")
        p = doc.load_page(page_number - 1)

        bounds = None
        cb = p.cropbox
        if p.rotation == 0 and (cb.x0 != 0 or cb.y0 != 0):
            bounds = BoundsOffset(cb.x0, cb.y0, cb.x1, cb.y1)
        geometry = PageGeometry(p.rect.width, p.rect.height, bounds)

        zoom = dpi / 72.0
        pix = p.get_pixmap(matrix=fitz.Matrix(zoom, zoom), alpha=False)
        img = Image.open(BytesIO(pix.tobytes("png"))).convert("RGB")

    return RenderedPage(
        page_number=page_number,
        canvas=Size(float(img.width), float(img.height)),
        page=geometry,
        image=img,
    )


def _pixel_box(region: Region, w: int, h: int) -> tuple[int, int, int, int]:
    sx = w / region.page_width_pt
    sy = h / region.page_height_pt
    x0 = max(0, min(w - 1, int(math.floor(region.x_pt * sx))))
    y0 = max(0, min(h - 1, int(math.floor(region.y_pt * sy))))
    x1 = max(x0 + 1, min(w, int(math.ceil(region.right_pt * sx))))
    y1 = max(y0 + 1, min(h, int(math.ceil(region.bottom_pt * sy))))
    return x0, y0, x1, y1


def crop_region(image: Image.Image, region: Region) -> Image.Image:
    """Crop a Region out of a page bitmap rendered from the same visible page box."""
    return image.crop(_pixel_box(region, image.width, image.height))


def save_snippet(image: Image.Image, region: Region, out_path: str | Path) -> Path:
    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    crop_region(image, region).save(out, format="PNG")
    return out

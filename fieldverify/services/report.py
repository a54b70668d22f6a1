"""Case report PDF — title page plus one page per populated required category.

Rendered with reportlab's canvas API. Images are decoded with Pillow first so
corrupt or unsupported files are skipped (and logged) instead of aborting the
whole report.
"""

from __future__ import annotations

import io
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from PIL import Image, UnidentifiedImageError
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas as rl_canvas

from fieldverify.core.errors import TransientRemoteError
from fieldverify.services.policy import PhotoRequirement
from fieldverify.services.storage import read_uri

logger = logging.getLogger(__name__)

MARGIN = 50
MAX_IMAGE_HEIGHT = 300
BAND_FONT = ("Helvetica", 9)
BAND_LINE = 11
BAND_PADDING = 4


def optimized_url(uri: str) -> str:
    """Downscaled JPEG rendition for unsigned Cloudinary URLs; anything else unchanged."""
    if "cloudinary.com" in uri and "/upload/" in uri and "/s--" not in uri and "f_jpg" not in uri:
        return uri.replace("/upload/", "/upload/w_600,q_50,f_jpg/", 1)
    return uri


def _load_image(uri: str, fetch: Callable[[str], bytes]) -> Optional[Image.Image]:
    candidates = [optimized_url(uri)]
    if candidates[0] != uri:
        candidates.append(uri)
    for candidate in candidates:
        try:
            data = fetch(candidate)
            img = Image.open(io.BytesIO(data))
            img.load()
            return img.convert("RGB")
        except (TransientRemoteError, OSError, UnidentifiedImageError) as exc:
            logger.warning("Could not load image %s: %s", candidate, exc)
    return None


def _band_lines(photo: Dict, width: float) -> List[str]:
    geotag = photo.get("geotag") or {}
    if geotag.get("latitude") is not None and geotag.get("longitude") is not None:
        location = f"Location: {geotag['latitude']}, {geotag['longitude']}"
    else:
        location = "Location: unavailable"
    lines = [location, f"Time: {photo.get('timestamp') or 'unknown'}"]
    address = photo.get("address") or "Location unavailable"
    lines += simpleSplit(f"Address: {address}", BAND_FONT[0], BAND_FONT[1], width - 2 * BAND_PADDING)
    return lines


def build_case_report(
    ref_no: str,
    photos: Dict[str, List[Dict]],
    requirements: List[PhotoRequirement],
    *,
    fetch: Callable[[str], bytes] = read_uri,
    generated_at: Optional[datetime] = None,
) -> bytes:
    """Render the audit report for *ref_no* and return the PDF bytes."""
    generated_at = generated_at or datetime.now(timezone.utc)
    buf = io.BytesIO()
    c = rl_canvas.Canvas(buf, pagesize=A4)
    page_w, page_h = A4
    c.setTitle(f"Audit Report {ref_no}")

    # Title page
    c.setFont("Helvetica-Bold", 30)
    c.drawCentredString(page_w / 2, page_h / 2 + 50, "Audit Report")
    c.setFont("Helvetica", 18)
    c.drawCentredString(page_w / 2, page_h / 2, f"Date: {generated_at.strftime('%d/%m/%Y')}")
    c.setFont("Helvetica", 24)
    c.drawCentredString(page_w / 2, page_h / 2 - 50, f"Ref No: {ref_no}")
    c.showPage()

    added = 0
    for req in requirements:
        entries = photos.get(req.category_id) or []
        if not entries:
            continue

        y = page_h - MARGIN
        c.setFont("Helvetica-Bold", 18)
        c.drawString(MARGIN, y, req.label)
        y -= 40

        for photo in entries:
            img = _load_image(photo.get("uri", ""), fetch)
            if img is None:
                continue

            max_w = page_w - 2 * MARGIN
            scale = min(max_w / img.width, MAX_IMAGE_HEIGHT / img.height, 1.0)
            w, h = img.width * scale, img.height * scale
            lines = _band_lines(photo, w)
            band_h = len(lines) * BAND_LINE + 2 * BAND_PADDING

            if y - h - band_h < MARGIN:
                c.showPage()
                y = page_h - MARGIN

            image_y = y - h
            c.drawImage(ImageReader(img), MARGIN, image_y, width=w, height=h)

            # Opaque metadata band directly under the image
            band_y = image_y - band_h
            c.setFillColorRGB(1, 1, 1)
            c.rect(MARGIN, band_y, w, band_h, stroke=0, fill=1)
            c.setFillColorRGB(0, 0, 0)
            c.setFont(*BAND_FONT)
            text_y = image_y - BAND_PADDING - BAND_FONT[1]
            for line in lines:
                c.drawString(MARGIN + BAND_PADDING, text_y, line)
                text_y -= BAND_LINE

            y = band_y - 20
            added += 1

        c.showPage()

    c.save()
    logger.info("Report for %s rendered with %d photos", ref_no, added)
    return buf.getvalue()

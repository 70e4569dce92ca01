from dataclasses import dataclass
from typing import Iterable

from PIL import Image
from reportlab.lib.units import cm, mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas


@dataclass
class BadgeAssets:
    name: str
    role: str
    qr_image: Image.Image


def _draw_image_fit(
    c, image: Image.Image, x: float, y: float, w: float, h: float
) -> None:
    img_w, img_h = image.size
    if img_w == 0 or img_h == 0:
        return
    scale = min(w / img_w, h / img_h)
    draw_w = img_w * scale
    draw_h = img_h * scale
    draw_x = x + (w - draw_w) / 2
    draw_y = y + (h - draw_h) / 2
    c.drawImage(ImageReader(image), draw_x, draw_y, draw_w, draw_h, mask="auto")


def _truncate_text(c, text: str, max_width: float) -> str:
    if not text:
        return ""
    if c.stringWidth(text) <= max_width:
        return text
    ellipsis = "..."
    if c.stringWidth(ellipsis) > max_width:
        return ""
    max_width -= c.stringWidth(ellipsis)
    trimmed = text
    while trimmed and c.stringWidth(trimmed) > max_width:
        trimmed = trimmed[:-1]
    return (trimmed.rstrip() + ellipsis) if trimmed else ellipsis


def grid_shape(
    badge_size_cm: float, page_width_mm: float, page_height_mm: float
) -> tuple[int, int]:
    badge_size_mm = badge_size_cm * 10.0
    cols = int(page_width_mm // badge_size_mm)
    rows = int(page_height_mm // badge_size_mm)
    if cols <= 0 or rows <= 0:
        raise ValueError("Badge size too large for the page size")
    return cols, rows


def render_badges_to_pdf(
    badges: Iterable[BadgeAssets],
    output_path: str,
    badge_size_cm: float,
    qr_size_cm: float,
    page_width_mm: float,
    page_height_mm: float,
) -> int:
    """Lay badges out on a cut grid; returns the number of pages written."""
    cols, rows = grid_shape(badge_size_cm, page_width_mm, page_height_mm)
    badge_size_mm = badge_size_cm * 10.0

    margin_x_mm = (page_width_mm - cols * badge_size_mm) / 2.0
    margin_y_mm = (page_height_mm - rows * badge_size_mm) / 2.0

    c = canvas.Canvas(output_path, pagesize=(page_width_mm * mm, page_height_mm * mm))

    badges = list(badges)
    per_page = cols * rows
    pages = 1

    for index, badge in enumerate(badges):
        if index > 0 and index % per_page == 0:
            c.showPage()
            pages += 1

        page_index = index % per_page
        row = page_index // cols
        col = page_index % cols

        badge_x = (margin_x_mm + col * badge_size_mm) * mm
        badge_y = (page_height_mm - margin_y_mm - (row + 1) * badge_size_mm) * mm
        badge_size = badge_size_mm * mm
        center_x = badge_x + badge_size / 2

        font_name = "Helvetica"
        font_size = 10
        line_height = font_size * 1.2
        text_pad = 2.0 * mm

        qr_size = min(qr_size_cm * cm, badge_size - 2 * line_height - 3 * text_pad)
        qr_size = max(0.0, qr_size)
        qr_x = center_x - qr_size / 2
        qr_y = badge_y + badge_size - text_pad - qr_size
        if qr_size > 0:
            _draw_image_fit(c, badge.qr_image, qr_x, qr_y, qr_size, qr_size)

        max_text = badge_size - 2 * text_pad
        c.setFillColorRGB(0, 0, 0)
        c.setFont(font_name, font_size)
        c.drawCentredString(
            center_x,
            qr_y - text_pad - font_size,
            _truncate_text(c, badge.name, max_text),
        )
        c.setFont(font_name, font_size - 2)
        c.drawCentredString(
            center_x, qr_y - text_pad - font_size - line_height, badge.role.upper()
        )

        c.saveState()
        c.setLineWidth(0.5)
        c.setDash(2, 2)
        c.setStrokeColorRGB(0.6, 0.6, 0.6)
        c.rect(badge_x, badge_y, badge_size, badge_size, stroke=1, fill=0)
        c.restoreState()

    c.save()
    return pages

"""Printable QR badge sheets for roster members and guest passes."""

import logging
from typing import List, Sequence

import qrcode
from PIL import Image
from tqdm import tqdm

from .pdf_layout import BadgeAssets, render_badges_to_pdf

logger = logging.getLogger(__name__)


def make_qr_image(text: str) -> Image.Image:
    qr = qrcode.QRCode(border=2, box_size=10)
    qr.add_data(text)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    return img.convert("RGB")


def guest_names(count: int, prefix: str = "Guest", start: int = 1) -> List[str]:
    return [f"{prefix}-{n}" for n in range(start, start + count)]


def build_badges(
    members: Sequence[tuple[str, str]], guests: Sequence[str]
) -> List[BadgeAssets]:
    entries = list(members) + [(name, "guest") for name in guests]
    badges: List[BadgeAssets] = []
    for name, role in tqdm(entries, desc="Building badges"):
        badges.append(BadgeAssets(name=name, role=role, qr_image=make_qr_image(name)))
    return badges


def write_badge_sheet(
    members: Sequence[tuple[str, str]],
    guests: Sequence[str],
    output_pdf: str,
    badges_cfg: dict,
) -> int:
    badges = build_badges(members, guests)
    pages = render_badges_to_pdf(
        badges,
        output_pdf,
        badges_cfg.get("badge_size_cm", 5.0),
        badges_cfg.get("qr_size_cm", 3.5),
        badges_cfg.get("page_width_mm", 210),
        badges_cfg.get("page_height_mm", 297),
    )
    logger.info("Wrote %d badges on %d page(s) to %s", len(badges), pages, output_pdf)
    return pages

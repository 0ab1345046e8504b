from __future__ import annotations

import base64
import io
from typing import Tuple

from PIL import Image, UnidentifiedImageError


def decode_data_url(data_url: str) -> bytes:
    """'data:image/png;base64,AAAA' (or bare base64) -> raw bytes."""
    payload = data_url.strip()
    if payload.startswith("data:"):
        header, _, payload = payload.partition(",")
        if ";base64" not in header:
            raise ValueError("Only base64 data URLs are supported")
    return base64.b64decode(payload, validate=True)


def normalize_signature(data: bytes) -> Tuple[bytes, int, int]:
    """
    Re-encode any Pillow-readable image as PNG.
    Returns (png_bytes, width, height).
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except UnidentifiedImageError as e:
        raise ValueError("Signature is not a readable image") from e
    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue(), img.width, img.height

import io
import os
import re
from typing import Optional, Union

from PIL import Image, ImageDraw


MAX_DOCUMENT_ITEMS = int(os.getenv("MAX_DOCUMENT_ITEMS", "1000"))
CURRENCY_SYMBOL = os.getenv("INVOICE_CURRENCY_SYMBOL", "₹")

_DRIVE_FILE_ID = re.compile(r"/d/([a-zA-Z0-9_-]{10,})")
_BARE_FILE_ID = re.compile(r"^[a-zA-Z0-9_-]{10,}$")


def validate_document_size(item_count: int) -> None:
    """Raise ValueError if the document has more line items than the service accepts."""
    if item_count > MAX_DOCUMENT_ITEMS:
        raise ValueError(
            f"Document too large ({item_count} items). "
            f"Maximum allowed: {MAX_DOCUMENT_ITEMS} items"
        )


def extract_file_id(ref: Optional[str]) -> Optional[str]:
    """Return the storage file id for a Drive share URL or a bare id, else None."""
    if not ref:
        return None
    ref = ref.strip()
    match = _DRIVE_FILE_ID.search(ref)
    if match:
        return match.group(1)
    if "id=" in ref:
        candidate = ref.split("id=", 1)[1].split("&", 1)[0]
        if _BARE_FILE_ID.match(candidate):
            return candidate
    return ref if _BARE_FILE_ID.match(ref) else None


def normalize_image(image_bytes: bytes) -> Image.Image:
    """
    Decode fetched asset bytes into an in-memory RGBA image.
    Raises ValueError if the bytes are not a readable image.
    """
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (OSError, Image.DecompressionBombError) as e:
        raise ValueError(f"Not a readable image: {e}") from e
    if img.mode != "RGBA":
        img = img.convert("RGBA")
    return img


def placeholder_image(size: int = 100, label: str = "LOGO") -> Image.Image:
    """Grey box with a crossed frame, drawn in place of an unresolved asset."""
    img = Image.new("RGBA", (size, size), (229, 231, 235, 255))
    draw = ImageDraw.Draw(img)
    draw.rectangle([0, 0, size - 1, size - 1], outline=(156, 163, 175, 255), width=2)
    draw.line([0, 0, size - 1, size - 1], fill=(156, 163, 175, 255), width=1)
    draw.line([0, size - 1, size - 1, 0], fill=(156, 163, 175, 255), width=1)
    draw.text((size // 2, size // 2), label, fill=(75, 85, 99, 255), anchor="mm")
    return img


# ── Number formatting ──────────────────────────────────────────────────────────

def _to_float(value: Union[float, str, None]) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def format_money(value: Union[float, str, None]) -> str:
    """Money is always rendered with exactly two decimals."""
    return f"{_to_float(value):.2f}"


def format_rate(value: Union[float, str, None]) -> str:
    rate = _to_float(value)
    text = f"{int(rate)}" if rate.is_integer() else f"{rate:g}"
    return f"{text}%"


def format_quantity_total(value: Union[float, str, None]) -> str:
    qty = _to_float(value)
    if qty.is_integer():
        return f"{int(qty)}.000"
    return f"{qty:.3f}"


def upi_payload(upi_id: str, amount: Union[float, str]) -> str:
    """UPI deep link encoded in the footer QR code."""
    return f"upi://pay?pa={upi_id}&am={format_money(amount)}&cu=INR"

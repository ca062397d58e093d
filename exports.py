"""
Export helpers: assemble rendered pages into PDF bytes, a PNG image or a print job.
"""

import atexit
import io
import logging
import os
import platform
import subprocess
import tempfile
from typing import List, Optional, Tuple

from PIL import Image
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from errors import AssemblyError, PrintError
from models import RenderedPage

logger = logging.getLogger(__name__)

A4_WIDTH_MM = 210.0
A4_HEIGHT_MM = 297.0
ASPECT_TOLERANCE = 0.01
PRINT_TIMEOUT = int(os.getenv("PRINT_TIMEOUT", "60"))

_spooled_files: List[str] = []


# ── Page checks ────────────────────────────────────────────────────────────────

def ordered_pages(pages: List[RenderedPage]) -> List[RenderedPage]:
    """
    Return the pages in ascending index order.

    Raises AssemblyError unless the indices are exactly 1..K and every surface
    has the aspect ratio of its logical page.
    """
    if not pages:
        raise AssemblyError("No rendered pages to export")

    ordered = sorted(pages, key=lambda p: p.page_index)
    indices = [p.page_index for p in ordered]
    if indices != list(range(1, len(ordered) + 1)):
        raise AssemblyError(f"Page indices must be 1..{len(ordered)}, got {indices}")

    for page in ordered:
        width, height = page.surface.size
        logical_w, logical_h = page.logical_size
        if width <= 0 or height <= 0 or logical_w <= 0 or logical_h <= 0:
            raise AssemblyError(f"Page {page.page_index} has an empty surface")
        if abs(width / height - logical_w / logical_h) > ASPECT_TOLERANCE:
            raise AssemblyError(
                f"Page {page.page_index} surface {width}x{height} does not match "
                f"logical page {logical_w}x{logical_h}"
            )
    return ordered


def placement(img_width: float, img_height: float,
              page_width: float = A4_WIDTH_MM,
              page_height: float = A4_HEIGHT_MM) -> Tuple[float, float, float, float]:
    """
    Fit an image onto a physical page (mm): scaled by
    min(page_width / img_width, page_height / img_height), centred
    horizontally, top aligned. Returns (x, y, width, height) from the top-left.
    """
    if img_width <= 0 or img_height <= 0:
        raise AssemblyError(f"Cannot place a {img_width}x{img_height} image")
    ratio = min(page_width / img_width, page_height / img_height)
    width = img_width * ratio
    height = img_height * ratio
    return (page_width - width) / 2, 0.0, width, height


# ── PDF ────────────────────────────────────────────────────────────────────────

def to_pdf(pages: List[RenderedPage], title: Optional[str] = None) -> bytes:
    """One A4 portrait page per rendered page, in index order."""
    ordered = ordered_pages(pages)

    buf = io.BytesIO()
    # invariant=1 drops timestamps and random ids so identical input gives identical bytes
    pdf = canvas.Canvas(buf, pagesize=A4, invariant=1)
    if title:
        pdf.setTitle(title)

    for page in ordered:
        surface = page.surface if page.surface.mode == "RGB" else page.surface.convert("RGB")
        x, y, width, height = placement(*surface.size)
        # reportlab measures y from the bottom edge
        pdf.drawImage(
            ImageReader(surface),
            x * mm,
            (A4_HEIGHT_MM - y - height) * mm,
            width=width * mm,
            height=height * mm,
        )
        pdf.showPage()

    pdf.save()
    logger.info("Assembled PDF with %d page(s)", len(ordered))
    return buf.getvalue()


# ── Image ──────────────────────────────────────────────────────────────────────

def to_png(pages: List[RenderedPage]) -> bytes:
    """
    A single page is exported as-is; several pages are stacked top to bottom
    in document order on one tall image.
    """
    ordered = ordered_pages(pages)

    if len(ordered) == 1:
        sheet = ordered[0].surface
    else:
        width = max(p.surface.width for p in ordered)
        height = sum(p.surface.height for p in ordered)
        sheet = Image.new("RGB", (width, height), (255, 255, 255))
        top = 0
        for page in ordered:
            sheet.paste(page.surface, (0, top))
            top += page.surface.height

    buf = io.BytesIO()
    sheet.save(buf, format="PNG")
    return buf.getvalue()


# ── Print ──────────────────────────────────────────────────────────────────────

class SystemPrinter:
    """Sends a PDF to the platform print spooler (`lp` on POSIX, the print verb on Windows)."""

    def __init__(self, printer_name: Optional[str] = None):
        self.printer_name = printer_name or os.getenv("PRINTER_NAME")

    def submit(self, pdf_bytes: bytes, title: str) -> None:
        if platform.system() == "Windows":
            self._submit_windows(pdf_bytes)
            return

        cmd = ["lp", "-t", title]
        if self.printer_name:
            cmd += ["-d", self.printer_name]
        cmd.append("-")
        try:
            subprocess.run(cmd, input=pdf_bytes, check=True, capture_output=True, timeout=PRINT_TIMEOUT)
        except FileNotFoundError as e:
            raise PrintError("No print spooler found (lp is not installed)") from e
        except subprocess.CalledProcessError as e:
            detail = e.stderr.decode("utf-8", "replace").strip() if e.stderr else f"exit {e.returncode}"
            raise PrintError(f"Print job rejected: {detail}") from e
        except subprocess.TimeoutExpired as e:
            raise PrintError("Print spooler timed out") from e

    def _submit_windows(self, pdf_bytes: bytes) -> None:
        with tempfile.NamedTemporaryFile(delete=False, suffix=".pdf") as handle:
            handle.write(pdf_bytes)
        try:
            os.startfile(handle.name, "print")
        except OSError as e:
            _remove_file(handle.name)
            raise PrintError(f"Print job rejected: {e}") from e
        # the print handler opens the file after startfile returns
        _spooled_files.append(handle.name)


def _remove_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove spooled print file %s: %s", path, e)


@atexit.register
def remove_spooled_files() -> None:
    """Delete the temporary PDFs handed to the Windows print verb."""
    while _spooled_files:
        _remove_file(_spooled_files.pop())


def print_pages(pages: List[RenderedPage], title: str, printer=None) -> bytes:
    """
    Hand the ordered pages, scaled exactly as in the PDF export, to a print
    pipeline. `printer` is any object with `submit(pdf_bytes, title)`.
    Returns the PDF bytes that were submitted.
    """
    pdf_bytes = to_pdf(pages, title=title)
    (printer or SystemPrinter()).submit(pdf_bytes, title)
    logger.info("Submitted print job '%s' (%d page(s))", title, len(pages))
    return pdf_bytes

"""
PageRenderer: draws one page descriptor onto a fixed 794x1123 logical surface.

Section order is fixed: page banner, company header, customer details, items
table (with the charges/totals tail on the last page), tax summary, footer.
Which of the optional sections appear is decided by the PageDescriptor alone.

Everything is drawn in logical pixels and multiplied by the context's
supersampling factor, so the same layout code serves previews (scale 1) and
print-quality exports.
"""

import io
import logging
import math
import os
from functools import lru_cache
from typing import List, Optional, Tuple

import qrcode
from PIL import Image, ImageDraw, ImageFont

from errors import RasterCaptureError
from layout import LayoutConfig
from models import InvoiceDocument, PageDescriptor, RenderedPage, ResolvedAssets
from utils import (
    CURRENCY_SYMBOL,
    format_money,
    format_quantity_total,
    format_rate,
    placeholder_image,
    upi_payload,
)

logger = logging.getLogger(__name__)

RASTER_SCALE = int(os.getenv("INVOICE_RASTER_SCALE", "2"))
MAX_RASTER_SCALE = 8
FONT_PATH = os.getenv("INVOICE_FONT_PATH", "DejaVuSans.ttf")
BOLD_FONT_PATH = os.getenv("INVOICE_BOLD_FONT_PATH", "DejaVuSans-Bold.ttf")

ASSET_BOX = 100
QR_BOX = 90
TERMS_MAX_LINES = 8

BLACK = (0, 0, 0)
MUTED = (75, 85, 99)
PAID_GREEN = (21, 128, 61)
WHITE = (255, 255, 255)

# (title, width, align); widths sum to the 714px content width
ITEM_COLUMNS = [
    ("#", 30, "center"),
    ("Item", 234, "left"),
    ("HSN/SAC", 80, "center"),
    ("Tax", 60, "center"),
    ("Qty", 90, "right"),
    ("Rate/Item", 100, "right"),
    ("Amount", 120, "right"),
]
TAX_COLUMNS = [120, 120, 70, 100, 70, 100, 134]

SECTION_BANNER = "banner"
SECTION_COMPANY = "company_header"
SECTION_CUSTOMER = "customer_details"
SECTION_ITEMS = "items_table"
SECTION_CHARGES = "charges"
SECTION_TOTALS = "totals"
SECTION_TAX = "tax_summary"
SECTION_FOOTER = "footer"


@lru_cache(maxsize=64)
def _font(size: int, bold: bool = False) -> ImageFont.FreeTypeFont:
    path = BOLD_FONT_PATH if bold else FONT_PATH
    try:
        return ImageFont.truetype(path, size)
    except OSError:
        logger.debug("Font %s not found, using Pillow's default font", path)
        return ImageFont.load_default(size=size)


class RenderContext:
    """
    Owns the render target for one export call.

    The target is created lazily, cleared before every page and closed when
    the call ends (normally, on error or on cancellation). Concurrent exports
    must each use their own context.
    """

    def __init__(self, scale: int = RASTER_SCALE, config: Optional[LayoutConfig] = None):
        if not 1 <= scale <= MAX_RASTER_SCALE:
            raise RasterCaptureError(f"Raster scale {scale} outside 1..{MAX_RASTER_SCALE}")
        self.scale = scale
        self.config = config or LayoutConfig.from_env()
        self._target: Optional[Image.Image] = None
        self.closed = False

    @property
    def size(self) -> Tuple[int, int]:
        return (self.config.page_width * self.scale, self.config.page_height * self.scale)

    def acquire(self) -> Image.Image:
        if self.closed:
            raise RasterCaptureError("Render context already released")
        if self._target is None:
            self._target = Image.new("RGB", self.size, WHITE)
        else:
            self._target.paste(WHITE, (0, 0, *self.size))
        return self._target

    def snapshot(self) -> Image.Image:
        if self._target is None:
            raise RasterCaptureError("Nothing has been rendered in this context")
        return self._target.copy()

    def close(self) -> None:
        if self._target is not None:
            self._target.close()
            self._target = None
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class _Canvas:
    """Thin ImageDraw wrapper working in logical pixels; keeps a display list of text."""

    def __init__(self, image: Image.Image, scale: int):
        self.image = image
        self.scale = scale
        self.draw = ImageDraw.Draw(image)
        self.text_runs: List[str] = []

    def _s(self, value: float) -> int:
        return int(round(value * self.scale))

    def font(self, size: int, bold: bool = False):
        return _font(size * self.scale, bold)

    def width(self, value: str, size: int = 12, bold: bool = False) -> float:
        return self.font(size, bold).getlength(value) / self.scale

    def text(self, x: float, y: float, value: str, size: int = 12, bold: bool = False,
             anchor: str = "la", fill=BLACK) -> None:
        if not value:
            return
        value = " ".join(value.splitlines())
        self.draw.text((self._s(x), self._s(y)), value, font=self.font(size, bold),
                       fill=fill, anchor=anchor)
        self.text_runs.append(value)

    def cell(self, x: float, y: float, w: float, h: float, value: str, align: str = "left",
             size: int = 12, bold: bool = False, fill=BLACK) -> None:
        value = self.fit(value, w - 8, size, bold)
        mid = y + h / 2
        if align == "right":
            self.text(x + w - 4, mid, value, size, bold, anchor="rm", fill=fill)
        elif align == "center":
            self.text(x + w / 2, mid, value, size, bold, anchor="mm", fill=fill)
        else:
            self.text(x + 4, mid, value, size, bold, anchor="lm", fill=fill)

    def line(self, x1: float, y1: float, x2: float, y2: float, width: int = 1) -> None:
        self.draw.line([self._s(x1), self._s(y1), self._s(x2), self._s(y2)],
                       fill=BLACK, width=max(1, width * self.scale))

    def rect(self, x1: float, y1: float, x2: float, y2: float, width: int = 1) -> None:
        self.draw.rectangle([self._s(x1), self._s(y1), self._s(x2), self._s(y2)],
                            outline=BLACK, width=max(1, width * self.scale))

    def paste(self, img: Image.Image, x: float, y: float, box: int) -> None:
        """Fit `img` inside a box x box square, centred, keeping its aspect ratio."""
        target = self._s(box)
        fitted = img.copy()
        fitted.thumbnail((target, target), Image.LANCZOS)
        if fitted.width < target and fitted.height < target:
            ratio = min(target / fitted.width, target / fitted.height)
            fitted = fitted.resize((max(1, int(fitted.width * ratio)), max(1, int(fitted.height * ratio))))
        left = self._s(x) + (target - fitted.width) // 2
        top = self._s(y) + (target - fitted.height) // 2
        mask = fitted if fitted.mode == "RGBA" else None
        self.image.paste(fitted, (left, top), mask)

    def fit(self, value: str, max_width: float, size: int = 12, bold: bool = False) -> str:
        """Truncate with an ellipsis so one-line cells never overflow."""
        value = " ".join((value or "").splitlines())
        if self.width(value, size, bold) <= max_width:
            return value
        while value and self.width(value + "…", size, bold) > max_width:
            value = value[:-1]
        return value + "…" if value else ""

    def wrap(self, value: str, max_width: float, size: int = 12, bold: bool = False,
             max_lines: Optional[int] = None) -> List[str]:
        lines: List[str] = []
        for paragraph in (value or "").splitlines():
            current = ""
            for word in paragraph.split():
                candidate = f"{current} {word}".strip()
                if self.width(candidate, size, bold) <= max_width or not current:
                    current = candidate
                else:
                    lines.append(current)
                    current = word
            if current:
                lines.append(current)
        if max_lines is not None and len(lines) > max_lines:
            lines = lines[:max_lines]
            lines[-1] = self.fit(lines[-1] + "…", max_width, size, bold)
        return lines


def charge_lines(doc: InvoiceDocument) -> List[Tuple[str, str]]:
    """
    Rows of the charges group under the last page's items.

    Each modifier is independent; a disabled, missing or zero modifier
    contributes no row at all.
    """
    lines = [(charge.value, format_money(charge.price)) for charge in doc.additional_charges]
    if doc.tds and doc.tds.enabled:
        lines.append((f"TDS - {doc.tds.code} ({doc.tds.description})", format_money(doc.tds.amount)))
    if doc.tds_under_gst and doc.tds_under_gst.enabled:
        lines.append((f"TDS under GST - {format_rate(doc.tds_under_gst.rate)}",
                      f"-{format_money(doc.tds_under_gst.amount)}"))
    if doc.tcs and doc.tcs.enabled:
        lines.append((f"TCS - {format_rate(doc.tcs.rate)}", f"-{format_money(doc.tcs.amount)}"))
    for label, amount in (
        ("Global Discount", doc.global_discount),
        ("Additional Discount", doc.additional_discount),
        ("Total Discount", doc.total_discount),
    ):
        if amount:
            lines.append((label, f"-{format_money(amount)}"))
    if doc.round_off:
        lines.append(("Round Off", format_money(doc.round_off)))
    return lines


class PageRenderer:
    def __init__(self, currency_symbol: str = CURRENCY_SYMBOL):
        self.currency_symbol = currency_symbol

    def render(self, descriptor: PageDescriptor, doc: InvoiceDocument,
               assets: ResolvedAssets, context: RenderContext) -> RenderedPage:
        config = context.config
        try:
            target = context.acquire()
            canvas = _Canvas(target, context.scale)
            page = RenderedPage(
                page_index=descriptor.page_index,
                surface=target,
                scale=context.scale,
                logical_size=(config.page_width, config.page_height),
            )
            self._draw(canvas, page, descriptor, doc, assets, config)
            page.text = canvas.text_runs
            page.surface = context.snapshot()
        except RasterCaptureError:
            raise
        except (OSError, ValueError, MemoryError) as e:
            raise RasterCaptureError(f"Page {descriptor.page_index} failed to render: {e}") from e
        return page

    # ── Section grammar ────────────────────────────────────────────────────────

    def _draw(self, c: _Canvas, page: RenderedPage, d: PageDescriptor,
              doc: InvoiceDocument, assets: ResolvedAssets, config: LayoutConfig) -> None:
        pad = config.page_padding / 2
        x0, x1 = pad, config.page_width - pad
        y = pad

        y = self._banner(c, d, x0, x1, y, config)
        page.sections.append(SECTION_BANNER)

        if d.show_company_header:
            y = self._company_header(c, page, doc, assets, x0, x1, y, config)
            page.sections.append(SECTION_COMPANY)
        if d.show_customer_details:
            y = self._customer_details(c, doc, x0, x1, y, config)
            page.sections.append(SECTION_CUSTOMER)

        y = self._items_table(c, page, d, doc, x0, x1, y, config)

        if d.show_tax_summary:
            y = self._tax_summary(c, doc, x0, x1, y)
            page.sections.append(SECTION_TAX)
        if d.show_footer:
            y = self._footer(c, page, doc, assets, x0, x1, y, config)
            page.sections.append(SECTION_FOOTER)

        limit = config.page_height - pad
        if y > limit:
            page.overflow = int(math.ceil(y - limit))
            logger.warning(
                "Invoice %s page %d: content runs %dpx past the bottom margin and is clipped",
                doc.invoice_number, d.page_index, page.overflow,
            )

    def _banner(self, c: _Canvas, d: PageDescriptor, x0, x1, y, config) -> float:
        h = config.banner_height
        c.text((x0 + x1) / 2, y + h / 2, "TAX INVOICE", size=20, bold=True, anchor="mm")
        c.text(x1 - 8, y + h / 2, d.banner, size=11, bold=True, anchor="rm", fill=MUTED)
        return y + h

    def _company_header(self, c: _Canvas, page: RenderedPage, doc: InvoiceDocument,
                        assets: ResolvedAssets, x0, x1, y, config) -> float:
        h = config.company_header_height
        c.rect(x0, y, x1, y + h, width=2)

        logo = assets.get("logo")
        if logo is None:
            page.placeholders.append("logo")
            c.paste(placeholder_image(ASSET_BOX, "LOGO"), x0 + 10, y + (h - ASSET_BOX) / 2, ASSET_BOX)
        else:
            c.paste(logo.image, x0 + 10, y + (h - ASSET_BOX) / 2, ASSET_BOX)

        centre = (x0 + x1) / 2
        cy = y + 10
        c.text(centre, cy, doc.company_name, size=18, bold=True, anchor="mt")
        cy += 24
        if doc.company_gstin:
            c.text(centre, cy, f"GSTIN: {doc.company_gstin}", size=13, bold=True, anchor="mt")
            cy += 18
        for line in c.wrap(doc.company_address or "", 380, size=12, max_lines=3):
            c.text(centre, cy, line, size=12, anchor="mt")
            cy += 15
        contact = []
        if doc.company_email:
            contact.append(f"Email: {doc.company_email}")
        if doc.company_phone:
            contact.append(f"Mobile: {doc.company_phone}")
        if contact:
            c.text(centre, cy, "  ".join(contact), size=12, anchor="mt")
            cy += 15
        return max(y + h, cy + 6)

    def _customer_details(self, c: _Canvas, doc: InvoiceDocument, x0, x1, y, config) -> float:
        mid = x0 + (x1 - x0) * 0.55
        ly = y + 6
        c.text(x0 + 8, ly, "Customer Details:", size=12, bold=True)
        ly += 16
        c.text(x0 + 8, ly, doc.customer_name, size=13, bold=True)
        ly += 16
        for label, value, bold in (
            ("GSTIN", doc.customer_gstin, True),
            ("Phone", doc.customer_phone, False),
            ("Email", doc.customer_email, False),
        ):
            if value:
                c.text(x0 + 8, ly, f"{label}: {value}", size=12, bold=bold)
                ly += 15
        if doc.customer_address:
            c.text(x0 + 8, ly, "Billing Address:", size=12, bold=True)
            ly += 15
            for line in c.wrap(doc.customer_address, mid - x0 - 16, size=12, max_lines=3):
                c.text(x0 + 8, ly, line, size=12)
                ly += 15

        ry = y + 6
        for label, value in (
            ("Invoice #:", doc.invoice_number),
            ("Invoice Date:", doc.invoice_date),
            ("Due Date:", doc.due_date),
            ("Place of Supply:", doc.place_of_supply),
        ):
            c.text(mid + 8, ry, label, size=12, bold=True)
            c.text(x1 - 8, ry, value, size=12, bold=True, anchor="ra")
            ry += 16
        for label, value in (("Dispatch From:", doc.dispatch_from), ("Shipping Address:", doc.shipping_address)):
            if value:
                c.text(mid + 8, ry, label, size=12)
                ry += 15
                for line in c.wrap(value, x1 - mid - 16, size=12, max_lines=2):
                    c.text(mid + 8, ry, line, size=12)
                    ry += 15

        bottom = max(y + config.customer_details_height, ly + 6, ry + 6)
        c.line(x0, y, x0, bottom, width=2)
        c.line(x1, y, x1, bottom, width=2)
        c.line(mid, y, mid, bottom)
        return bottom

    def _items_table(self, c: _Canvas, page: RenderedPage, d: PageDescriptor,
                     doc: InvoiceDocument, x0, x1, y, config) -> float:
        top = y
        header_h = config.items_header_height
        row_h = config.item_row_height

        c.line(x0, y, x1, y, width=1 if d.is_first_page else 2)
        x = x0
        for title, width, _align in ITEM_COLUMNS:
            c.cell(x, y, width, header_h, title, align="center", size=12, bold=True)
            x += width
        y += header_h
        c.line(x0, y, x1, y)

        for item in d.item_slice(doc.items):
            values = [
                str(item.id),
                item.name,
                item.hsn_sac or "",
                item.tax,
                item.qty,
                format_money(item.rate_per_item),
                format_money(item.amount),
            ]
            x = x0
            for (_title, width, align), value in zip(ITEM_COLUMNS, values):
                c.cell(x, y, width, row_h, value, align=align, size=11)
                x += width
            y += row_h
        page.sections.append(SECTION_ITEMS)

        if d.show_tax_summary:
            y = self._charges_and_totals(c, page, doc, x0, x1, y, config)

        # column rules, outer frame; the bottom edge closes only on the last page
        x = x0
        for _title, width, _align in ITEM_COLUMNS[:-1]:
            x += width
            c.line(x, top, x, y)
        c.line(x0, top, x0, y, width=2)
        c.line(x1, top, x1, y, width=2)
        if d.is_last_page:
            c.line(x0, y, x1, y)
        return y

    def _charges_and_totals(self, c: _Canvas, page: RenderedPage, doc: InvoiceDocument,
                            x0, x1, y, config) -> float:
        label_x = x0 + ITEM_COLUMNS[0][1]
        label_w = ITEM_COLUMNS[1][1]
        qty_x = x0 + sum(width for _t, width, _a in ITEM_COLUMNS[:4])
        qty_w = ITEM_COLUMNS[4][1]
        amount_x = x1 - ITEM_COLUMNS[-1][1]
        amount_w = ITEM_COLUMNS[-1][1]

        lines = charge_lines(doc)
        if lines:
            for label, amount in lines:
                c.cell(label_x, y, label_w, config.charge_row_height, label, align="right", size=11, bold=True)
                c.cell(amount_x, y, amount_w, config.charge_row_height, amount, align="right", size=11, bold=True)
                y += config.charge_row_height
            page.sections.append(SECTION_CHARGES)

        h = config.item_row_height
        c.line(x0, y, x1, y)
        c.cell(label_x, y, label_w, h, "Total", align="right", size=12, bold=True)
        c.cell(qty_x, y, qty_w, h, format_quantity_total(doc.total_quantity), align="right", size=12, bold=True)
        c.cell(amount_x, y, amount_w, h, f"{self.currency_symbol}{format_money(doc.total_amount)}",
               align="right", size=12, bold=True)
        page.sections.append(SECTION_TOTALS)
        return y + h

    def _tax_summary(self, c: _Canvas, doc: InvoiceDocument, x0, x1, y) -> float:
        y += 6
        words = f"Amount Chargeable (in words): {doc.amount_in_words}".strip()
        for line in c.wrap(words, x1 - x0 - 16, size=12):
            c.text(x0 + 8, y, line, size=12)
            y += 15
        y += 4

        edges = [x0]
        for width in TAX_COLUMNS:
            edges.append(edges[-1] + width)
        top = y
        h = 18

        def row(values, bold=False, aligns=None):
            nonlocal y
            aligns = aligns or ["left", "right", "center", "center", "center", "center", "right"]
            for i, value in enumerate(values):
                c.cell(edges[i], y, TAX_COLUMNS[i], h, value, align=aligns[i], size=11, bold=bold)
            y += h
            c.line(x0, y, x1, y)

        c.line(x0, y, x1, y)
        c.cell(edges[0], y, TAX_COLUMNS[0], h, "HSN/SAC", align="center", size=11, bold=True)
        c.cell(edges[1], y, TAX_COLUMNS[1], h, "Taxable Value", align="center", size=11, bold=True)
        c.cell(edges[2], y, TAX_COLUMNS[2] + TAX_COLUMNS[3], h, "Central Tax", align="center", size=11, bold=True)
        c.cell(edges[4], y, TAX_COLUMNS[4] + TAX_COLUMNS[5], h, "State/UT Tax", align="center", size=11, bold=True)
        c.cell(edges[6], y, TAX_COLUMNS[6], h, "Total Tax Amount", align="center", size=11, bold=True)
        y += h
        c.line(edges[2], y, edges[6], y)
        row(["", "", "Rate", "Amount", "Rate", "Amount", ""], bold=True,
            aligns=["center"] * 7)

        for tax in doc.tax_breakdown:
            row([
                tax.hsn_sac,
                format_money(tax.taxable_value),
                format_rate(tax.central_tax_rate),
                format_money(tax.central_tax_amount),
                format_rate(tax.state_ut_tax_rate),
                format_money(tax.state_ut_tax_amount),
                format_money(tax.total_tax_amount),
            ])
        row([
            "TOTAL",
            format_money(doc.taxable_amount),
            "",
            format_money(doc.total_central_tax),
            "",
            format_money(doc.total_state_tax),
            format_money(doc.total_tax_amount),
        ], bold=True, aligns=["right", "right", "center", "center", "center", "center", "right"])

        for i, edge in enumerate(edges):
            if i in (3, 5):
                c.line(edge, top + h, edge, y)
            else:
                c.line(edge, top, edge, y)
        return y

    def _footer(self, c: _Canvas, page: RenderedPage, doc: InvoiceDocument,
                assets: ResolvedAssets, x0, x1, y, config) -> float:
        """
        Paid badge on one line, then three columns side by side: bank details
        and payment notes, the UPI QR with the terms beside it, and the
        signature block. The signature column is always the tallest one,
        which bounds the footer height.
        """
        y += 4
        if doc.payment_status.lower() == "paid":
            c.text(x0 + 8, y, "Amount Paid", size=13, bold=True, fill=PAID_GREEN)
            c.text(
                x0 + 110, y + 1,
                f"{self.currency_symbol}{format_money(doc.total_amount)} Paid via "
                f"{doc.payment_method} on {doc.payment_date}",
                size=12, fill=PAID_GREEN,
            )
            y += 21

        block_top = y
        ly = y
        if doc.bank_name:
            c.text(x0 + 8, ly, "Bank Details:", size=12, bold=True)
            ly += 16
            for label, value in (
                ("Bank:", doc.bank_name),
                ("Account #:", doc.account_number),
                ("IFSC Code:", doc.ifsc_code),
                ("Branch:", doc.branch),
            ):
                c.text(x0 + 8, ly, label, size=12)
                c.text(x0 + 90, ly, value or "", size=12, bold=True)
                ly += 15
        if doc.payment_notes:
            ly += 4
            c.text(x0 + 8, ly, "Notes:", size=12, bold=True)
            ly += 15
            for line in c.wrap(doc.payment_notes, 260, size=12, max_lines=2):
                c.text(x0 + 8, ly, line, size=12)
                ly += 15

        qr_x = x0 + 280
        qy = block_top
        payload = doc.qr_payload or (upi_payload(doc.upi_id, doc.total_amount) if doc.upi_id else None)
        if payload:
            c.text(qr_x, qy, "Pay using UPI:", size=12, bold=True)
            c.paste(_qr_image(payload), qr_x, qy + 16, QR_BOX)
            qy += 16 + QR_BOX

        sig_x = x1 - ASSET_BOX - 30
        signature = assets.get("signature")
        if signature is None:
            page.placeholders.append("signature")
            c.paste(placeholder_image(ASSET_BOX, "SIGN"), sig_x, block_top, ASSET_BOX)
        else:
            c.paste(signature.image, sig_x, block_top, ASSET_BOX)
        sy = block_top + ASSET_BOX + 4
        c.text(sig_x + ASSET_BOX / 2, sy, "Authorized Signatory", size=12, bold=True, anchor="mt")
        sy += 15
        if doc.company_name:
            c.text(sig_x + ASSET_BOX / 2, sy, f"For {doc.company_name}", size=11, anchor="mt", fill=MUTED)
            sy += 14

        ty = block_top
        closing = doc.terms or doc.notes
        if closing:
            terms_x = qr_x + (QR_BOX + 15 if payload else 0)
            terms_w = sig_x - 10 - terms_x
            c.text(terms_x, ty, "Terms and Conditions:", size=11, bold=True)
            ty += 15
            for line in c.wrap(closing, terms_w, size=10, max_lines=TERMS_MAX_LINES):
                c.text(terms_x, ty, line, size=10)
                ty += 12

        return max(ly, qy, sy, ty)


def _qr_image(payload: str) -> Image.Image:
    qr = qrcode.QRCode(box_size=4, border=1)
    qr.add_data(payload)
    qr.make(fit=True)
    buf = io.BytesIO()
    qr.make_image(fill_color="black", back_color="white").save(buf)
    buf.seek(0)
    return Image.open(buf).convert("RGB")

"""
Page planning: decides single vs multi page and slices line items across pages.

Row heights are fixed constants rather than measured text, so the decision is
made once, before any page is rendered. The constants are the only lever for
matching real font metrics; override them through `LayoutConfig` or the
INVOICE_LAYOUT_<FIELD> environment variables.
"""

import logging
import math
import os
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from models import InvoiceDocument, LayoutEstimate, PageDescriptor

logger = logging.getLogger(__name__)

ENV_PREFIX = "INVOICE_LAYOUT_"


class LayoutConfig(BaseModel):
    # Logical page (A4 @ 96 dpi)
    page_width: int = Field(default=794, gt=0)
    page_height: int = Field(default=1123, gt=0)
    page_padding: int = Field(default=80, ge=0)

    # Section heights
    banner_height: int = 60
    company_header_height: int = 120
    customer_details_height: int = 100
    items_header_height: int = 40
    item_row_height: int = 25
    charge_row_height: int = 20
    tax_summary_height: int = 80
    footer_height: int = 200

    # Item capacities (first page also carries the company/customer header)
    first_page_capacity: int = Field(default=12, gt=0)
    subsequent_page_capacity: int = Field(default=15, gt=0)

    @model_validator(mode="after")
    def _padding_fits_page(self):
        if self.page_padding >= self.page_height:
            raise ValueError("page_padding must be smaller than page_height")
        return self

    @property
    def usable_height(self) -> int:
        return self.page_height - self.page_padding

    @classmethod
    def from_env(cls, **overrides) -> "LayoutConfig":
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = int(raw)
        values.update(overrides)
        return cls(**values)


# ── LayoutEstimator ────────────────────────────────────────────────────────────

def estimate(doc: InvoiceDocument, config: Optional[LayoutConfig] = None) -> LayoutEstimate:
    """Sum of section constants plus per-item and per-charge row contributions."""
    config = config or LayoutConfig.from_env()
    total = (
        config.banner_height
        + config.company_header_height
        + config.customer_details_height
        + config.items_header_height
        + config.tax_summary_height
        + config.footer_height
        + len(doc.items) * config.item_row_height
        + len(doc.additional_charges) * config.charge_row_height
    )
    usable = config.usable_height
    return LayoutEstimate(
        total_height=total,
        usable_height=usable,
        fits_single_page=total <= usable,
    )


# ── Paginator ──────────────────────────────────────────────────────────────────

def page_count(total_items: int, first_cap: int, subsequent_cap: int) -> int:
    if total_items <= first_cap:
        return 1
    return max(1, math.ceil((total_items - first_cap) / subsequent_cap) + 1)


def single_page(doc: InvoiceDocument) -> List[PageDescriptor]:
    return [PageDescriptor.for_page(1, 1, 0, len(doc.items))]


def paginate(doc: InvoiceDocument, config: Optional[LayoutConfig] = None) -> List[PageDescriptor]:
    """
    Partition `doc.items` into contiguous page slices.

    Page 1 holds up to `first_page_capacity` items, every later page up to
    `subsequent_page_capacity`. Zero items still yields one (empty) page.
    """
    config = config or LayoutConfig.from_env()
    first_cap = config.first_page_capacity
    next_cap = config.subsequent_page_capacity
    total_items = len(doc.items)
    total_pages = page_count(total_items, first_cap, next_cap)

    pages = []
    for index in range(1, total_pages + 1):
        if index == 1:
            start = 0
            end = min(first_cap, total_items)
        else:
            start = first_cap + (index - 2) * next_cap
            end = min(start + next_cap, total_items)
        pages.append(PageDescriptor.for_page(index, total_pages, start, end))
    return pages


def plan_pages(doc: InvoiceDocument, config: Optional[LayoutConfig] = None) -> tuple[LayoutEstimate, List[PageDescriptor]]:
    """Single-pass page plan: estimate once, then the single-page or paginated layout."""
    config = config or LayoutConfig.from_env()
    result = estimate(doc, config)
    if result.fits_single_page:
        pages = single_page(doc)
    else:
        pages = paginate(doc, config)
    logger.info(
        "Invoice %s: estimated height %.0f / %.0f -> %d page(s)",
        doc.invoice_number, result.total_height, result.usable_height, len(pages),
    )
    return result, pages

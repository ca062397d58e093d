from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from PIL import Image
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    """Accepts both snake_case and the CRUD layer's camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class LineItem(_Record):
    id: int
    name: str = ""
    hsn_sac: Optional[str] = None
    tax: str = ""
    qty: str = ""
    rate_per_item: Union[float, str] = 0.0
    amount: float = 0.0


class Charge(_Record):
    value: str
    price: Union[float, str] = 0.0


class TaxRow(_Record):
    hsn_sac: str
    taxable_value: float = 0.0
    central_tax_rate: float = 0.0
    central_tax_amount: float = 0.0
    state_ut_tax_rate: float = 0.0
    state_ut_tax_amount: float = 0.0
    total_tax_amount: float = 0.0


class TdsModifier(_Record):
    enabled: bool = False
    code: str = ""
    description: str = ""
    amount: float = 0.0


class RateModifier(_Record):
    enabled: bool = False
    rate: float = 0.0
    amount: float = 0.0


class AssetRefs(_Record):
    company_logo_ref: Optional[str] = None
    signature_ref: Optional[str] = None


class InvoiceDocument(_Record):
    # Invoice Meta
    invoice_number: str
    invoice_date: str = ""
    due_date: str = ""
    place_of_supply: str = ""

    # Company / Seller
    company_name: str = ""
    company_gstin: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("company_gstin", "companyGSTIN")
    )
    company_address: Optional[str] = None
    company_phone: Optional[str] = None
    company_email: Optional[str] = None

    # Customer / Buyer
    customer_name: str = ""
    customer_gstin: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("customer_gstin", "customerGSTIN")
    )
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    dispatch_from: Optional[str] = None
    shipping_address: Optional[str] = None

    # Line Items
    items: List[LineItem] = []
    additional_charges: List[Charge] = []
    tax_breakdown: List[TaxRow] = []

    # Totals
    taxable_amount: float = 0.0
    total_central_tax: float = 0.0
    total_state_tax: float = 0.0
    total_tax_amount: float = 0.0
    round_off: float = 0.0
    total_amount: float = 0.0
    total_quantity: float = 0.0
    amount_in_words: str = ""

    # Modifiers
    tds: Optional[TdsModifier] = None
    tds_under_gst: Optional[RateModifier] = None
    tcs: Optional[RateModifier] = None
    global_discount: Optional[float] = None
    additional_discount: Optional[float] = None
    total_discount: Optional[float] = None

    # Payment
    payment_status: str = ""
    payment_date: str = ""
    payment_method: str = ""
    payment_notes: Optional[str] = None
    upi_id: Optional[str] = None

    # Bank
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    ifsc_code: Optional[str] = None
    branch: Optional[str] = None

    # Extras
    notes: Optional[str] = None
    terms: Optional[str] = None
    company_logo_ref: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("company_logo_ref", "companyLogoRef", "companyLogo"),
    )
    signature_ref: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("signature_ref", "signatureRef", "signature"),
    )
    qr_payload: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("qr_payload", "qrPayload", "qrcode")
    )

    @field_validator("additional_charges", "items", "tax_breakdown", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return [] if value is None else value

    @field_validator("tax_breakdown")
    @classmethod
    def _unique_hsn_sac(cls, rows: List[TaxRow]) -> List[TaxRow]:
        seen = set()
        for row in rows:
            if row.hsn_sac in seen:
                raise ValueError(f"Duplicate HSN/SAC '{row.hsn_sac}' in tax breakdown")
            seen.add(row.hsn_sac)
        return rows

    @property
    def asset_refs(self) -> AssetRefs:
        return AssetRefs(
            company_logo_ref=self.company_logo_ref,
            signature_ref=self.signature_ref,
        )


class PageDescriptor(BaseModel):
    """One physical page: which items it carries and which sections it shows."""

    model_config = ConfigDict(frozen=True)

    page_index: int = Field(ge=1)
    total_pages: int = Field(ge=1)
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    show_company_header: bool
    show_customer_details: bool
    show_tax_summary: bool
    show_footer: bool

    @classmethod
    def for_page(cls, page_index: int, total_pages: int, start: int, end: int) -> "PageDescriptor":
        """All section visibility rules live here."""
        is_first = page_index == 1
        is_last = page_index == total_pages
        return cls(
            page_index=page_index,
            total_pages=total_pages,
            start=start,
            end=end,
            show_company_header=is_first,
            show_customer_details=is_first,
            show_tax_summary=is_last,
            show_footer=is_last,
        )

    @property
    def is_first_page(self) -> bool:
        return self.page_index == 1

    @property
    def is_last_page(self) -> bool:
        return self.page_index == self.total_pages

    @property
    def banner(self) -> str:
        if self.page_index == 1:
            return "ORIGINAL FOR RECIPIENT"
        return f"Page {self.page_index}/{self.total_pages}"

    def item_slice(self, items: List[LineItem]) -> List[LineItem]:
        return items[self.start:self.end]


class LayoutEstimate(BaseModel):
    total_height: float
    usable_height: float
    fits_single_page: bool


# ── Runtime (non-serialisable) records ─────────────────────────────────────────

@dataclass
class ResolvedAsset:
    image: Image.Image


@dataclass
class ResolvedAssets:
    """Asset slot ("logo", "signature") -> embeddable image. Missing slots are unresolved."""

    resolved: Dict[str, ResolvedAsset] = field(default_factory=dict)
    unresolved: List[str] = field(default_factory=list)

    def get(self, slot: str) -> Optional[ResolvedAsset]:
        return self.resolved.get(slot)


@dataclass
class RenderedPage:
    page_index: int
    surface: Image.Image
    scale: int = 1
    logical_size: tuple = (794, 1123)
    sections: List[str] = field(default_factory=list)
    text: List[str] = field(default_factory=list)
    placeholders: List[str] = field(default_factory=list)
    # logical px drawn below the bottom margin (clipped); 0 when the page fits
    overflow: int = 0


@dataclass
class ExportArtifact:
    content: bytes
    media_type: str
    filename: str
    page_count: int = 1


# ── API responses ──────────────────────────────────────────────────────────────

class PlanResponse(BaseModel):
    invoice_number: str
    estimate: LayoutEstimate
    pages: List[PageDescriptor]


class PrintResponse(BaseModel):
    success: bool
    pages: int = 0
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    raster_scale: int
    version: str

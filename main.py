import io
import logging
import os
from contextlib import asynccontextmanager
from typing import Literal, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

load_dotenv()

from layout import LayoutConfig, plan_pages
from models import HealthResponse, InvoiceDocument, PlanResponse, PrintResponse
from pipeline import InvoiceExportSession
from renderer import RASTER_SCALE
from utils import validate_document_size

VERSION = "1.0.0"

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


# ── Lifespan ───────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    config = LayoutConfig.from_env()
    print(
        f"✅ Invoice Page Engine ready | raster scale: {RASTER_SCALE}x | "
        f"capacity: {config.first_page_capacity}/{config.subsequent_page_capacity} items"
    )
    yield
    print("🛑 Shutting down.")


# ── App ────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Invoice Page Engine",
    description=(
        "Paginates pre-computed GST tax invoices onto A4 pages and exports them "
        "as **PDF**, **PNG** or a **print job**."
    ),
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Authorization header must be 'Bearer <token>'")
    return token.strip()


def _check_size(document: InvoiceDocument) -> None:
    try:
        validate_document_size(len(document.items))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


# ── Info ───────────────────────────────────────────────────────────────────────

@app.get("/", tags=["Info"])
def root(request: Request):
    base = str(request.base_url).rstrip("/")
    return {
        "name": "Invoice Page Engine",
        "version": VERSION,
        "endpoints": {
            "docs":   f"{base}/docs",
            "health": f"{base}/health",
            "plan":   f"{base}/plan",
            "export": f"{base}/export?format=pdf|png",
            "print":  f"{base}/print",
        },
    }


@app.get("/health", response_model=HealthResponse, tags=["Info"])
def health():
    return HealthResponse(status="ok", raster_scale=RASTER_SCALE, version=VERSION)


# ── Core: Plan / Export / Print ────────────────────────────────────────────────

@app.post("/plan", response_model=PlanResponse, tags=["Invoice"])
def plan_invoice(document: InvoiceDocument):
    """Page plan only: estimated height, page count, item slices and section flags."""
    _check_size(document)
    estimate, pages = plan_pages(document)
    return PlanResponse(invoice_number=document.invoice_number, estimate=estimate, pages=pages)


@app.post("/export", tags=["Invoice"])
async def export_invoice(
    document: InvoiceDocument,
    format: Literal["pdf", "png"] = Query(
        default="pdf",
        description="Output format: **pdf** (default, one A4 page per invoice page) | **png** (pages stacked)",
    ),
    authorization: Optional[str] = Header(default=None),
):
    """
    Render an invoice and download it.

    The optional `Authorization: Bearer <token>` header is used to fetch the
    company logo and signature from storage.
    """
    _check_size(document)
    session = InvoiceExportSession(document, credential=_bearer(authorization))
    artifact = await session.export(format)
    if artifact is None:
        raise HTTPException(status_code=500, detail="Export failed")

    return StreamingResponse(
        content=io.BytesIO(artifact.content),
        media_type=artifact.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{artifact.filename}"',
            "X-Page-Count": str(artifact.page_count),
        },
    )


@app.post("/print", response_model=PrintResponse, tags=["Invoice"])
async def print_invoice(
    document: InvoiceDocument,
    authorization: Optional[str] = Header(default=None),
):
    _check_size(document)
    session = InvoiceExportSession(document, credential=_bearer(authorization))
    artifact = await session.print_invoice()
    if artifact is None:
        return PrintResponse(success=False, error="Print failed")
    return PrintResponse(success=True, pages=artifact.page_count)


# ── Entry point ────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("APP_ENV", "development") == "development",
    )

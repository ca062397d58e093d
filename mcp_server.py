"""
MCP Server for the Invoice Page Engine
--------------------------------------
Exposes page planning and PDF/PNG export as MCP tools so any MCP-compatible
client (Claude Desktop, Cursor, Windsurf, etc.) can call them directly.

Run modes:
  stdio  (Claude Desktop):  python mcp_server.py
  http   (remote / URL):    python mcp_server.py --http
"""

import argparse
import base64
from typing import Optional

from dotenv import load_dotenv
from fastmcp import FastMCP

load_dotenv()

from layout import LayoutConfig, plan_pages
from models import InvoiceDocument
from pipeline import export_invoice
from renderer import RASTER_SCALE

# ── MCP Server ─────────────────────────────────────────────────────────────────

mcp = FastMCP(
    name="Invoice Page Engine",
    instructions=(
        "This server lays out pre-computed GST tax invoices on A4 pages. "
        "Send the invoice as a JSON object to get the page plan, or a "
        "base64-encoded PDF / PNG rendering of it."
    ),
)


# ── Tools ──────────────────────────────────────────────────────────────────────

@mcp.tool()
def plan_invoice_pages(document: dict) -> dict:
    """
    Decide how an invoice is split across pages.

    Args:
        document: The invoice (camelCase or snake_case keys), with items already
                  in display order and all amounts pre-computed.

    Returns:
        The height estimate and, per page, its item slice and visible sections.
    """
    invoice = InvoiceDocument.model_validate(document)
    estimate, pages = plan_pages(invoice)
    return {
        "estimate": estimate.model_dump(),
        "pages": [page.model_dump() | {"banner": page.banner} for page in pages],
    }


@mcp.tool()
async def render_invoice(document: dict, format: str = "pdf", access_token: Optional[str] = None) -> dict:
    """
    Render an invoice to PDF or PNG.

    Args:
        document:     The invoice as a JSON object.
        format:       "pdf" (one A4 page per invoice page) or "png" (pages stacked).
        access_token: Optional bearer token used to fetch the logo and signature.

    Returns:
        success flag, filename, page_count and the base64-encoded file.
    """
    if format not in ("pdf", "png"):
        return {"success": False, "error": f"Unsupported format '{format}'. Use 'pdf' or 'png'."}

    artifact = await export_invoice(document, format, credential=access_token)
    if artifact is None:
        return {"success": False, "error": "Export failed"}
    return {
        "success": True,
        "filename": artifact.filename,
        "media_type": artifact.media_type,
        "page_count": artifact.page_count,
        "file_base64": base64.b64encode(artifact.content).decode("ascii"),
    }


@mcp.tool()
def get_export_formats() -> dict:
    """
    Returns the export formats and the active layout capacities.
    """
    config = LayoutConfig.from_env()
    return {
        "formats": ["pdf", "png"],
        "page": {"width": config.page_width, "height": config.page_height},
        "first_page_capacity": config.first_page_capacity,
        "subsequent_page_capacity": config.subsequent_page_capacity,
        "raster_scale": RASTER_SCALE,
    }


# ── Entry point ────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Invoice Page Engine MCP Server")
    parser.add_argument(
        "--http",
        action="store_true",
        help="Run in HTTP mode (exposes a URL). Default is stdio mode for Claude Desktop.",
    )
    parser.add_argument("--host", default="0.0.0.0", help="HTTP host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8001, help="HTTP port (default: 8001)")
    args = parser.parse_args()

    if args.http:
        print(f"🚀 MCP Server running at http://{args.host}:{args.port}/sse")
        mcp.run(transport="sse", host=args.host, port=args.port)
    else:
        # stdio: used by Claude Desktop, Cursor, Windsurf
        mcp.run(transport="stdio")

"""
Export pipeline for one invoice.

    InvoiceDocument -> AssetResolver (async) -> plan_pages -> PageRenderer -> exports

`InvoiceExportSession` is the caller-facing surface: `download_as_pdf()`,
`download_as_image()` and `print_invoice()` each return an `ExportArtifact`,
or None when the export failed (the failure is logged, never raised).
"""

import asyncio
import logging
import re
from typing import List, Literal, Optional, Tuple, Union

from assets import AssetResolver
from errors import ExportError
from exports import print_pages, to_pdf, to_png
from layout import LayoutConfig, plan_pages
from models import ExportArtifact, InvoiceDocument, LayoutEstimate, PageDescriptor, RenderedPage
from renderer import RASTER_SCALE, PageRenderer, RenderContext

logger = logging.getLogger(__name__)

ExportFormat = Literal["pdf", "png"]

MEDIA_TYPES = {
    "pdf": "application/pdf",
    "png": "image/png",
}

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def artifact_filename(invoice_number: str, extension: str) -> str:
    safe = _UNSAFE_FILENAME_CHARS.sub("-", invoice_number or "").strip("-") or "draft"
    return f"invoice-{safe}.{extension}"


class InvoiceExportSession:
    """
    Export operations for one document.

    Calls on the same session are serialised: a second export waits until the
    pending one finishes or is cancelled. Every call renders into its own
    RenderContext, so separate sessions never share a render target.
    """

    def __init__(
        self,
        document: Union[InvoiceDocument, dict],
        credential: Optional[str] = None,
        resolver: Optional[AssetResolver] = None,
        renderer: Optional[PageRenderer] = None,
        config: Optional[LayoutConfig] = None,
        scale: int = RASTER_SCALE,
        printer=None,
    ):
        if not isinstance(document, InvoiceDocument):
            document = InvoiceDocument.model_validate(document)
        self.document = document
        self.credential = credential
        self.resolver = resolver or AssetResolver()
        self.renderer = renderer or PageRenderer()
        self.config = config or LayoutConfig.from_env()
        self.scale = scale
        self.printer = printer
        self._lock = asyncio.Lock()

    @property
    def print_title(self) -> str:
        return f"Invoice-{self.document.invoice_number}"

    def plan(self) -> Tuple[LayoutEstimate, List[PageDescriptor]]:
        return plan_pages(self.document, self.config)

    async def render_pages(self) -> List[RenderedPage]:
        """
        Resolve assets, plan, then rasterise every page in ascending order.

        All asset fetches settle before planning starts. Pages are rendered
        one at a time off the event loop. A cancellation waits for the page
        in flight, then releases the render target and propagates.
        """
        assets = await self.resolver.resolve(self.document.asset_refs, self.credential)
        _estimate, descriptors = self.plan()

        pages: List[RenderedPage] = []
        with RenderContext(self.scale, self.config) as context:
            for descriptor in descriptors:
                job = asyncio.ensure_future(asyncio.to_thread(
                    self.renderer.render, descriptor, self.document, assets, context
                ))
                try:
                    page = await asyncio.shield(job)
                except asyncio.CancelledError:
                    # the worker thread still draws into the target; close it only after
                    await asyncio.wait([job])
                    if job.exception() is not None:
                        logger.debug("Page %d render abandoned on cancellation: %s",
                                     descriptor.page_index, job.exception())
                    raise
                pages.append(page)
        logger.info("Invoice %s: rendered %d page(s) at %dx",
                    self.document.invoice_number, len(pages), self.scale)
        return pages

    # ── Public operations ──────────────────────────────────────────────────────

    async def download_as_pdf(self) -> Optional[ExportArtifact]:
        return await self._run("pdf")

    async def download_as_image(self) -> Optional[ExportArtifact]:
        return await self._run("png")

    async def print_invoice(self) -> Optional[ExportArtifact]:
        """Print the document; the returned artifact is the PDF that was spooled."""
        return await self._run("print")

    async def export(self, fmt: ExportFormat) -> Optional[ExportArtifact]:
        if fmt not in MEDIA_TYPES:
            logger.error("Unsupported export format '%s'", fmt)
            return None
        return await self._run(fmt)

    # ── Internals ──────────────────────────────────────────────────────────────

    async def _run(self, action: str) -> Optional[ExportArtifact]:
        async with self._lock:
            try:
                return await self._build(action)
            except ExportError:
                logger.exception("Export '%s' of invoice %s failed",
                                 action, self.document.invoice_number)
            except Exception:
                logger.exception("Unexpected error during export '%s' of invoice %s",
                                 action, self.document.invoice_number)
            return None

    async def _build(self, action: str) -> ExportArtifact:
        pages = await self.render_pages()
        number = self.document.invoice_number

        if action == "png":
            content = await asyncio.to_thread(to_png, pages)
            return ExportArtifact(
                content=content,
                media_type=MEDIA_TYPES["png"],
                filename=artifact_filename(number, "png"),
                page_count=len(pages),
            )

        if action == "print":
            content = await asyncio.to_thread(print_pages, pages, self.print_title, self.printer)
        else:
            content = await asyncio.to_thread(to_pdf, pages, self.print_title)
        return ExportArtifact(
            content=content,
            media_type=MEDIA_TYPES["pdf"],
            filename=artifact_filename(number, "pdf"),
            page_count=len(pages),
        )


async def export_invoice(
    document: Union[InvoiceDocument, dict],
    fmt: ExportFormat = "pdf",
    credential: Optional[str] = None,
    **session_options,
) -> Optional[ExportArtifact]:
    """One-shot export with a fresh session."""
    session = InvoiceExportSession(document, credential=credential, **session_options)
    return await session.export(fmt)

"""
Export-pipeline exceptions.

Only `AssetResolutionError` is recoverable (the asset falls back to the
placeholder). Everything else is fatal to the current export call and is
caught at the session boundary in `pipeline.py`.
"""


class ExportError(Exception):
    """Base exception for all export-pipeline errors."""
    pass


class AssetResolutionError(ExportError):
    """A logo or signature could not be fetched or decoded."""

    def __init__(self, slot: str, reason: str):
        self.slot = slot
        self.reason = reason
        super().__init__(f"Asset '{slot}' unresolved: {reason}")


class RasterCaptureError(ExportError):
    """The rendering backend failed to produce a page surface."""
    pass


class AssemblyError(ExportError):
    """Rendered surfaces cannot be assembled (bad dimensions, scale or page order)."""
    pass


class PrintError(ExportError):
    """The native print pipeline rejected the job."""
    pass

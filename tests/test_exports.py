import io

import pytest

COLORS = [(220, 20, 20), (20, 160, 20), (20, 20, 220)]


def _page(index, color=(255, 255, 255), size=(794, 1123)):
    from PIL import Image
    from models import RenderedPage
    return RenderedPage(page_index=index, surface=Image.new("RGB", size, color))


class FakePrinter:
    def __init__(self, error=None):
        self.jobs = []
        self.error = error

    def submit(self, pdf_bytes, title):
        if self.error:
            raise self.error
        self.jobs.append((title, pdf_bytes))


class TestPlacement:
    def test_a4_proportioned_image_fills_page(self):
        from exports import placement
        x, y, w, h = placement(794, 1123)
        assert y == 0.0
        assert h == pytest.approx(297, abs=0.01)
        assert w == pytest.approx(210, abs=0.05)
        assert x == pytest.approx((210 - w) / 2)

    def test_wide_image_is_centred_and_width_bound(self):
        from exports import placement
        x, y, w, h = placement(2000, 1000)
        assert (x, y, w, h) == pytest.approx((0.0, 0.0, 210.0, 105.0))

    def test_tall_image_is_centred_horizontally(self):
        from exports import placement
        x, y, w, h = placement(100, 297)
        assert h == pytest.approx(297)
        assert w == pytest.approx(100)
        assert x == pytest.approx(55)

    def test_empty_image_rejected(self):
        from errors import AssemblyError
        from exports import placement
        with pytest.raises(AssemblyError):
            placement(0, 100)


class TestOrderedPages:
    def test_sorts_by_index(self):
        from exports import ordered_pages
        pages = [_page(3), _page(1), _page(2)]
        assert [p.page_index for p in ordered_pages(pages)] == [1, 2, 3]

    @pytest.mark.parametrize("indices", [[], [1, 3], [2], [1, 1]])
    def test_rejects_gaps_and_duplicates(self, indices):
        from errors import AssemblyError
        from exports import ordered_pages
        with pytest.raises(AssemblyError):
            ordered_pages([_page(i) for i in indices])

    def test_rejects_distorted_surface(self):
        from errors import AssemblyError
        from exports import ordered_pages
        with pytest.raises(AssemblyError, match="does not match"):
            ordered_pages([_page(1, size=(794, 794))])

    def test_supersampled_surface_accepted(self):
        from exports import ordered_pages
        assert len(ordered_pages([_page(1, size=(1588, 2246))])) == 1


class TestPdf:
    def test_one_a4_page_per_rendered_page_in_order(self):
        import fitz
        from exports import to_pdf
        pages = [_page(i + 1, color) for i, color in enumerate(COLORS)]
        data = to_pdf(list(reversed(pages)))

        pdf = fitz.open(stream=data, filetype="pdf")
        assert pdf.page_count == 3
        for page, color in zip(pdf, COLORS):
            assert page.rect.width == pytest.approx(595.28, abs=0.5)
            assert page.rect.height == pytest.approx(841.89, abs=0.5)
            pix = page.get_pixmap()
            sample = pix.pixel(pix.width // 2, pix.height // 2)
            assert all(abs(a - b) <= 3 for a, b in zip(sample, color))

    def test_image_is_top_aligned(self):
        import fitz
        from exports import to_pdf
        # half-height surface leaves the bottom of the sheet blank
        page = _page(1, (0, 0, 0), size=(794, 561))
        page.logical_size = (794, 561)
        pix = fitz.open(stream=to_pdf([page]), filetype="pdf")[0].get_pixmap()
        assert pix.pixel(pix.width // 2, 10)[:3] == (0, 0, 0)
        assert pix.pixel(pix.width // 2, pix.height - 10)[:3] == (255, 255, 255)

    def test_output_is_deterministic(self):
        from exports import to_pdf
        pages = [_page(1, COLORS[0]), _page(2, COLORS[1])]
        assert to_pdf(pages, title="Invoice-1") == to_pdf(pages, title="Invoice-1")

    def test_title_is_embedded(self):
        import fitz
        from exports import to_pdf
        pdf = fitz.open(stream=to_pdf([_page(1)], title="Invoice-INV-42"), filetype="pdf")
        assert pdf.metadata["title"] == "Invoice-INV-42"

    def test_empty_input_rejected(self):
        from errors import AssemblyError
        from exports import to_pdf
        with pytest.raises(AssemblyError):
            to_pdf([])


class TestPng:
    def test_single_page_exported_as_is(self):
        from PIL import Image
        from exports import to_png
        img = Image.open(io.BytesIO(to_png([_page(1, COLORS[0])])))
        assert img.format == "PNG"
        assert img.size == (794, 1123)

    def test_pages_are_stacked_in_order(self):
        from PIL import Image
        from exports import to_png
        img = Image.open(io.BytesIO(to_png([_page(2, COLORS[1]), _page(1, COLORS[0])])))
        assert img.size == (794, 2246)
        assert img.convert("RGB").getpixel((400, 10)) == COLORS[0]
        assert img.convert("RGB").getpixel((400, 1200)) == COLORS[1]


class TestPrint:
    def test_submits_the_pdf(self):
        from exports import print_pages
        printer = FakePrinter()
        data = print_pages([_page(1), _page(2)], "Invoice-INV-42", printer)
        assert printer.jobs == [("Invoice-INV-42", data)]
        assert data.startswith(b"%PDF")

    def test_printer_error_propagates(self):
        from errors import PrintError
        from exports import print_pages
        with pytest.raises(PrintError):
            print_pages([_page(1)], "Invoice-1", FakePrinter(PrintError("offline")))

    def test_missing_spooler_is_print_error(self, monkeypatch):
        import subprocess
        import exports
        from errors import PrintError

        def missing(*args, **kwargs):
            raise FileNotFoundError("lp")

        monkeypatch.setattr(exports.platform, "system", lambda: "Linux")
        monkeypatch.setattr(subprocess, "run", missing)
        with pytest.raises(PrintError, match="lp is not installed"):
            exports.SystemPrinter("office").submit(b"%PDF", "Invoice-1")

    def test_lp_command_line(self, monkeypatch):
        import subprocess
        import exports
        calls = []

        def fake_run(cmd, **kwargs):
            calls.append((cmd, kwargs["input"]))

        monkeypatch.setattr(exports.platform, "system", lambda: "Linux")
        monkeypatch.setattr(subprocess, "run", fake_run)
        exports.SystemPrinter("office").submit(b"%PDF-data", "Invoice-7")
        assert calls == [(["lp", "-t", "Invoice-7", "-d", "office", "-"], b"%PDF-data")]

    def test_windows_spool_file_removed_at_exit(self, monkeypatch):
        import os
        import exports
        handed = []

        monkeypatch.setattr(exports.platform, "system", lambda: "Windows")
        monkeypatch.setattr(exports.os, "startfile", lambda path, verb: handed.append((path, verb)), raising=False)
        exports.SystemPrinter().submit(b"%PDF-data", "Invoice-7")

        (path, verb), = handed
        assert verb == "print"
        assert os.path.exists(path)
        exports.remove_spooled_files()
        assert not os.path.exists(path)

    def test_windows_spool_file_removed_on_rejection(self, monkeypatch):
        import os
        import exports
        from errors import PrintError
        handed = []

        def rejected(path, verb):
            handed.append(path)
            raise OSError("no application is associated with .pdf")

        monkeypatch.setattr(exports.platform, "system", lambda: "Windows")
        monkeypatch.setattr(exports.os, "startfile", rejected, raising=False)
        with pytest.raises(PrintError):
            exports.SystemPrinter().submit(b"%PDF-data", "Invoice-7")
        assert not os.path.exists(handed[0])
        assert handed[0] not in exports._spooled_files

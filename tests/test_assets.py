import asyncio
import io

import httpx

LOGO_ID = "1LogoFileId_abcdef"
SIGNATURE_ID = "1SignFileId_abcdef"


def _png(color=(255, 0, 0)) -> bytes:
    from PIL import Image
    buf = io.BytesIO()
    Image.new("RGB", (60, 30), color).save(buf, format="PNG")
    return buf.getvalue()


def _resolver(handler):
    from assets import AssetResolver
    return AssetResolver(base_url="https://files.test/v3/files", transport=httpx.MockTransport(handler))


class TestAssetResolver:
    def test_resolves_both_assets(self):
        from models import AssetRefs
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, request.url.params.get("alt"), request.headers.get("authorization")))
            return httpx.Response(200, content=_png())

        refs = AssetRefs(company_logo_ref=LOGO_ID, signature_ref=f"https://drive.google.com/file/d/{SIGNATURE_ID}/view")
        assets = asyncio.run(_resolver(handler).resolve(refs, "token-123"))

        assert set(assets.resolved) == {"logo", "signature"}
        assert assets.unresolved == []
        assert assets.get("logo").image.mode == "RGBA"
        assert assets.get("logo").image.size == (60, 30)
        assert sorted(seen) == sorted([
            (f"/v3/files/{LOGO_ID}", "media", "Bearer token-123"),
            (f"/v3/files/{SIGNATURE_ID}", "media", "Bearer token-123"),
        ])

    def test_failed_logo_falls_back(self):
        from models import AssetRefs

        def handler(request: httpx.Request) -> httpx.Response:
            if LOGO_ID in request.url.path:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, content=_png())

        refs = AssetRefs(company_logo_ref=LOGO_ID, signature_ref=SIGNATURE_ID)
        assets = asyncio.run(_resolver(handler).resolve(refs, "token"))

        assert assets.unresolved == ["logo"]
        assert assets.get("logo") is None
        assert assets.get("signature") is not None

    def test_network_error_and_bad_bytes_fall_back(self):
        from models import AssetRefs

        def handler(request: httpx.Request) -> httpx.Response:
            if LOGO_ID in request.url.path:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, content=b"<html>login</html>")

        refs = AssetRefs(company_logo_ref=LOGO_ID, signature_ref=SIGNATURE_ID)
        assets = asyncio.run(_resolver(handler).resolve(refs, "token"))

        assert sorted(assets.unresolved) == ["logo", "signature"]
        assert assets.resolved == {}

    def test_missing_references_make_no_requests(self):
        from models import AssetRefs
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, content=_png())

        assets = asyncio.run(_resolver(handler).resolve(AssetRefs(), None))

        assert calls == []
        assert sorted(assets.unresolved) == ["logo", "signature"]

    def test_no_credential_sends_no_auth_header(self):
        from models import AssetRefs
        headers = []

        def handler(request: httpx.Request) -> httpx.Response:
            headers.append(request.headers.get("authorization"))
            return httpx.Response(200, content=_png())

        asyncio.run(_resolver(handler).resolve(AssetRefs(company_logo_ref=LOGO_ID), None))
        assert headers == [None]

    def test_fetches_run_concurrently(self):
        from assets import AssetResolver
        from models import AssetRefs
        in_flight = 0
        peak = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.05)
            in_flight -= 1
            return httpx.Response(200, content=_png())

        resolver = AssetResolver(transport=httpx.MockTransport(handler))
        refs = AssetRefs(company_logo_ref=LOGO_ID, signature_ref=SIGNATURE_ID)
        assets = asyncio.run(resolver.resolve(refs, "token"))

        assert peak == 2
        assert set(assets.resolved) == {"logo", "signature"}

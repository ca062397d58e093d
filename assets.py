"""
AssetResolver: fetches the logo and signature images behind their storage ids
and decodes them in memory, so page rendering never depends on the remote origin.
"""

import asyncio
import logging
import os
from typing import Dict, Optional

import httpx

from errors import AssetResolutionError
from models import AssetRefs, ResolvedAsset, ResolvedAssets
from utils import extract_file_id, normalize_image

logger = logging.getLogger(__name__)

DRIVE_API_BASE = os.getenv("DRIVE_API_BASE", "https://www.googleapis.com/drive/v3/files")
ASSET_FETCH_TIMEOUT = float(os.getenv("ASSET_FETCH_TIMEOUT", "15"))

LOGO = "logo"
SIGNATURE = "signature"


class AssetResolver:
    def __init__(
        self,
        base_url: str = DRIVE_API_BASE,
        timeout: float = ASSET_FETCH_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def asset_url(self, file_id: str) -> str:
        return f"{self.base_url}/{file_id}?alt=media"

    async def resolve(self, refs: AssetRefs, credential: Optional[str]) -> ResolvedAssets:
        """
        Resolve every referenced asset concurrently and wait for all of them.

        A failed asset is logged and listed as unresolved; the call itself
        only fails on cancellation.
        """
        wanted: Dict[str, Optional[str]] = {
            LOGO: refs.company_logo_ref,
            SIGNATURE: refs.signature_ref,
        }
        result = ResolvedAssets()

        headers = {"Authorization": f"Bearer {credential}"} if credential else {}
        async with httpx.AsyncClient(
            timeout=self.timeout,
            headers=headers,
            transport=self._transport,
            follow_redirects=True,
        ) as client:
            slots = list(wanted)
            outcomes = await asyncio.gather(
                *(self._resolve_one(client, slot, wanted[slot]) for slot in slots),
                return_exceptions=True,
            )

        for slot, outcome in zip(slots, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, ResolvedAsset):
                result.resolved[slot] = outcome
                continue
            if isinstance(outcome, AssetResolutionError):
                logger.warning("%s, using placeholder", outcome)
            elif isinstance(outcome, BaseException):
                logger.warning("Asset '%s' unresolved: %r, using placeholder", slot, outcome)
            result.unresolved.append(slot)
        return result

    async def _resolve_one(
        self, client: httpx.AsyncClient, slot: str, ref: Optional[str]
    ) -> ResolvedAsset:
        file_id = extract_file_id(ref)
        if file_id is None:
            raise AssetResolutionError(slot, "no storage reference" if not ref else f"unrecognised reference {ref!r}")

        try:
            response = await client.get(self.asset_url(file_id))
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AssetResolutionError(slot, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise AssetResolutionError(slot, f"{type(e).__name__}: {e}") from e

        try:
            image = normalize_image(response.content)
        except ValueError as e:
            raise AssetResolutionError(slot, str(e)) from e

        logger.debug("Asset '%s' resolved (%dx%d)", slot, image.width, image.height)
        return ResolvedAsset(image=image)

from __future__ import annotations

from functools import lru_cache
from typing import Any

import httpx

from petitions.core.config import get_settings
from petitions.services.records import SignatureRecord, WriteResult


class LegacyStoreClient:
    """Writes signatures to the legacy petition service, which assigns the legacy id."""

    def __init__(
        self,
        base_url: str | None,
        api_key: str | None = None,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.headers = {"X-API-Key": api_key} if api_key else {}
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def write_signature(self, record: SignatureRecord) -> WriteResult:
        if not self.base_url:
            return WriteResult.failed("not_configured")

        try:
            response = await self._post(f"{self.base_url}/signatures", record.as_payload())
        except httpx.HTTPError as exc:
            return WriteResult.failed("transport_error", error=exc)

        if not response.is_success:
            return WriteResult.failed(f"http_{response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            return WriteResult.failed("invalid_response", error=exc)

        legacy_id = _extract_identifier(payload)
        if legacy_id is None:
            return WriteResult.failed("missing_identifier")
        return WriteResult.succeeded(legacy_id)

    async def _post(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, json=payload, headers=self.headers)
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.post(url, json=payload, headers=self.headers)


def _extract_identifier(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    value = payload.get("id")
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


@lru_cache
def get_legacy_store() -> LegacyStoreClient:
    settings = get_settings()
    return LegacyStoreClient(
        base_url=settings.legacy_store_url,
        api_key=settings.legacy_store_api_key,
        timeout_seconds=settings.legacy_store_timeout_seconds,
    )

from __future__ import annotations

from functools import lru_cache
from typing import Any

import httpx

from petitions.core.config import get_settings
from petitions.services.records import LocationCandidate


class ZipLookupError(RuntimeError):
    """Raised when the zip lookup service cannot answer."""


class ZipLookupClient:
    """Resolves a postal code to city/state/country through a Zippopotam-style API.

    ``GET {base_url}/{country}/{zip}`` answers with a ``places`` list; every place becomes one
    candidate, in the order returned. A 404 means the zip is unknown and yields no candidates.
    """

    def __init__(
        self,
        base_url: str,
        country: str = "us",
        timeout_seconds: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.country = country.strip().lower()
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def lookup(self, zip_code: str) -> list[LocationCandidate]:
        normalized_zip = zip_code.strip()
        if not normalized_zip:
            return []

        url = f"{self.base_url}/{self.country}/{normalized_zip}"
        try:
            response = await self._get(url)
        except httpx.HTTPError as exc:
            raise ZipLookupError(f"zip lookup unavailable for {normalized_zip}") from exc

        if response.status_code == 404:
            return []
        if response.status_code != 200:
            raise ZipLookupError(f"zip lookup failed status={response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise ZipLookupError("zip lookup returned invalid json") from exc
        return parse_places(payload)

    async def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url)
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.get(url)


def parse_places(payload: Any) -> list[LocationCandidate]:
    if not isinstance(payload, dict):
        return []
    country = _as_text(payload.get("country abbreviation")) or _as_text(payload.get("country"))
    places = payload.get("places")
    if not country or not isinstance(places, list):
        return []

    candidates: list[LocationCandidate] = []
    for place in places:
        if not isinstance(place, dict):
            continue
        city = _as_text(place.get("place name"))
        state = _as_text(place.get("state abbreviation")) or _as_text(place.get("state"))
        if city and state:
            candidates.append(LocationCandidate(city=city, state=state, country=country))
    return candidates


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


@lru_cache
def get_zip_lookup() -> ZipLookupClient | None:
    settings = get_settings()
    if not settings.zip_lookup_url:
        return None
    return ZipLookupClient(
        base_url=settings.zip_lookup_url,
        country=settings.zip_lookup_country,
        timeout_seconds=settings.zip_lookup_timeout_seconds,
    )

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(slots=True, frozen=True)
class SignatureRecord:
    """One user's endorsement of a petition.

    ``petition_id`` is expressed in whichever identity scheme petitions are read through:
    the legacy scheme of the secondary store or the native scheme of the primary store.
    ``legacy_id`` and ``primary_id`` stay unset until the matching store accepts the write.
    """

    petition_id: str
    user_id: str | None = None
    user_token: str | None = None
    ip_address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    zip_code: str | None = None
    legacy_id: str | None = None
    primary_id: int | None = None
    created_at: datetime | None = None

    @property
    def user_identity(self) -> str | None:
        return _as_text(self.user_id) or _as_text(self.user_token)

    @property
    def has_location(self) -> bool:
        return bool(_as_text(self.city) and _as_text(self.state) and _as_text(self.country))

    def as_payload(self) -> dict[str, Any]:
        return {
            "petition_id": self.petition_id,
            "user_id": self.user_id,
            "user_token": self.user_token,
            "ip_address": self.ip_address,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "zip_code": self.zip_code,
        }


@dataclass(slots=True, frozen=True)
class LocationCandidate:
    city: str
    state: str
    country: str


@dataclass(slots=True, frozen=True)
class WriteResult:
    """Outcome of a single store write: an identifier, or a failure reason."""

    identifier: Any = None
    reason: str | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.reason is None and self.identifier is not None

    @classmethod
    def succeeded(cls, identifier: Any) -> WriteResult:
        return cls(identifier=identifier)

    @classmethod
    def failed(cls, reason: str, *, error: BaseException | None = None) -> WriteResult:
        return cls(reason=reason, error=error)


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None

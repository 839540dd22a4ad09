from datetime import datetime

from pydantic import BaseModel, Field

from petitions.services.coordinator import SaveOutcome
from petitions.services.records import SignatureRecord


class SignatureCreateRequest(BaseModel):
    petition_id: str
    user_id: str | None = None
    user_token: str | None = None
    ip_address: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    zip_code: str | None = None

    def to_record(self, *, ip_address: str | None = None) -> SignatureRecord:
        return SignatureRecord(
            petition_id=self.petition_id,
            user_id=self.user_id,
            user_token=self.user_token,
            ip_address=self.ip_address or ip_address,
            city=self.city,
            state=self.state,
            country=self.country,
            zip_code=self.zip_code,
        )


class SignatureOut(BaseModel):
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

    @classmethod
    def from_record(cls, record: SignatureRecord) -> "SignatureOut":
        return cls(
            petition_id=record.petition_id,
            user_id=record.user_id,
            user_token=record.user_token,
            ip_address=record.ip_address,
            city=record.city,
            state=record.state,
            country=record.country,
            zip_code=record.zip_code,
            legacy_id=record.legacy_id,
            primary_id=record.primary_id,
            created_at=record.created_at,
        )


class SignatureSaveOut(BaseModel):
    outcome: SaveOutcome
    signature: SignatureOut
    stores: list[str] = Field(default_factory=list)

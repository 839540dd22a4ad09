from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Protocol

from opentelemetry import trace

from petitions.services.records import LocationCandidate, SignatureRecord, WriteResult

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class InvalidSignatureError(ValueError):
    """Raised when a signature lacks a petition id or any user identity."""


class SaveOutcome(str, Enum):
    SAVED = "saved"
    PETITION_NOT_FOUND = "petition_not_found"
    DUPLICATE = "duplicate"


@dataclass(slots=True, frozen=True)
class SaveResult:
    outcome: SaveOutcome
    record: SignatureRecord

    @property
    def saved(self) -> bool:
        return self.outcome is SaveOutcome.SAVED


class PetitionResolver(Protocol):
    async def petition_exists(self, petition_id: str) -> bool: ...

    async def translate_legacy_petition_id(self, legacy_petition_id: str) -> int | None: ...


class DedupChecker(Protocol):
    async def signature_exists(
        self,
        petition_id: str,
        *,
        user_id: str | None,
        user_token: str | None,
    ) -> bool: ...


class LocationEnricher(Protocol):
    async def lookup(self, zip_code: str) -> list[LocationCandidate]: ...


class SignatureWriter(Protocol):
    async def write_signature(self, record: SignatureRecord) -> WriteResult: ...


@dataclass(slots=True, frozen=True)
class WriteCoordinatorConfig:
    write_legacy_store: bool = True
    write_primary_store: bool = True
    read_petitions_from_legacy: bool = False


def validate_signature(record: SignatureRecord) -> None:
    if not record.petition_id or not record.petition_id.strip():
        raise InvalidSignatureError("petition_id must be a non-empty string")
    if record.user_identity is None:
        raise InvalidSignatureError("one of user_id or user_token is required")


def needs_location(record: SignatureRecord) -> bool:
    return not record.has_location and bool(record.zip_code and record.zip_code.strip())


def apply_location(record: SignatureRecord, candidates: list[LocationCandidate]) -> SignatureRecord:
    # First candidate wins; a record that already has a full location is never touched.
    if record.has_location or not candidates:
        return record
    first = candidates[0]
    return replace(record, city=first.city, state=first.state, country=first.country)


def apply_legacy_write(record: SignatureRecord, result: WriteResult) -> SignatureRecord:
    if not result.ok:
        return record
    return replace(record, legacy_id=str(result.identifier))


def apply_primary_write(record: SignatureRecord, result: WriteResult) -> SignatureRecord:
    if not result.ok:
        return record
    return replace(record, primary_id=int(result.identifier))


def apply_native_petition_id(record: SignatureRecord, native_petition_id: int | None) -> SignatureRecord:
    if not native_petition_id:
        return record
    return replace(record, petition_id=str(native_petition_id))


class WriteCoordinator:
    """Validates, dedupes, enriches and writes a signature to the legacy and primary stores.

    The legacy (secondary) store is always written before the primary store. Store failures are
    logged here and never abort the save: callers read ``legacy_id`` and ``primary_id`` on the
    returned record to learn which stores captured it.

    The dedup check is a point-in-time read. Two concurrent saves for the same petition and user
    can both pass it; only a unique index in the primary store (see ``scripts/render_schema.py``)
    closes that gap.
    """

    def __init__(
        self,
        *,
        petitions: PetitionResolver,
        dedupe: DedupChecker,
        legacy_store: SignatureWriter,
        primary_store: SignatureWriter,
        locations: LocationEnricher | None = None,
        config: WriteCoordinatorConfig | None = None,
    ) -> None:
        self.petitions = petitions
        self.dedupe = dedupe
        self.legacy_store = legacy_store
        self.primary_store = primary_store
        self.locations = locations
        self.config = config or WriteCoordinatorConfig()

    async def save(self, record: SignatureRecord) -> SaveResult:
        validate_signature(record)

        with tracer.start_as_current_span("signature.save") as span:
            span.set_attribute("signature.petition_id", record.petition_id)

            if not await self.petitions.petition_exists(record.petition_id):
                logger.info("signature rejected petition_id=%s reason=petition_not_found", record.petition_id)
                span.set_attribute("signature.outcome", SaveOutcome.PETITION_NOT_FOUND.value)
                return SaveResult(outcome=SaveOutcome.PETITION_NOT_FOUND, record=record)

            if await self.dedupe.signature_exists(
                record.petition_id,
                user_id=record.user_id,
                user_token=record.user_token,
            ):
                logger.info(
                    "signature rejected petition_id=%s user=%s reason=duplicate",
                    record.petition_id,
                    record.user_identity,
                )
                span.set_attribute("signature.outcome", SaveOutcome.DUPLICATE.value)
                return SaveResult(outcome=SaveOutcome.DUPLICATE, record=record)

            record = await self._enrich_location(record)
            if self.config.write_legacy_store:
                record = await self._write_legacy(record)
            if self.config.write_primary_store:
                record = await self._write_primary(record)

            span.set_attribute("signature.outcome", SaveOutcome.SAVED.value)
            span.set_attribute("signature.legacy_written", record.legacy_id is not None)
            span.set_attribute("signature.primary_written", record.primary_id is not None)
            return SaveResult(outcome=SaveOutcome.SAVED, record=record)

    async def _enrich_location(self, record: SignatureRecord) -> SignatureRecord:
        if self.locations is None or not needs_location(record):
            return record
        zip_code = (record.zip_code or "").strip()

        try:
            candidates = await self.locations.lookup(zip_code)
        except Exception:
            logger.warning(
                "location lookup failed petition_id=%s zip_code=%s",
                record.petition_id,
                record.zip_code,
                exc_info=True,
            )
            return record
        return apply_location(record, candidates)

    async def _write_legacy(self, record: SignatureRecord) -> SignatureRecord:
        result = await self._call_writer(self.legacy_store, record)
        if not result.ok:
            self._log_write_failure("legacy", record, result)
        return apply_legacy_write(record, result)

    async def _write_primary(self, record: SignatureRecord) -> SignatureRecord:
        candidate = record
        if self.config.read_petitions_from_legacy:
            try:
                native_petition_id = await self.petitions.translate_legacy_petition_id(record.petition_id)
            except Exception:
                logger.warning(
                    "legacy petition id translation failed petition_id=%s",
                    record.petition_id,
                    exc_info=True,
                )
                native_petition_id = None
            if not native_petition_id:
                # A legacy id must never reach the native petition column.
                self._log_write_failure("primary", record, WriteResult.failed("untranslated_petition_id"))
                return record
            candidate = apply_native_petition_id(record, native_petition_id)

        result = await self._call_writer(self.primary_store, candidate)
        if not result.ok:
            self._log_write_failure("primary", candidate, result)
            return record
        return apply_primary_write(candidate, result)

    @staticmethod
    async def _call_writer(writer: SignatureWriter, record: SignatureRecord) -> WriteResult:
        try:
            return await writer.write_signature(record)
        except Exception as exc:
            return WriteResult.failed("unexpected_error", error=exc)

    @staticmethod
    def _log_write_failure(store: str, record: SignatureRecord, result: WriteResult) -> None:
        logger.warning(
            "signature write failed store=%s petition_id=%s user=%s reason=%s record=%r",
            store,
            record.petition_id,
            record.user_identity,
            result.reason,
            record,
            exc_info=result.error,
        )

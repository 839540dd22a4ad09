from __future__ import annotations

import asyncio
import logging

import pytest

from petitions.services.coordinator import (
    InvalidSignatureError,
    SaveOutcome,
    SaveResult,
    WriteCoordinator,
    WriteCoordinatorConfig,
    apply_location,
)
from petitions.services.records import LocationCandidate, SignatureRecord, WriteResult


class FakePetitions:
    def __init__(self, existing: set[str], legacy_to_native: dict[str, int] | None = None) -> None:
        self.existing = existing
        self.legacy_to_native = legacy_to_native or {}
        self.translated: list[str] = []

    async def petition_exists(self, petition_id: str) -> bool:
        return petition_id in self.existing

    async def translate_legacy_petition_id(self, legacy_petition_id: str) -> int | None:
        self.translated.append(legacy_petition_id)
        return self.legacy_to_native.get(legacy_petition_id)


class FakeDedupe:
    def __init__(self, signed: set[tuple[str, str]] | None = None) -> None:
        self.signed = signed or set()
        self.calls: list[tuple[str, str | None, str | None]] = []

    async def signature_exists(self, petition_id: str, *, user_id: str | None, user_token: str | None) -> bool:
        self.calls.append((petition_id, user_id, user_token))
        return (petition_id, user_id or user_token or "") in self.signed


class FakeLocations:
    def __init__(self, candidates: list[LocationCandidate] | None = None, error: Exception | None = None) -> None:
        self.candidates = candidates or []
        self.error = error
        self.calls: list[str] = []

    async def lookup(self, zip_code: str) -> list[LocationCandidate]:
        self.calls.append(zip_code)
        if self.error is not None:
            raise self.error
        return self.candidates


class RecordingWriter:
    def __init__(self, name: str, calls: list[str], result: WriteResult | Exception) -> None:
        self.name = name
        self.calls = calls
        self.result = result
        self.records: list[SignatureRecord] = []

    async def write_signature(self, record: SignatureRecord) -> WriteResult:
        self.calls.append(self.name)
        self.records.append(record)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def _coordinator(
    *,
    petitions: FakePetitions | None = None,
    dedupe: FakeDedupe | None = None,
    locations: FakeLocations | None = None,
    legacy_result: WriteResult | Exception | None = None,
    primary_result: WriteResult | Exception | None = None,
    config: WriteCoordinatorConfig | None = None,
) -> tuple[WriteCoordinator, list[str], RecordingWriter, RecordingWriter]:
    calls: list[str] = []
    legacy = RecordingWriter("legacy", calls, legacy_result or WriteResult.succeeded("L1"))
    primary = RecordingWriter("primary", calls, primary_result or WriteResult.succeeded(1))
    coordinator = WriteCoordinator(
        petitions=petitions or FakePetitions({"P1"}),
        dedupe=dedupe or FakeDedupe(),
        legacy_store=legacy,
        primary_store=primary,
        locations=locations,
        config=config,
    )
    return coordinator, calls, legacy, primary


def _save(coordinator: WriteCoordinator, record: SignatureRecord) -> SaveResult:
    return asyncio.run(coordinator.save(record))


@pytest.mark.parametrize("petition_id", ["", "   "])
def test_save_rejects_missing_petition_id_before_any_write(petition_id: str) -> None:
    dedupe = FakeDedupe()
    coordinator, calls, _, _ = _coordinator(dedupe=dedupe)

    with pytest.raises(InvalidSignatureError):
        _save(coordinator, SignatureRecord(petition_id=petition_id, user_token="U1"))

    assert calls == []
    assert dedupe.calls == []


def test_save_rejects_missing_user_identity() -> None:
    coordinator, calls, _, _ = _coordinator()

    with pytest.raises(InvalidSignatureError):
        _save(coordinator, SignatureRecord(petition_id="P1", user_id=" ", user_token=None))

    assert calls == []


def test_save_soft_rejects_unknown_petition() -> None:
    dedupe = FakeDedupe()
    coordinator, calls, _, _ = _coordinator(petitions=FakePetitions(set()), dedupe=dedupe)
    record = SignatureRecord(petition_id="missing", user_token="U1")

    result = _save(coordinator, record)

    assert result.outcome is SaveOutcome.PETITION_NOT_FOUND
    assert result.record == record
    assert not result.saved
    assert calls == []
    assert dedupe.calls == []


def test_save_soft_rejects_duplicate_signature() -> None:
    locations = FakeLocations([LocationCandidate("Springfield", "IL", "US")])
    coordinator, calls, _, _ = _coordinator(dedupe=FakeDedupe({("P1", "user-1")}), locations=locations)

    result = _save(coordinator, SignatureRecord(petition_id="P1", user_id="user-1", zip_code="62701"))

    assert result.outcome is SaveOutcome.DUPLICATE
    assert calls == []
    assert locations.calls == []


def test_dedup_check_receives_both_identity_fields() -> None:
    dedupe = FakeDedupe()
    coordinator, _, _, _ = _coordinator(dedupe=dedupe)

    _save(coordinator, SignatureRecord(petition_id="P1", user_id="user-1", user_token="tok"))

    assert dedupe.calls == [("P1", "user-1", "tok")]


def test_enrichment_skipped_when_location_is_complete() -> None:
    locations = FakeLocations([LocationCandidate("Springfield", "IL", "US")])
    coordinator, _, _, _ = _coordinator(locations=locations)
    record = SignatureRecord(
        petition_id="P1",
        user_token="U1",
        city="Portland",
        state="OR",
        country="US",
        zip_code="62701",
    )

    result = _save(coordinator, record)

    assert locations.calls == []
    assert (result.record.city, result.record.state, result.record.country) == ("Portland", "OR", "US")


def test_enrichment_fills_location_from_zip_code() -> None:
    locations = FakeLocations([LocationCandidate("Springfield", "IL", "US")])
    coordinator, _, _, _ = _coordinator(locations=locations)

    result = _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1", zip_code=" 62701 "))

    assert locations.calls == ["62701"]
    assert result.record.city == "Springfield"
    assert result.record.state == "IL"
    assert result.record.country == "US"


def test_enrichment_replaces_partial_location() -> None:
    locations = FakeLocations([LocationCandidate("Springfield", "IL", "US")])
    coordinator, _, _, _ = _coordinator(locations=locations)

    result = _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1", city="Springfeld", zip_code="62701"))

    assert (result.record.city, result.record.state, result.record.country) == ("Springfield", "IL", "US")


def test_enrichment_skipped_without_zip_code() -> None:
    locations = FakeLocations([LocationCandidate("Springfield", "IL", "US")])
    coordinator, _, _, _ = _coordinator(locations=locations)

    result = _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1"))

    assert locations.calls == []
    assert result.record.city is None


def test_enrichment_failure_does_not_block_save(caplog: pytest.LogCaptureFixture) -> None:
    locations = FakeLocations(error=RuntimeError("lookup down"))
    coordinator, calls, _, _ = _coordinator(locations=locations)

    with caplog.at_level(logging.WARNING, logger="petitions.services.coordinator"):
        result = _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1", zip_code="62701"))

    assert result.outcome is SaveOutcome.SAVED
    assert result.record.city is None
    assert calls == ["legacy", "primary"]
    assert "location lookup failed" in caplog.text


def test_apply_location_uses_first_candidate() -> None:
    record = SignatureRecord(petition_id="P1", user_token="U1", zip_code="10001")

    enriched = apply_location(
        record,
        [LocationCandidate("New York", "NY", "US"), LocationCandidate("Manhattan", "NY", "US")],
    )

    assert enriched.city == "New York"
    assert record.city is None
    assert apply_location(record, []) is record


def test_legacy_store_is_written_before_primary_store() -> None:
    coordinator, calls, _, _ = _coordinator()

    result = _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1"))

    assert calls == ["legacy", "primary"]
    assert result.outcome is SaveOutcome.SAVED


def test_primary_write_sees_legacy_identifier() -> None:
    coordinator, _, _, primary = _coordinator(legacy_result=WriteResult.succeeded("L42"))

    _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1"))

    assert primary.records[0].legacy_id == "L42"


def test_legacy_failure_is_not_fatal(caplog: pytest.LogCaptureFixture) -> None:
    coordinator, calls, _, _ = _coordinator(
        legacy_result=WriteResult.failed("http_500"),
        primary_result=WriteResult.succeeded(9),
    )

    with caplog.at_level(logging.WARNING, logger="petitions.services.coordinator"):
        result = _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1"))

    assert calls == ["legacy", "primary"]
    assert result.outcome is SaveOutcome.SAVED
    assert result.record.legacy_id is None
    assert result.record.primary_id == 9
    assert "store=legacy" in caplog.text
    assert "reason=http_500" in caplog.text


def test_writer_exception_is_treated_as_failed_write(caplog: pytest.LogCaptureFixture) -> None:
    coordinator, calls, _, _ = _coordinator(legacy_result=ConnectionError("reset"))

    with caplog.at_level(logging.WARNING, logger="petitions.services.coordinator"):
        result = _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1"))

    assert calls == ["legacy", "primary"]
    assert result.record.legacy_id is None
    assert "reason=unexpected_error" in caplog.text
    assert "ConnectionError" in caplog.text


def test_primary_success_sets_primary_identifier() -> None:
    coordinator, _, _, _ = _coordinator(primary_result=WriteResult.succeeded(42))

    result = _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1"))

    assert result.record.primary_id == 42


def test_primary_failure_returns_record_without_primary_identifier() -> None:
    coordinator, _, _, _ = _coordinator(
        legacy_result=WriteResult.succeeded("L5"),
        primary_result=WriteResult.failed("database_error"),
    )

    result = _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1"))

    assert result.outcome is SaveOutcome.SAVED
    assert result.record.primary_id is None
    assert result.record.legacy_id == "L5"


def test_store_toggles_gate_writes() -> None:
    coordinator, calls, _, _ = _coordinator(
        config=WriteCoordinatorConfig(write_legacy_store=False, write_primary_store=True),
    )
    result = _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1"))
    assert calls == ["primary"]
    assert result.record.legacy_id is None

    coordinator, calls, _, _ = _coordinator(
        config=WriteCoordinatorConfig(write_legacy_store=True, write_primary_store=False),
    )
    result = _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1"))
    assert calls == ["legacy"]
    assert result.record.primary_id is None

    coordinator, calls, _, _ = _coordinator(
        config=WriteCoordinatorConfig(write_legacy_store=False, write_primary_store=False),
    )
    result = _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1"))
    assert calls == []
    assert result.outcome is SaveOutcome.SAVED


def test_legacy_read_mode_translates_petition_id_for_primary_write() -> None:
    petitions = FakePetitions({"legacy-7"}, legacy_to_native={"legacy-7": 700})
    coordinator, _, legacy, primary = _coordinator(
        petitions=petitions,
        config=WriteCoordinatorConfig(read_petitions_from_legacy=True),
    )

    result = _save(coordinator, SignatureRecord(petition_id="legacy-7", user_token="U1"))

    assert legacy.records[0].petition_id == "legacy-7"
    assert primary.records[0].petition_id == "700"
    assert result.record.petition_id == "700"


@pytest.mark.parametrize("native", [None, 0])
def test_legacy_read_mode_skips_primary_write_when_translation_misses(
    native: int | None,
    caplog: pytest.LogCaptureFixture,
) -> None:
    petitions = FakePetitions({"17"}, legacy_to_native={"17": native} if native is not None else {})
    coordinator, calls, _, primary = _coordinator(
        petitions=petitions,
        legacy_result=WriteResult.succeeded("L17"),
        config=WriteCoordinatorConfig(read_petitions_from_legacy=True),
    )

    with caplog.at_level(logging.WARNING, logger="petitions.services.coordinator"):
        result = _save(coordinator, SignatureRecord(petition_id="17", user_token="U1"))

    assert calls == ["legacy"]
    assert primary.records == []
    assert result.outcome is SaveOutcome.SAVED
    assert result.record.petition_id == "17"
    assert result.record.legacy_id == "L17"
    assert result.record.primary_id is None
    assert "store=primary" in caplog.text
    assert "reason=untranslated_petition_id" in caplog.text


class FailingTranslationPetitions(FakePetitions):
    async def translate_legacy_petition_id(self, legacy_petition_id: str) -> int | None:
        self.translated.append(legacy_petition_id)
        raise OSError("resolver unreachable")


def test_translation_error_is_logged_and_save_still_succeeds(caplog: pytest.LogCaptureFixture) -> None:
    petitions = FailingTranslationPetitions({"17"})
    coordinator, calls, _, primary = _coordinator(
        petitions=petitions,
        legacy_result=WriteResult.succeeded("L17"),
        config=WriteCoordinatorConfig(read_petitions_from_legacy=True),
    )

    with caplog.at_level(logging.WARNING, logger="petitions.services.coordinator"):
        result = _save(coordinator, SignatureRecord(petition_id="17", user_token="U1"))

    assert petitions.translated == ["17"]
    assert calls == ["legacy"]
    assert primary.records == []
    assert result.outcome is SaveOutcome.SAVED
    assert result.record.legacy_id == "L17"
    assert result.record.primary_id is None
    assert "legacy petition id translation failed petition_id=17" in caplog.text
    assert "OSError: resolver unreachable" in caplog.text
    assert "reason=untranslated_petition_id" in caplog.text


def test_primary_writer_exception_is_treated_as_failed_write(caplog: pytest.LogCaptureFixture) -> None:
    coordinator, calls, _, _ = _coordinator(
        legacy_result=WriteResult.succeeded("L3"),
        primary_result=TimeoutError("insert timed out"),
    )

    with caplog.at_level(logging.WARNING, logger="petitions.services.coordinator"):
        result = _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1"))

    assert calls == ["legacy", "primary"]
    assert result.outcome is SaveOutcome.SAVED
    assert result.record.legacy_id == "L3"
    assert result.record.primary_id is None
    assert "store=primary" in caplog.text
    assert "reason=unexpected_error" in caplog.text
    assert "TimeoutError: insert timed out" in caplog.text


def test_primary_failure_is_logged_with_record_context(caplog: pytest.LogCaptureFixture) -> None:
    coordinator, _, _, _ = _coordinator(
        legacy_result=WriteResult.succeeded("L8"),
        primary_result=WriteResult.failed("database_error"),
    )

    with caplog.at_level(logging.WARNING, logger="petitions.services.coordinator"):
        _save(coordinator, SignatureRecord(petition_id="P1", user_token="U8", zip_code="62701"))

    failures = [record for record in caplog.records if "signature write failed" in record.getMessage()]
    assert len(failures) == 1
    message = failures[0].getMessage()
    assert "store=primary" in message
    assert "petition_id=P1" in message
    assert "user=U8" in message
    assert "reason=database_error" in message
    assert "record=SignatureRecord(" in message
    assert "legacy_id='L8'" in message


def test_native_read_mode_never_translates() -> None:
    petitions = FakePetitions({"P1"}, legacy_to_native={"P1": 5})
    coordinator, _, _, _ = _coordinator(petitions=petitions)

    _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1"))

    assert petitions.translated == []


def test_primary_failure_after_translation_returns_untranslated_record() -> None:
    petitions = FakePetitions({"legacy-7"}, legacy_to_native={"legacy-7": 700})
    coordinator, _, _, _ = _coordinator(
        petitions=petitions,
        primary_result=WriteResult.failed("unavailable"),
        config=WriteCoordinatorConfig(read_petitions_from_legacy=True),
    )

    result = _save(coordinator, SignatureRecord(petition_id="legacy-7", user_token="U1"))

    assert result.record.petition_id == "legacy-7"
    assert result.record.primary_id is None


def test_end_to_end_signature_save() -> None:
    locations = FakeLocations([LocationCandidate("Beverly Hills", "CA", "US")])
    coordinator, calls, _, _ = _coordinator(
        locations=locations,
        legacy_result=WriteResult.succeeded("L99"),
        primary_result=WriteResult.succeeded(7),
    )

    result = _save(coordinator, SignatureRecord(petition_id="P1", user_token="U1", zip_code="90210"))

    assert result.outcome is SaveOutcome.SAVED
    assert calls == ["legacy", "primary"]
    assert result.record == SignatureRecord(
        petition_id="P1",
        user_token="U1",
        city="Beverly Hills",
        state="CA",
        country="US",
        zip_code="90210",
        legacy_id="L99",
        primary_id=7,
    )

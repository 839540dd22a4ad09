from fastapi import APIRouter, Depends, HTTPException, Query, Request, status as http_status

from petitions.core.config import Settings, get_settings
from petitions.schemas.signatures import SignatureCreateRequest, SignatureOut, SignatureSaveOut
from petitions.services.coordinator import (
    InvalidSignatureError,
    SaveOutcome,
    WriteCoordinator,
    WriteCoordinatorConfig,
)
from petitions.services.geo import get_zip_lookup
from petitions.services.legacy_store import get_legacy_store
from petitions.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    get_repository,
)

router = APIRouter()


def get_coordinator(
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    legacy_store=Depends(get_legacy_store),
    locations=Depends(get_zip_lookup),
) -> WriteCoordinator:
    return WriteCoordinator(
        petitions=repository,
        dedupe=repository,
        legacy_store=legacy_store,
        primary_store=repository,
        locations=locations,
        config=WriteCoordinatorConfig(
            write_legacy_store=settings.write_legacy_store,
            write_primary_store=settings.write_primary_store,
            read_petitions_from_legacy=settings.read_petitions_from_legacy,
        ),
    )


@router.post("", response_model=SignatureSaveOut, status_code=http_status.HTTP_201_CREATED)
async def create_signature(
    payload: SignatureCreateRequest,
    request: Request,
    coordinator: WriteCoordinator = Depends(get_coordinator),
) -> SignatureSaveOut:
    client_host = request.client.host if request.client else None
    try:
        result = await coordinator.save(payload.to_record(ip_address=client_host))
    except InvalidSignatureError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    if result.outcome is SaveOutcome.PETITION_NOT_FOUND:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="petition not found")
    if result.outcome is SaveOutcome.DUPLICATE:
        raise HTTPException(status_code=http_status.HTTP_409_CONFLICT, detail="signature already exists")

    stores = []
    if result.record.legacy_id is not None:
        stores.append("legacy")
    if result.record.primary_id is not None:
        stores.append("primary")
    return SignatureSaveOut(outcome=result.outcome, signature=SignatureOut.from_record(result.record), stores=stores)


@router.get("", response_model=list[SignatureOut])
async def list_signatures(
    signature_ids: list[int] | None = Query(default=None, alias="id"),
    realtime: bool = Query(default=False),
    repository=Depends(get_repository),
) -> list[SignatureOut]:
    try:
        records = await repository.load_signatures(signature_ids or [], realtime=realtime)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [SignatureOut.from_record(record) for record in records]


@router.get("/{signature_id}", response_model=SignatureOut)
async def get_signature(
    signature_id: int,
    realtime: bool = Query(default=False),
    repository=Depends(get_repository),
) -> SignatureOut:
    try:
        record = await repository.load_signature(signature_id, realtime=realtime)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return SignatureOut.from_record(record)

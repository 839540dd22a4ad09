from fastapi import APIRouter, Depends

from petitions.core.config import Settings, get_settings

router = APIRouter()


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(settings: Settings = Depends(get_settings)) -> dict[str, object]:
    return {
        "status": "ok",
        "write_legacy_store": settings.write_legacy_store and bool(settings.legacy_store_url),
        "write_primary_store": settings.write_primary_store and bool(settings.database_url),
        "zip_lookup": bool(settings.zip_lookup_url),
    }

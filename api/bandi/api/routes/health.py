from fastapi import APIRouter, Depends

from bandi.api.errors import http_error
from bandi.core.config import Settings, get_settings
from bandi.services.repository import RepositoryError, get_gateway

router = APIRouter()


@router.get("/")
async def root(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    return {"status": "ok", "service": settings.app_name}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(gateway=Depends(get_gateway)) -> dict[str, str]:
    try:
        await gateway.fetchrow("select 1 as ready")
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return {"status": "ready"}

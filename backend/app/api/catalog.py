from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from backend.app.api.deps import get_container
from backend.app.core.container import AppContainer
from backend.app.models.studio import CatalogParseResponse
from backend.app.services.catalog_service import CatalogError

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.post("/parse", response_model=CatalogParseResponse)
async def parse_catalog(
    request: Request,
    container: AppContainer = Depends(get_container),
) -> CatalogParseResponse:
    payload = await request.body()
    if not payload:
        raise HTTPException(status_code=400, detail="Catalog file is empty.")

    try:
        text = payload.decode("utf-8-sig")
        result = container.catalog_service.parse_csv(text)
    except UnicodeDecodeError as err:
        raise HTTPException(status_code=400, detail="Catalog file must be UTF-8 encoded CSV.") from err
    except CatalogError as err:
        raise HTTPException(status_code=400, detail=str(err)) from err

    return CatalogParseResponse(
        manufacturer=result.manufacturer,
        device=result.device,
        cc_map=result.cc_map,
        nrpn_map=result.nrpn_map,
    )

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from backend.app.api.deps import get_container
from backend.app.core.container import AppContainer
from backend.app.models.studio import (
    AssignSlotsUpdateRequest,
    AutomationLanesUpdateRequest,
    ConnectionCreateRequest,
    ConnectionPreflightResponse,
    CycleReport,
    DefinitionFileItem,
    DrumLanesUpdateRequest,
    InstrumentCreateRequest,
    InstrumentUpdateRequest,
    MappingsUpdateRequest,
    PortsUpdateRequest,
    PresetsUpdateRequest,
    RoutingResponse,
    StudioCreateRequest,
    StudioFile,
    StudioListItem,
    StudioResponse,
    StudioUpdateRequest,
)
from backend.app.services.studio_file_service import StudioFileError

router = APIRouter(prefix="/studios", tags=["studios"])


@router.post("", response_model=StudioResponse, status_code=201)
async def create_studio(
    request: StudioCreateRequest,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    return container.studio_service.create_studio(request)


@router.get("", response_model=list[StudioListItem])
async def list_studios(container: AppContainer = Depends(get_container)) -> list[StudioListItem]:
    return container.studio_service.list_studios()


@router.get("/{studio_id}", response_model=StudioResponse)
async def get_studio(studio_id: str, container: AppContainer = Depends(get_container)) -> StudioResponse:
    return container.studio_service.get_studio(studio_id)


@router.put("/{studio_id}", response_model=StudioResponse)
async def update_studio(
    studio_id: str,
    request: StudioUpdateRequest,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    return container.studio_service.update_studio(studio_id, request)


@router.delete("/{studio_id}", status_code=204)
async def delete_studio(studio_id: str, container: AppContainer = Depends(get_container)) -> Response:
    container.studio_service.delete_studio(studio_id)
    return Response(status_code=204)


@router.post("/{studio_id}/clear", response_model=StudioResponse)
async def clear_studio(studio_id: str, container: AppContainer = Depends(get_container)) -> StudioResponse:
    return container.studio_service.clear_studio(studio_id)


@router.put("/{studio_id}/presets", response_model=StudioResponse)
async def set_presets(
    studio_id: str,
    request: PresetsUpdateRequest,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    return container.studio_service.set_presets(studio_id, request)


@router.post("/{studio_id}/instruments", response_model=StudioResponse, status_code=201)
async def add_instrument(
    studio_id: str,
    request: InstrumentCreateRequest,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    return container.studio_service.add_instrument(studio_id, request)


@router.patch("/{studio_id}/instruments/{instrument_id}", response_model=StudioResponse)
async def update_instrument(
    studio_id: str,
    instrument_id: str,
    request: InstrumentUpdateRequest,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    return container.studio_service.update_instrument(studio_id, instrument_id, request)


@router.delete("/{studio_id}/instruments/{instrument_id}", response_model=StudioResponse)
async def remove_instrument(
    studio_id: str,
    instrument_id: str,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    return container.studio_service.remove_instrument(studio_id, instrument_id)


@router.put("/{studio_id}/instruments/{instrument_id}/ports", response_model=StudioResponse)
async def update_ports(
    studio_id: str,
    instrument_id: str,
    request: PortsUpdateRequest,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    return container.studio_service.update_ports(studio_id, instrument_id, request)


@router.put("/{studio_id}/instruments/{instrument_id}/mappings", response_model=StudioResponse)
async def upload_mappings(
    studio_id: str,
    instrument_id: str,
    request: MappingsUpdateRequest,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    return container.studio_service.upload_mappings(studio_id, instrument_id, request)


@router.delete("/{studio_id}/instruments/{instrument_id}/mappings", response_model=StudioResponse)
async def clear_mappings(
    studio_id: str,
    instrument_id: str,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    return container.studio_service.clear_mappings(studio_id, instrument_id)


@router.put("/{studio_id}/instruments/{instrument_id}/assign", response_model=StudioResponse)
async def set_assign_slots(
    studio_id: str,
    instrument_id: str,
    request: AssignSlotsUpdateRequest,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    return container.studio_service.set_assign_slots(studio_id, instrument_id, request)


@router.put("/{studio_id}/instruments/{instrument_id}/automation", response_model=StudioResponse)
async def set_automation_lanes(
    studio_id: str,
    instrument_id: str,
    request: AutomationLanesUpdateRequest,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    return container.studio_service.set_automation_lanes(studio_id, instrument_id, request)


@router.put("/{studio_id}/instruments/{instrument_id}/drum-lanes", response_model=StudioResponse)
async def set_drum_lanes(
    studio_id: str,
    instrument_id: str,
    request: DrumLanesUpdateRequest,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    return container.studio_service.set_drum_lanes(studio_id, instrument_id, request)


@router.post("/{studio_id}/connections", response_model=StudioResponse, status_code=201)
async def add_connection(
    studio_id: str,
    request: ConnectionCreateRequest,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    return container.studio_service.add_connection(studio_id, request)


@router.get("/{studio_id}/connections/preflight", response_model=ConnectionPreflightResponse)
async def preflight_connection(
    studio_id: str,
    source: str,
    target: str,
    container: AppContainer = Depends(get_container),
) -> ConnectionPreflightResponse:
    return container.studio_service.preflight_connection(studio_id, source, target)


@router.delete("/{studio_id}/connections/{connection_id}", response_model=StudioResponse)
async def remove_connection(
    studio_id: str,
    connection_id: str,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    return container.studio_service.remove_connection(studio_id, connection_id)


@router.get("/{studio_id}/loops", response_model=CycleReport)
async def detect_loops(studio_id: str, container: AppContainer = Depends(get_container)) -> CycleReport:
    return container.studio_service.detect_loops(studio_id)


@router.get("/{studio_id}/routing", response_model=RoutingResponse)
async def get_routing(studio_id: str, container: AppContainer = Depends(get_container)) -> RoutingResponse:
    return container.studio_service.get_routing(studio_id)


@router.get("/{studio_id}/definitions", response_model=list[DefinitionFileItem])
async def get_definitions(
    studio_id: str,
    container: AppContainer = Depends(get_container),
) -> list[DefinitionFileItem]:
    return container.studio_service.get_definitions(studio_id)


@router.get("/{studio_id}/definitions/archive")
async def export_definitions_archive(
    studio_id: str,
    container: AppContainer = Depends(get_container),
) -> Response:
    content, count = container.studio_service.build_definitions_archive(studio_id)
    return Response(
        content=content,
        media_type="application/zip",
        headers={
            "Content-Disposition": 'attachment; filename="hapax-definitions.zip"',
            "X-StudioGraph-Definition-Count": str(count),
        },
    )


@router.get("/{studio_id}/export", response_model=StudioFile)
async def export_studio(studio_id: str, container: AppContainer = Depends(get_container)) -> StudioFile:
    return container.studio_service.export_studio(studio_id)


@router.post("/{studio_id}/import", response_model=StudioResponse)
async def import_studio(
    studio_id: str,
    request: Request,
    container: AppContainer = Depends(get_container),
) -> StudioResponse:
    payload = await request.body()
    if not payload:
        raise HTTPException(status_code=400, detail="Import file is empty.")

    try:
        return container.studio_service.import_studio(studio_id, payload)
    except StudioFileError as err:
        raise HTTPException(status_code=400, detail=str(err)) from err

from __future__ import annotations

import logging
import zipfile
from datetime import datetime, timezone
from io import BytesIO
from uuid import uuid4

from fastapi import HTTPException

from backend.app.models.graph import (
    DEFAULT_DRUM_LANES,
    MAX_ASSIGN_SLOTS,
    MAX_AUTOMATION_LANES,
    MAX_DRUM_LANES,
    Connection,
    Instrument,
    InstrumentPreset,
    InstrumentType,
    StudioGraph,
    connection_id,
    create_hub_instrument,
    find_hub,
)
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
    ResolvedConnectionItem,
    RoutingResponse,
    StudioCreateRequest,
    StudioDocument,
    StudioFile,
    StudioListItem,
    StudioResponse,
    StudioUpdateRequest,
)
from backend.app.services.definition_service import DefinitionService
from backend.app.services.loop_service import LoopService
from backend.app.services.routing_service import RoutingService
from backend.app.services.studio_file_service import StudioFileService
from backend.app.storage.repositories.studio_repository import StudioRepository

logger = logging.getLogger(__name__)


class StudioService:
    def __init__(
        self,
        repository: StudioRepository,
        loop_service: LoopService,
        routing_service: RoutingService,
        definition_service: DefinitionService,
        studio_file_service: StudioFileService,
    ) -> None:
        self._repository = repository
        self._loop_service = loop_service
        self._routing_service = routing_service
        self._definition_service = definition_service
        self._studio_file_service = studio_file_service

    def create_studio(self, request: StudioCreateRequest) -> StudioResponse:
        now = datetime.now(timezone.utc)
        document = StudioDocument(
            id=str(uuid4()),
            name=request.name,
            description=request.description,
            graph=StudioGraph(instruments=[create_hub_instrument()]),
            created_at=now,
            updated_at=now,
        )
        self._repository.create(document)
        return self._to_response(document)

    def get_studio(self, studio_id: str) -> StudioResponse:
        return self._to_response(self.get_studio_document(studio_id))

    def get_studio_document(self, studio_id: str) -> StudioDocument:
        document = self._repository.get(studio_id)
        if not document:
            raise HTTPException(status_code=404, detail=f"Studio '{studio_id}' not found")
        return document

    def list_studios(self) -> list[StudioListItem]:
        return [
            StudioListItem(
                id=document.id,
                name=document.name,
                description=document.description,
                instrument_count=len(document.graph.instruments),
                updated_at=document.updated_at,
            )
            for document in self._repository.list()
        ]

    def update_studio(self, studio_id: str, request: StudioUpdateRequest) -> StudioResponse:
        document = self.get_studio_document(studio_id)
        if request.name is not None:
            document.name = request.name
        if request.description is not None:
            document.description = request.description
        return self._save(document)

    def delete_studio(self, studio_id: str) -> None:
        deleted = self._repository.delete(studio_id)
        if not deleted:
            raise HTTPException(status_code=404, detail=f"Studio '{studio_id}' not found")

    def add_instrument(self, studio_id: str, request: InstrumentCreateRequest) -> StudioResponse:
        document = self.get_studio_document(studio_id)
        graph = document.graph

        preset = request.preset
        if preset is None and request.preset_id is not None:
            preset = next((item for item in document.presets if item.id == request.preset_id), None)
            if preset is None:
                raise HTTPException(status_code=404, detail=f"Preset '{request.preset_id}' not found")

        if preset is None and not request.name:
            raise HTTPException(status_code=400, detail="Instrument requires a preset or a name")
        if preset is not None and preset.is_hub and graph.hub() is not None:
            raise HTTPException(status_code=400, detail="Studio already contains a hub instrument")

        try:
            if preset is not None:
                instrument = self._instrument_from_preset(graph.next_instrument_id(), preset)
            else:
                instrument = Instrument(
                    id=graph.next_instrument_id(),
                    name=request.name,
                    manufacturer=request.manufacturer,
                    type=InstrumentType.POLY,
                    inputs=request.inputs,
                    outputs=request.outputs,
                    cc_map=request.cc_map,
                    nrpn_map=request.nrpn_map,
                )
        except ValueError as err:
            raise HTTPException(status_code=400, detail=str(err)) from err

        instrument.position = request.position
        graph.instruments.append(instrument)
        return self._save(document)

    def remove_instrument(self, studio_id: str, instrument_id: str) -> StudioResponse:
        document = self.get_studio_document(studio_id)
        instrument = self._get_instrument(document, instrument_id)
        if not instrument.is_removable:
            raise HTTPException(status_code=400, detail=f"Instrument '{instrument_id}' cannot be removed")

        graph = document.graph
        graph.instruments = [item for item in graph.instruments if item.id != instrument_id]
        graph.connections = [
            connection
            for connection in graph.connections
            if connection.source != instrument_id and connection.target != instrument_id
        ]
        return self._save(document)

    def update_instrument(
        self,
        studio_id: str,
        instrument_id: str,
        request: InstrumentUpdateRequest,
    ) -> StudioResponse:
        document = self.get_studio_document(studio_id)
        instrument = self._get_instrument(document, instrument_id)

        for field_name in request.model_fields_set:
            value = getattr(request, field_name)
            if value is None and field_name != "icon_id":
                continue
            setattr(instrument, field_name, value)

        if instrument.type == InstrumentType.DRUM and not instrument.drum_lanes:
            instrument.drum_lanes = [lane.model_copy() for lane in DEFAULT_DRUM_LANES]

        return self._save(document)

    def update_ports(self, studio_id: str, instrument_id: str, request: PortsUpdateRequest) -> StudioResponse:
        document = self.get_studio_document(studio_id)
        instrument = self._get_instrument(document, instrument_id)

        kept_inputs = {port.id for port in request.inputs}
        kept_outputs = {port.id for port in request.outputs}
        removed_inputs = {port.id for port in instrument.inputs} - kept_inputs
        removed_outputs = {port.id for port in instrument.outputs} - kept_outputs

        try:
            updated = Instrument.model_validate(
                {**instrument.model_dump(), "inputs": request.inputs, "outputs": request.outputs}
            )
        except ValueError as err:
            raise HTTPException(status_code=400, detail=str(err)) from err

        graph = document.graph
        graph.instruments = [updated if item.id == instrument_id else item for item in graph.instruments]
        if removed_inputs or removed_outputs:
            graph.connections = [
                connection
                for connection in graph.connections
                if not (connection.source == instrument_id and connection.source_handle in removed_outputs)
                and not (connection.target == instrument_id and connection.target_handle in removed_inputs)
            ]
        return self._save(document)

    def add_connection(self, studio_id: str, request: ConnectionCreateRequest) -> StudioResponse:
        document = self.get_studio_document(studio_id)
        source = self._get_instrument(document, request.source)
        target = self._get_instrument(document, request.target)

        source_port = source.find_output(request.source_handle)
        if source_port is None:
            raise HTTPException(
                status_code=400,
                detail=f"Unknown output port '{request.source_handle}' on instrument '{source.id}'",
            )
        target_port = target.find_input(request.target_handle)
        if target_port is None:
            raise HTTPException(
                status_code=400,
                detail=f"Unknown input port '{request.target_handle}' on instrument '{target.id}'",
            )
        if source_port.type != target_port.type:
            raise HTTPException(
                status_code=400,
                detail=(
                    "Port type mismatch: "
                    f"{source.id}.{source_port.id} ({source_port.type}) -> "
                    f"{target.id}.{target_port.id} ({target_port.type})"
                ),
            )
        if request.port_type is not None and request.port_type != source_port.type:
            raise HTTPException(
                status_code=400,
                detail=f"Connection type '{request.port_type}' does not match port type '{source_port.type}'",
            )

        graph = document.graph
        new_id = connection_id(source.id, source_port.id, target.id, target_port.id)
        if any(connection.id == new_id for connection in graph.connections):
            return self._to_response(document)

        graph.connections.append(
            Connection(
                id=new_id,
                source=source.id,
                source_handle=source_port.id,
                target=target.id,
                target_handle=target_port.id,
                port_type=source_port.type,
            )
        )
        return self._save(document)

    def remove_connection(self, studio_id: str, connection_id_: str) -> StudioResponse:
        document = self.get_studio_document(studio_id)
        graph = document.graph
        remaining = [connection for connection in graph.connections if connection.id != connection_id_]
        if len(remaining) == len(graph.connections):
            raise HTTPException(status_code=404, detail=f"Connection '{connection_id_}' not found")
        graph.connections = remaining
        return self._save(document)

    def preflight_connection(self, studio_id: str, source: str, target: str) -> ConnectionPreflightResponse:
        document = self.get_studio_document(studio_id)
        return ConnectionPreflightResponse(
            source=source,
            target=target,
            would_create_cycle=self._loop_service.would_create_cycle(document.graph.connections, source, target),
        )

    def upload_mappings(self, studio_id: str, instrument_id: str, request: MappingsUpdateRequest) -> StudioResponse:
        document = self.get_studio_document(studio_id)
        instrument = self._get_instrument(document, instrument_id)
        instrument.cc_map = request.cc_map
        instrument.nrpn_map = request.nrpn_map
        return self._save(document)

    def clear_mappings(self, studio_id: str, instrument_id: str) -> StudioResponse:
        return self.upload_mappings(studio_id, instrument_id, MappingsUpdateRequest())

    def set_assign_slots(self, studio_id: str, instrument_id: str, request: AssignSlotsUpdateRequest) -> StudioResponse:
        if len(request.assign_ccs) > MAX_ASSIGN_SLOTS:
            raise HTTPException(status_code=400, detail=f"Maximum {MAX_ASSIGN_SLOTS} assign slots allowed")
        document = self.get_studio_document(studio_id)
        instrument = self._get_instrument(document, instrument_id)
        instrument.assign_ccs = [
            assign.model_copy(update={"slot": slot}) for slot, assign in enumerate(request.assign_ccs, start=1)
        ]
        return self._save(document)

    def set_automation_lanes(
        self,
        studio_id: str,
        instrument_id: str,
        request: AutomationLanesUpdateRequest,
    ) -> StudioResponse:
        if len(request.automation_lanes) > MAX_AUTOMATION_LANES:
            raise HTTPException(status_code=400, detail=f"Maximum {MAX_AUTOMATION_LANES} automation lanes allowed")
        document = self.get_studio_document(studio_id)
        instrument = self._get_instrument(document, instrument_id)
        instrument.automation_lanes = [
            lane.model_copy(update={"slot": slot}) for slot, lane in enumerate(request.automation_lanes, start=1)
        ]
        return self._save(document)

    def set_drum_lanes(self, studio_id: str, instrument_id: str, request: DrumLanesUpdateRequest) -> StudioResponse:
        if len(request.drum_lanes) > MAX_DRUM_LANES:
            raise HTTPException(status_code=400, detail=f"Maximum {MAX_DRUM_LANES} drum lanes allowed")
        lanes = [lane.lane for lane in request.drum_lanes]
        if len(lanes) != len(set(lanes)):
            raise HTTPException(status_code=400, detail="Drum lane rows must be unique")
        if any(lane > MAX_DRUM_LANES for lane in lanes):
            raise HTTPException(status_code=400, detail=f"Drum lane rows must be between 1 and {MAX_DRUM_LANES}")
        document = self.get_studio_document(studio_id)
        instrument = self._get_instrument(document, instrument_id)
        instrument.drum_lanes = request.drum_lanes
        return self._save(document)

    def set_presets(self, studio_id: str, request: PresetsUpdateRequest) -> StudioResponse:
        document = self.get_studio_document(studio_id)
        document.presets = request.presets
        return self._save(document)

    def clear_studio(self, studio_id: str) -> StudioResponse:
        document = self.get_studio_document(studio_id)
        document.graph = StudioGraph(instruments=[create_hub_instrument()])
        document.presets = []
        return self._save(document)

    def import_studio(self, studio_id: str, payload: str | bytes | dict) -> StudioResponse:
        document = self.get_studio_document(studio_id)
        studio_file = self._studio_file_service.parse(payload)

        instruments = studio_file.instruments
        if find_hub(instruments) is None:
            # Files saved without a hub still load; routing needs one.
            instruments = [create_hub_instrument(), *instruments]
        try:
            graph = StudioGraph(instruments=instruments, connections=studio_file.connections)
        except ValueError as err:
            raise HTTPException(status_code=400, detail=str(err)) from err
        graph.sync_instrument_sequence()
        document.graph = graph
        if studio_file.presets:
            document.presets = studio_file.presets

        logger.info(
            "Imported %d instrument(s) into studio '%s'",
            len(graph.instruments),
            studio_id,
        )
        return self._save(document)

    def export_studio(self, studio_id: str) -> StudioFile:
        document = self.get_studio_document(studio_id)
        logger.info("Exporting studio '%s'", studio_id)
        return self._studio_file_service.serialize(document.graph, document.presets)

    def detect_loops(self, studio_id: str) -> CycleReport:
        document = self.get_studio_document(studio_id)
        return self._loop_service.detect(document.graph.instruments, document.graph.connections)

    def get_routing(self, studio_id: str) -> RoutingResponse:
        document = self.get_studio_document(studio_id)
        instruments = document.graph.instruments
        connections = document.graph.connections
        reachable = self._routing_service.trace(instruments, connections)
        resolved = self._routing_service.resolve(instruments, connections, trace=reachable)
        return RoutingResponse(
            reachable=reachable,
            resolved=[
                ResolvedConnectionItem(
                    instrument_id=item.instrument.id,
                    hub_port_code=item.hub_port_code,
                    is_analog=item.is_analog,
                )
                for item in resolved
            ],
        )

    def get_definitions(self, studio_id: str) -> list[DefinitionFileItem]:
        document = self.get_studio_document(studio_id)
        definitions = self._definition_service.render_all(document.graph.instruments, document.graph.connections)
        return [
            DefinitionFileItem(
                instrument_id=definition.instrument_id,
                filename=definition.filename,
                content=definition.content,
            )
            for definition in definitions
        ]

    def build_definitions_archive(self, studio_id: str) -> tuple[bytes, int]:
        definitions = self.get_definitions(studio_id)

        archive_buffer = BytesIO()
        written: set[str] = set()
        with zipfile.ZipFile(archive_buffer, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
            for definition in definitions:
                # Same instrument name on two hub ports without a suffix would collide.
                if definition.filename in written:
                    logger.warning("Skipping duplicate definition file name '%s'", definition.filename)
                    continue
                written.add(definition.filename)
                archive.writestr(definition.filename, definition.content)

        logger.info("Exported %d definition file(s) for studio '%s'", len(written), studio_id)
        return archive_buffer.getvalue(), len(written)

    def _save(self, document: StudioDocument) -> StudioResponse:
        document.updated_at = datetime.now(timezone.utc)
        persisted = self._repository.update(document.id, document)
        if not persisted:
            raise HTTPException(status_code=404, detail=f"Studio '{document.id}' not found")
        return self._to_response(persisted)

    def _to_response(self, document: StudioDocument) -> StudioResponse:
        report = self._loop_service.detect(document.graph.instruments, document.graph.connections)
        return StudioResponse(
            id=document.id,
            name=document.name,
            description=document.description,
            graph=document.graph,
            presets=document.presets,
            has_loop=report.has_cycle,
            loop_connections=report.cycle_connections,
            created_at=document.created_at,
            updated_at=document.updated_at,
        )

    @staticmethod
    def _get_instrument(document: StudioDocument, instrument_id: str) -> Instrument:
        instrument = document.graph.get_instrument(instrument_id)
        if instrument is None:
            raise HTTPException(status_code=404, detail=f"Instrument '{instrument_id}' not found")
        return instrument

    @staticmethod
    def _instrument_from_preset(instrument_id: str, preset: InstrumentPreset) -> Instrument:
        return Instrument(
            id=instrument_id,
            name=preset.name,
            manufacturer=preset.manufacturer,
            channel=1,
            type=preset.type,
            inputs=[port.model_copy() for port in preset.inputs],
            outputs=[port.model_copy() for port in preset.outputs],
            cc_map=[mapping.model_copy() for mapping in preset.cc_map],
            nrpn_map=[mapping.model_copy() for mapping in preset.nrpn_map],
            drum_lanes=(
                [lane.model_copy() for lane in preset.default_drum_lanes]
                if preset.default_drum_lanes is not None
                else None
            ),
            is_hub=preset.is_hub,
            is_removable=preset.is_removable,
            icon_id=preset.icon_id,
            preset_id=preset.id,
        )

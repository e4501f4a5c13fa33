from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import BaseModel, Field

from backend.app.models.graph import (
    AssignCC,
    AutomationLane,
    CCMapping,
    Connection,
    DrumLane,
    Instrument,
    InstrumentPreset,
    InstrumentType,
    NRPNMapping,
    Port,
    PortType,
    Position,
    StudioGraph,
)

STUDIO_FILE_VERSION = 1


class CycleReport(BaseModel):
    has_cycle: bool = False
    cycle_connections: list[str] = Field(default_factory=list)


class StudioBase(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    description: str = Field(default="", max_length=2_048)


class StudioCreateRequest(StudioBase):
    pass


class StudioUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = Field(default=None, max_length=2_048)


class StudioDocument(StudioBase):
    id: str = Field(default_factory=lambda: str(uuid4()))
    graph: StudioGraph = Field(default_factory=StudioGraph)
    presets: list[InstrumentPreset] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class StudioResponse(StudioBase):
    id: str
    graph: StudioGraph
    presets: list[InstrumentPreset]
    has_loop: bool
    loop_connections: list[str]
    created_at: datetime
    updated_at: datetime


class StudioListItem(BaseModel):
    id: str
    name: str
    description: str
    instrument_count: int
    updated_at: datetime


class InstrumentCreateRequest(BaseModel):
    preset: InstrumentPreset | None = None
    preset_id: str | None = None
    name: str | None = Field(default=None, min_length=1, max_length=128)
    manufacturer: str = ""
    inputs: list[Port] = Field(default_factory=list)
    outputs: list[Port] = Field(default_factory=list)
    cc_map: list[CCMapping] = Field(default_factory=list)
    nrpn_map: list[NRPNMapping] = Field(default_factory=list)
    position: Position = Field(default_factory=Position)


class InstrumentUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    manufacturer: str | None = None
    channel: int | None = Field(default=None, ge=1, le=16)
    type: InstrumentType | None = None
    local_off: bool | None = None
    show_cv_ports: bool | None = None
    icon_id: str | None = None
    position: Position | None = None


class PortsUpdateRequest(BaseModel):
    inputs: list[Port]
    outputs: list[Port]


class ConnectionCreateRequest(BaseModel):
    source: str = Field(min_length=1)
    source_handle: str = Field(min_length=1)
    target: str = Field(min_length=1)
    target_handle: str = Field(min_length=1)
    port_type: PortType | None = None


class MappingsUpdateRequest(BaseModel):
    cc_map: list[CCMapping] = Field(default_factory=list)
    nrpn_map: list[NRPNMapping] = Field(default_factory=list)


class AssignSlotsUpdateRequest(BaseModel):
    assign_ccs: list[AssignCC]


class AutomationLanesUpdateRequest(BaseModel):
    automation_lanes: list[AutomationLane]


class DrumLanesUpdateRequest(BaseModel):
    drum_lanes: list[DrumLane]


class PresetsUpdateRequest(BaseModel):
    presets: list[InstrumentPreset]


class ConnectionPreflightResponse(BaseModel):
    source: str
    target: str
    would_create_cycle: bool


class ResolvedConnectionItem(BaseModel):
    instrument_id: str
    hub_port_code: str
    is_analog: bool


class RoutingResponse(BaseModel):
    reachable: dict[str, list[str]]
    resolved: list[ResolvedConnectionItem]


class DefinitionFileItem(BaseModel):
    instrument_id: str
    filename: str
    content: str


class CatalogParseResponse(BaseModel):
    manufacturer: str
    device: str
    cc_map: list[CCMapping]
    nrpn_map: list[NRPNMapping]


class StudioFile(BaseModel):
    """Versioned save-file envelope shared by studio export and import."""

    version: int = STUDIO_FILE_VERSION
    exported_at: str = Field(default="", alias="exportedAt")
    instruments: list[Instrument] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    presets: list[InstrumentPreset] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

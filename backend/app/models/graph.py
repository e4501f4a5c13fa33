from __future__ import annotations

import re
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

HUB_INSTRUMENT_ID = "hapax-main"

MAX_ASSIGN_SLOTS = 8
MAX_AUTOMATION_LANES = 64
MAX_DRUM_LANES = 8

DRUM_CHANNEL_CODE_PATTERN = re.compile(r"^(?:[1-9]|1[0-6]|G[1-4]|CV[1-4]|CVG[1-4])$")
INSTRUMENT_ID_PATTERN = re.compile(r"^node-(\d+)$")


class PortType(StrEnum):
    MIDI = "midi"
    USB = "usb"
    AUDIO = "audio"
    CV = "cv"

    @property
    def is_transport(self) -> bool:
        return self in (PortType.MIDI, PortType.USB)


class InstrumentType(StrEnum):
    POLY = "POLY"
    DRUM = "DRUM"
    MPE = "MPE"


class AutomationType(StrEnum):
    CC = "CC"
    PB = "PB"
    AT = "AT"
    CV = "CV"
    NRPN = "NRPN"


class Port(BaseModel):
    id: str = Field(min_length=1)
    label: str = ""
    type: PortType


class Position(BaseModel):
    x: float = 0.0
    y: float = 0.0


class CCMapping(BaseModel):
    cc_number: int = Field(ge=0, le=127)
    param_name: str = Field(min_length=1)
    full_param_name: str | None = None
    section: str | None = None
    default_value: int | None = None


class NRPNMapping(BaseModel):
    msb: int = Field(ge=0, le=127)
    lsb: int = Field(ge=0, le=127)
    param_name: str = Field(min_length=1)
    section: str | None = None
    default_value: int | None = None


class AssignCC(BaseModel):
    slot: int = Field(ge=1)
    cc_number: int = Field(ge=0, le=127)
    param_name: str = Field(min_length=1)
    default_value: int = Field(default=64, ge=0, le=127)


class AutomationLane(BaseModel):
    slot: int = Field(ge=1)
    type: AutomationType
    cc_number: int | None = Field(default=None, ge=0, le=127)
    cv_number: int | None = Field(default=None, ge=1, le=4)
    nrpn_msb: int | None = Field(default=None, ge=0, le=127)
    nrpn_lsb: int | None = Field(default=None, ge=0, le=127)
    nrpn_depth: Literal[7, 14] | None = None
    param_name: str | None = None


class DrumLane(BaseModel):
    lane: int = Field(ge=1)
    trig: int | None = Field(default=None, ge=0, le=127)
    chan: str | None = None
    note: int | None = Field(default=None, ge=0, le=127)
    name: str = ""

    @field_validator("chan", mode="before")
    @classmethod
    def normalize_chan(cls, value: object) -> object:
        if value is None:
            return None
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            value = value.strip().upper()
            if not value:
                return None
            if not DRUM_CHANNEL_CODE_PATTERN.fullmatch(value):
                raise ValueError(
                    f"Drum lane channel '{value}' must be 1-16, G1-G4, CV1-CV4 or CVG1-CVG4."
                )
        return value


class Instrument(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=128)
    manufacturer: str = ""
    channel: int = Field(default=1, ge=1, le=16)
    type: InstrumentType = InstrumentType.POLY
    inputs: list[Port] = Field(default_factory=list)
    outputs: list[Port] = Field(default_factory=list)
    cc_map: list[CCMapping] = Field(default_factory=list)
    nrpn_map: list[NRPNMapping] = Field(default_factory=list)
    assign_ccs: list[AssignCC] = Field(default_factory=list)
    automation_lanes: list[AutomationLane] = Field(default_factory=list)
    drum_lanes: list[DrumLane] | None = None
    is_hub: bool = False
    is_removable: bool = True
    local_off: bool = False
    show_cv_ports: bool = False
    icon_id: str | None = None
    preset_id: str | None = None
    position: Position = Field(default_factory=Position)

    @model_validator(mode="after")
    def validate_unique_port_ids(self) -> "Instrument":
        for direction, ports in (("input", self.inputs), ("output", self.outputs)):
            ids = [port.id for port in ports]
            if len(ids) != len(set(ids)):
                raise ValueError(f"Instrument '{self.id}' has duplicate {direction} port IDs")
        return self

    def find_input(self, port_id: str) -> Port | None:
        return next((port for port in self.inputs if port.id == port_id), None)

    def find_output(self, port_id: str) -> Port | None:
        return next((port for port in self.outputs if port.id == port_id), None)


def connection_id(source: str, source_handle: str, target: str, target_handle: str) -> str:
    return f"edge-{source}-{source_handle}-{target}-{target_handle}"


class Connection(BaseModel):
    id: str = ""
    source: str = Field(min_length=1)
    source_handle: str = ""
    target: str = Field(min_length=1)
    target_handle: str = ""
    port_type: PortType = PortType.MIDI

    @model_validator(mode="after")
    def derive_id(self) -> "Connection":
        if not self.id:
            self.id = connection_id(self.source, self.source_handle, self.target, self.target_handle)
        return self

    @property
    def is_transport(self) -> bool:
        return self.port_type.is_transport


class StudioGraph(BaseModel):
    instruments: list[Instrument] = Field(default_factory=list)
    connections: list[Connection] = Field(default_factory=list)
    instrument_sequence: int = Field(default=0, ge=0)

    @field_validator("instruments")
    @classmethod
    def validate_instrument_count(cls, instruments: list[Instrument]) -> list[Instrument]:
        if len(instruments) > 500:
            raise ValueError("Studio exceeds maximum instrument count (500)")
        return instruments

    @model_validator(mode="after")
    def validate_instruments(self) -> "StudioGraph":
        ids = [instrument.id for instrument in self.instruments]
        if len(ids) != len(set(ids)):
            raise ValueError("Instrument IDs must be unique")
        if sum(1 for instrument in self.instruments if instrument.is_hub) > 1:
            raise ValueError("Studio must not contain more than one hub instrument")
        return self

    def hub(self) -> Instrument | None:
        return find_hub(self.instruments)

    def get_instrument(self, instrument_id: str) -> Instrument | None:
        return next((item for item in self.instruments if item.id == instrument_id), None)

    def next_instrument_id(self) -> str:
        self.instrument_sequence += 1
        return f"node-{self.instrument_sequence}"

    def sync_instrument_sequence(self) -> None:
        highest = 0
        for instrument in self.instruments:
            match = INSTRUMENT_ID_PATTERN.fullmatch(instrument.id)
            if match:
                highest = max(highest, int(match.group(1)))
        self.instrument_sequence = highest


class InstrumentPreset(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=128)
    manufacturer: str = ""
    type: InstrumentType = InstrumentType.POLY
    inputs: list[Port] = Field(default_factory=list)
    outputs: list[Port] = Field(default_factory=list)
    is_hub: bool = False
    is_removable: bool = True
    default_drum_lanes: list[DrumLane] | None = None
    icon_id: str | None = None
    cc_map: list[CCMapping] = Field(default_factory=list)
    nrpn_map: list[NRPNMapping] = Field(default_factory=list)


def find_hub(instruments: list[Instrument]) -> Instrument | None:
    return next((instrument for instrument in instruments if instrument.is_hub), None)


DEFAULT_DRUM_LANES: tuple[DrumLane, ...] = tuple(
    DrumLane(lane=index, note=index - 1, name=name)
    for index, name in enumerate(
        ["KICK", "RIM", "SNARE", "CLSD HH", "OPEN HH", "CLAP", "PERC 1", "PERC 2"],
        start=1,
    )
)

HUB_PRESET = InstrumentPreset(
    id="hapax",
    name="Hapax",
    manufacturer="Squarp",
    type=InstrumentType.POLY,
    is_hub=True,
    is_removable=False,
    inputs=[
        Port(id="midi-in-1", label="MIDI In 1", type=PortType.MIDI),
        Port(id="midi-in-2", label="MIDI In 2", type=PortType.MIDI),
        Port(id="cv-in-1", label="CV In 1", type=PortType.CV),
        Port(id="cv-in-2", label="CV In 2", type=PortType.CV),
    ],
    outputs=[
        Port(id="midi-a", label="MIDI A", type=PortType.MIDI),
        Port(id="midi-b", label="MIDI B", type=PortType.MIDI),
        Port(id="midi-c", label="MIDI C", type=PortType.MIDI),
        Port(id="midi-d", label="MIDI D", type=PortType.MIDI),
        Port(id="usb-host", label="USB Host", type=PortType.USB),
        Port(id="usb-device", label="USB Device", type=PortType.USB),
        *[Port(id=f"cv-{n}", label=f"CV {n}", type=PortType.CV) for n in range(1, 5)],
        *[Port(id=f"gate-{n}", label=f"Gate {n}", type=PortType.CV) for n in range(1, 5)],
    ],
)


def create_hub_instrument() -> Instrument:
    return Instrument(
        id=HUB_INSTRUMENT_ID,
        name=HUB_PRESET.name,
        manufacturer=HUB_PRESET.manufacturer,
        channel=1,
        type=HUB_PRESET.type,
        inputs=[port.model_copy() for port in HUB_PRESET.inputs],
        outputs=[port.model_copy() for port in HUB_PRESET.outputs],
        is_hub=True,
        is_removable=False,
        position=Position(x=400, y=100),
    )

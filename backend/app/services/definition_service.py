from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Sequence, TypeVar

from backend.app.models.graph import (
    AutomationLane,
    AutomationType,
    CCMapping,
    Connection,
    Instrument,
    InstrumentType,
    NRPNMapping,
)
from backend.app.services.routing_service import RoutingService

logger = logging.getLogger(__name__)

DEFINITION_VERSION = 1
TRACK_NAME_LENGTH = 12
DEFAULT_SECTION = "General"
NULL_VALUE = "NULL"
ATTRIBUTION_LINE = "Generated by StudioGraph"

MappingT = TypeVar("MappingT", CCMapping, NRPNMapping)


@dataclass(slots=True)
class DefinitionFile:
    instrument_id: str
    filename: str
    content: str


def group_by_section(mappings: Sequence[MappingT]) -> dict[str, list[MappingT]]:
    grouped: dict[str, list[MappingT]] = {}
    for mapping in mappings:
        grouped.setdefault(mapping.section or DEFAULT_SECTION, []).append(mapping)
    return grouped


def derive_track_name(name: str, hub_port_code: str, multi_connection: bool) -> str:
    base = re.sub(r"\s+", "", name)
    if multi_connection:
        base = f"{base}_{hub_port_code}"
    return base[:TRACK_NAME_LENGTH]


def derive_filename(name: str, hub_port_code: str, multi_connection: bool) -> str:
    sanitized = re.sub(r"[^a-zA-Z0-9]", "_", name)
    if multi_connection:
        return f"{sanitized}_{hub_port_code}.txt"
    return f"{sanitized}.txt"


class DefinitionService:
    """Renders hub track definition files for the instruments the hub routes to."""

    def __init__(self, routing_service: RoutingService) -> None:
        self._routing_service = routing_service

    def render_all(self, instruments: Sequence[Instrument], connections: Sequence[Connection]) -> list[DefinitionFile]:
        resolved = self._routing_service.resolve(instruments, connections)
        counts = Counter(item.instrument.id for item in resolved)

        definitions: list[DefinitionFile] = []
        for item in resolved:
            multi_connection = counts[item.instrument.id] > 1
            definitions.append(
                DefinitionFile(
                    instrument_id=item.instrument.id,
                    filename=derive_filename(item.instrument.name, item.hub_port_code, multi_connection),
                    content=self.render(
                        item.instrument,
                        item.hub_port_code,
                        item.is_analog,
                        multi_connection=multi_connection,
                    ),
                )
            )

        logger.info("Rendered %d hub definition file(s)", len(definitions))
        return definitions

    def render(
        self,
        instrument: Instrument,
        hub_port_code: str,
        is_analog: bool,
        *,
        multi_connection: bool = False,
    ) -> str:
        track_name = derive_track_name(instrument.name, hub_port_code, multi_connection)
        out_channel = NULL_VALUE if is_analog else str(instrument.channel)
        header_name = f"{instrument.manufacturer.upper()} {instrument.name.upper()}"

        lines = [
            f"############# {header_name} #############",
            f"VERSION {DEFINITION_VERSION}",
            f"TRACKNAME {track_name}",
            f"TYPE {instrument.type.value}",
            f"OUTPORT {hub_port_code}",
            f"OUTCHAN {out_channel}",
            f"INPORT {NULL_VALUE}",
            f"INCHAN {NULL_VALUE}",
            f"MAXRATE {NULL_VALUE}",
            "",
        ]

        lines.append("[DRUMLANES]")
        if instrument.type == InstrumentType.DRUM and instrument.drum_lanes:
            for lane in sorted(instrument.drum_lanes, key=lambda item: item.lane, reverse=True):
                trig = NULL_VALUE if lane.trig is None else str(lane.trig)
                chan = lane.chan or NULL_VALUE
                note = NULL_VALUE if lane.note is None else str(lane.note)
                lines.append(f"{lane.lane}:{trig}:{chan}:{note} {lane.name}")
        lines.extend(["[/DRUMLANES]", ""])

        lines.extend(["[PC]", "[/PC]", ""])

        lines.append("[CC]")
        for section, cc_mappings in group_by_section(instrument.cc_map).items():
            lines.append(f"# {section}")
            lines.extend(f"{mapping.cc_number} {mapping.param_name}" for mapping in cc_mappings)
            lines.append("")
        lines.extend(["[/CC]", ""])

        lines.append("[NRPN]")
        for section, nrpn_mappings in group_by_section(instrument.nrpn_map).items():
            lines.append(f"# {section}")
            # Depth is always written as 7-bit in this section.
            lines.extend(f"{mapping.msb}:{mapping.lsb}:7 {mapping.param_name}" for mapping in nrpn_mappings)
            lines.append("")
        lines.extend(["[/NRPN]", ""])

        lines.append("[ASSIGN]")
        lines.extend(
            f"{assign.cc_number} {assign.param_name} {assign.default_value}" for assign in instrument.assign_ccs
        )
        lines.extend(["[/ASSIGN]", ""])

        lines.append("[AUTOMATION]")
        lines.extend(self._format_automation_lane(lane) for lane in instrument.automation_lanes)
        lines.extend(["[/AUTOMATION]", ""])

        lines.extend(
            [
                "[COMMENT]",
                f"{instrument.manufacturer} {instrument.name}",
                ATTRIBUTION_LINE,
                "[/COMMENT]",
            ]
        )
        return "\n".join(lines)

    @staticmethod
    def _format_automation_lane(lane: AutomationLane) -> str:
        if lane.type == AutomationType.CC:
            return f"CC:{lane.cc_number if lane.cc_number is not None else 0}"
        if lane.type == AutomationType.PB:
            return "PB:"
        if lane.type == AutomationType.AT:
            return "AT:"
        if lane.type == AutomationType.CV:
            return f"CV:{lane.cv_number if lane.cv_number is not None else 1}"
        msb = lane.nrpn_msb if lane.nrpn_msb is not None else 0
        lsb = lane.nrpn_lsb if lane.nrpn_lsb is not None else 0
        depth = lane.nrpn_depth if lane.nrpn_depth is not None else 7
        return f"NRPN:{msb}:{lsb}:{depth}"

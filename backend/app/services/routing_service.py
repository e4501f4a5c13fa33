from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass
from typing import Sequence

from backend.app.models.graph import Connection, Instrument, PortType, find_hub

logger = logging.getLogger(__name__)

# Hub output handle -> (hub port code, is analog)
HUB_PORT_CODES: dict[str, tuple[str, bool]] = {
    "midi-a": ("A", False),
    "midi-b": ("B", False),
    "midi-c": ("C", False),
    "midi-d": ("D", False),
    "usb-host": ("USBH", False),
    "usb-device": ("USBD", False),
    "cv-1": ("CV1", True),
    "cv-2": ("CV2", True),
    "cv-3": ("CV3", True),
    "cv-4": ("CV4", True),
    "gate-1": ("G1", True),
    "gate-2": ("G2", True),
    "gate-3": ("G3", True),
    "gate-4": ("G4", True),
}

CV_CODE_PATTERN = re.compile(r"^CV(\d)$")
GATE_CODE_PATTERN = re.compile(r"^G(\d)$")


@dataclass(slots=True)
class ResolvedConnection:
    instrument: Instrument
    hub_port_code: str
    is_analog: bool


class RoutingService:
    def trace(self, instruments: Sequence[Instrument], connections: Sequence[Connection]) -> dict[str, list[str]]:
        """Map every instrument reachable from the hub over MIDI/USB to the hub handles reaching it."""
        hub = find_hub(list(instruments))
        if hub is None:
            return {}

        adjacency: dict[str, list[tuple[str, str]]] = {}
        for connection in connections:
            if not connection.is_transport:
                continue
            adjacency.setdefault(connection.source, []).append((connection.target, connection.source_handle))

        result: dict[str, list[str]] = {}
        queued: dict[str, set[str]] = {}
        queue: deque[tuple[str, str]] = deque()

        for target, handle in adjacency.get(hub.id, []):
            if target == hub.id or handle in queued.setdefault(target, set()):
                continue
            queued[target].add(handle)
            queue.append((target, handle))

        while queue:
            instrument_id, handle = queue.popleft()
            handles = result.setdefault(instrument_id, [])
            if handle not in handles:
                handles.append(handle)

            for target, _ in adjacency.get(instrument_id, []):
                # A route back into the hub must not carry the handle any further.
                if target == hub.id:
                    continue
                target_handles = queued.setdefault(target, set())
                if handle in target_handles:
                    continue
                target_handles.add(handle)
                queue.append((target, handle))

        return result

    def resolve(
        self,
        instruments: Sequence[Instrument],
        connections: Sequence[Connection],
        trace: dict[str, list[str]] | None = None,
    ) -> list[ResolvedConnection]:
        hub = find_hub(list(instruments))
        if hub is None:
            return []

        if trace is None:
            trace = self.trace(instruments, connections)

        instrument_map = {instrument.id: instrument for instrument in instruments}
        raw: list[ResolvedConnection] = []
        seen: set[tuple[str, str]] = set()

        for instrument_id, handles in trace.items():
            instrument = instrument_map.get(instrument_id)
            if instrument is None or instrument.is_hub:
                continue
            for handle in handles:
                port = HUB_PORT_CODES.get(handle)
                if port is None:
                    logger.warning("Dropping unrecognized hub handle '%s' routed to '%s'", handle, instrument_id)
                    continue
                code, is_analog = port
                seen.add((instrument_id, code))
                raw.append(ResolvedConnection(instrument=instrument, hub_port_code=code, is_analog=is_analog))

        for connection in connections:
            if connection.source != hub.id or connection.port_type != PortType.CV:
                continue
            port = HUB_PORT_CODES.get(connection.source_handle)
            if port is None or not port[1]:
                continue
            instrument = instrument_map.get(connection.target)
            if instrument is None or instrument.is_hub:
                continue
            code = port[0]
            if (instrument.id, code) in seen:
                continue
            seen.add((instrument.id, code))
            raw.append(ResolvedConnection(instrument=instrument, hub_port_code=code, is_analog=True))

        return self._pair_cv_and_gate(raw)

    @staticmethod
    def _pair_cv_and_gate(raw: list[ResolvedConnection]) -> list[ResolvedConnection]:
        grouped: dict[str, list[ResolvedConnection]] = {}
        for item in raw:
            grouped.setdefault(item.instrument.id, []).append(item)

        result: list[ResolvedConnection] = []
        for items in grouped.values():
            cv_entries = [item for item in items if CV_CODE_PATTERN.fullmatch(item.hub_port_code)]
            gate_entries = [item for item in items if GATE_CODE_PATTERN.fullmatch(item.hub_port_code)]
            result.extend(
                item
                for item in items
                if not CV_CODE_PATTERN.fullmatch(item.hub_port_code)
                and not GATE_CODE_PATTERN.fullmatch(item.hub_port_code)
            )

            matched: set[str] = set()
            for cv in cv_entries:
                channel = cv.hub_port_code[2:]
                gate = next((item for item in gate_entries if item.hub_port_code == f"G{channel}"), None)
                if gate is None:
                    continue
                result.append(ResolvedConnection(instrument=cv.instrument, hub_port_code=f"CVG{channel}", is_analog=True))
                matched.update((cv.hub_port_code, gate.hub_port_code))

            result.extend(item for item in cv_entries if item.hub_port_code not in matched)
            result.extend(item for item in gate_entries if item.hub_port_code not in matched)

        return result

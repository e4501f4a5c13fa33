from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from backend.app.models.graph import InstrumentPreset, StudioGraph, connection_id
from backend.app.models.studio import STUDIO_FILE_VERSION, StudioFile

logger = logging.getLogger(__name__)

LEGACY_HUB_USB_OUTPUT = "usb-device-out"
HUB_USB_DEVICE_PORT = "usb-device"
LEGACY_USB_INPUT_PATTERN = re.compile(r"^usb-in-(\d+)$")
LEGACY_USB_OUTPUT_PATTERN = re.compile(r"^usb-out-(\d+)$")


class StudioFileError(ValueError):
    pass


class StudioFileService:
    """Reads and writes the versioned studio save file.

    Parsing validates the envelope, migrates payloads written by older
    releases and returns a typed ``StudioFile``. Anything that cannot be
    migrated is rejected with ``StudioFileError``; nothing is partially
    applied.
    """

    def serialize(self, graph: StudioGraph, presets: list[InstrumentPreset]) -> StudioFile:
        return StudioFile(
            version=STUDIO_FILE_VERSION,
            exported_at=datetime.now(timezone.utc).isoformat(),
            instruments=[instrument.model_copy(deep=True) for instrument in graph.instruments],
            connections=[connection.model_copy(deep=True) for connection in graph.connections],
            presets=[preset.model_copy(deep=True) for preset in presets],
        )

    @staticmethod
    def dumps(studio_file: StudioFile) -> str:
        return studio_file.model_dump_json(by_alias=True, indent=2)

    def parse(self, payload: str | bytes | dict[str, Any]) -> StudioFile:
        data = self._decode(payload)

        if not isinstance(data, dict):
            raise StudioFileError("Invalid file format: expected a JSON object.")
        if not data.get("version") or "instruments" not in data or "connections" not in data:
            raise StudioFileError("Invalid file format: missing required fields.")
        if isinstance(data["version"], bool) or data["version"] != STUDIO_FILE_VERSION:
            raise StudioFileError(f"Unsupported file version: {data['version']}")
        if not isinstance(data["instruments"], list) or not isinstance(data["connections"], list):
            raise StudioFileError("Invalid file format: instruments and connections must be lists.")

        raw_instruments = [self._migrate_instrument(item) for item in data["instruments"]]
        hub_ids = {item.get("id") for item in raw_instruments if item.get("is_hub")}
        raw_connections = [
            migrated
            for migrated in (self._migrate_connection(item, hub_ids) for item in data["connections"])
            if migrated is not None
        ]
        raw_presets = data.get("presets")
        presets = [self._migrate_preset(item) for item in raw_presets] if isinstance(raw_presets, list) else []

        try:
            studio_file = StudioFile(
                version=STUDIO_FILE_VERSION,
                exported_at=str(data.get("exportedAt") or ""),
                instruments=raw_instruments,
                connections=raw_connections,
                presets=presets,
            )
            StudioGraph(instruments=studio_file.instruments, connections=studio_file.connections)
        except ValidationError as err:
            raise StudioFileError(f"Invalid file format: {self._first_error(err)}") from err

        logger.info(
            "Parsed studio file with %d instrument(s), %d connection(s) and %d preset(s)",
            len(studio_file.instruments),
            len(studio_file.connections),
            len(studio_file.presets),
        )
        return studio_file

    @staticmethod
    def _decode(payload: str | bytes | dict[str, Any]) -> object:
        if isinstance(payload, dict):
            return payload
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as err:
                raise StudioFileError("Studio file must be UTF-8 encoded JSON.") from err
        try:
            return json.loads(payload)
        except json.JSONDecodeError as err:
            raise StudioFileError(f"Studio file JSON could not be parsed: {err.msg}") from err

    def _migrate_instrument(self, raw: object) -> dict[str, Any]:
        if not isinstance(raw, dict):
            raise StudioFileError("Invalid file format: every instrument must be an object.")

        instrument = dict(raw)
        instrument["automation_lanes"] = instrument.get("automation_lanes") or []
        if instrument.get("show_cv_ports") is None:
            instrument["show_cv_ports"] = False

        drum_lanes = instrument.get("drum_lanes")
        if isinstance(drum_lanes, list):
            instrument["drum_lanes"] = [self._migrate_drum_lane(lane) for lane in drum_lanes]

        inputs = self._port_list(instrument.get("inputs"))
        outputs = self._port_list(instrument.get("outputs"))
        if instrument.get("is_hub"):
            outputs = [
                {**port, "id": HUB_USB_DEVICE_PORT} if port.get("id") == LEGACY_HUB_USB_OUTPUT else port
                for port in outputs
            ]
            outputs = self._backfill_hub_midi_d(outputs)
            inputs = [port for port in inputs if port.get("id") != HUB_USB_DEVICE_PORT]
        else:
            inputs = [self._rename_port(port, _migrate_input_handle) for port in inputs]
            outputs = [self._rename_port(port, _migrate_output_handle) for port in outputs]
        instrument["inputs"] = inputs
        instrument["outputs"] = outputs
        return instrument

    def _migrate_preset(self, raw: object) -> dict[str, Any]:
        if not isinstance(raw, dict):
            raise StudioFileError("Invalid file format: every preset must be an object.")
        preset = dict(raw)
        if not preset.get("is_hub"):
            preset["inputs"] = [
                self._rename_port(port, _migrate_input_handle) for port in self._port_list(preset.get("inputs"))
            ]
            preset["outputs"] = [
                self._rename_port(port, _migrate_output_handle) for port in self._port_list(preset.get("outputs"))
            ]
        return preset

    @staticmethod
    def _migrate_connection(raw: object, hub_ids: set[object]) -> dict[str, Any] | None:
        if not isinstance(raw, dict):
            raise StudioFileError("Invalid file format: every connection must be an object.")

        connection = dict(raw)
        source_handle = str(connection.get("source_handle") or "")
        target_handle = str(connection.get("target_handle") or "")

        if connection.get("target") in hub_ids and target_handle == HUB_USB_DEVICE_PORT:
            return None

        if connection.get("source") in hub_ids:
            migrated_source = HUB_USB_DEVICE_PORT if source_handle == LEGACY_HUB_USB_OUTPUT else source_handle
        else:
            migrated_source = _migrate_output_handle(source_handle)
        migrated_target = target_handle if connection.get("target") in hub_ids else _migrate_input_handle(target_handle)

        if (migrated_source, migrated_target) != (source_handle, target_handle):
            connection["source_handle"] = migrated_source
            connection["target_handle"] = migrated_target
            connection["id"] = connection_id(
                str(connection.get("source")),
                migrated_source,
                str(connection.get("target")),
                migrated_target,
            )
        return connection

    @staticmethod
    def _migrate_drum_lane(raw: object) -> object:
        if not isinstance(raw, dict):
            return raw
        lane = raw.get("lane")
        if lane is None:
            lane = raw.get("channel")
        return {
            "lane": 1 if lane is None else lane,
            "trig": raw.get("trig"),
            "chan": raw.get("chan"),
            "note": raw.get("note"),
            "name": raw.get("name") or "",
        }

    @staticmethod
    def _backfill_hub_midi_d(outputs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        ids = [port.get("id") for port in outputs]
        if "midi-d" in ids:
            return outputs
        insert_at = ids.index("midi-c") + 1 if "midi-c" in ids else 0
        return [*outputs[:insert_at], {"id": "midi-d", "label": "MIDI D", "type": "midi"}, *outputs[insert_at:]]

    @staticmethod
    def _port_list(raw: object) -> list[dict[str, Any]]:
        if raw is None:
            return []
        if not isinstance(raw, list) or not all(isinstance(port, dict) for port in raw):
            raise StudioFileError("Invalid file format: ports must be a list of objects.")
        return [dict(port) for port in raw]

    @staticmethod
    def _rename_port(port: dict[str, Any], rename) -> dict[str, Any]:
        port_id = port.get("id")
        if not isinstance(port_id, str):
            return port
        return {**port, "id": rename(port_id)}

    @staticmethod
    def _first_error(err: ValidationError) -> str:
        errors = err.errors()
        if not errors:
            return str(err)
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def _migrate_input_handle(handle: str) -> str:
    match = LEGACY_USB_INPUT_PATTERN.fullmatch(handle)
    return f"usb-device-{match.group(1)}" if match else handle


def _migrate_output_handle(handle: str) -> str:
    match = LEGACY_USB_OUTPUT_PATTERN.fullmatch(handle)
    return f"usb-host-{match.group(1)}" if match else handle

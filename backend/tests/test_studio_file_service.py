from __future__ import annotations

import json

import pytest

from backend.app.models.graph import (
    HUB_INSTRUMENT_ID,
    HUB_PRESET,
    CCMapping,
    Connection,
    Instrument,
    InstrumentPreset,
    Port,
    PortType,
    StudioGraph,
    create_hub_instrument,
)
from backend.app.services.studio_file_service import StudioFileError, StudioFileService


def _graph() -> StudioGraph:
    synth = Instrument(
        id="node-1",
        name="Prophet",
        manufacturer="Sequential",
        channel=2,
        inputs=[Port(id="midi-in", type=PortType.MIDI)],
        cc_map=[CCMapping(cc_number=74, param_name="Cutoff", section="Filter")],
    )
    return StudioGraph(
        instruments=[create_hub_instrument(), synth],
        connections=[
            Connection(source=HUB_INSTRUMENT_ID, source_handle="midi-a", target="node-1", target_handle="midi-in")
        ],
    )


def _legacy_payload() -> dict:
    hub = create_hub_instrument().model_dump(mode="json")
    hub["outputs"] = [
        port if port["id"] != "usb-device" else {**port, "id": "usb-device-out"}
        for port in hub["outputs"]
        if port["id"] != "midi-d"
    ]
    hub["inputs"].append({"id": "usb-device", "label": "USB Device", "type": "usb"})
    hub.pop("automation_lanes")
    hub.pop("show_cv_ports")

    drum = {
        "id": "node-2",
        "name": "Drumbrute",
        "manufacturer": "Arturia",
        "type": "DRUM",
        "inputs": [{"id": "usb-in-1", "label": "USB", "type": "usb"}],
        "outputs": [{"id": "usb-out-1", "label": "USB", "type": "usb"}],
        "drum_lanes": [
            {"channel": 3, "note": 36, "name": "KICK"},
            {"note": 38, "name": "SNARE"},
        ],
    }
    return {
        "version": 1,
        "exportedAt": "2024-05-01T10:00:00Z",
        "instruments": [hub, drum],
        "connections": [
            {
                "id": "edge-hapax-main-usb-device-out-node-2-usb-in-1",
                "source": HUB_INSTRUMENT_ID,
                "source_handle": "usb-device-out",
                "target": "node-2",
                "target_handle": "usb-in-1",
                "port_type": "usb",
            },
            {
                "id": "edge-node-2-usb-out-1-hapax-main-usb-device",
                "source": "node-2",
                "source_handle": "usb-out-1",
                "target": HUB_INSTRUMENT_ID,
                "target_handle": "usb-device",
                "port_type": "usb",
            },
        ],
    }


def test_serialize_and_parse_round_trip() -> None:
    service = StudioFileService()
    presets = [InstrumentPreset(id="prophet", name="Prophet", manufacturer="Sequential")]
    graph = _graph()

    text = service.dumps(service.serialize(graph, presets))
    parsed = service.parse(text)

    assert json.loads(text)["exportedAt"]
    assert parsed.instruments == graph.instruments
    assert parsed.connections == graph.connections
    assert parsed.presets == presets


def test_parse_accepts_bytes_and_dict_payloads() -> None:
    service = StudioFileService()
    payload = service.serialize(_graph(), []).model_dump(mode="json", by_alias=True)

    assert service.parse(payload).instruments[1].id == "node-1"
    assert service.parse(json.dumps(payload).encode("utf-8")).instruments[1].id == "node-1"


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ("{not json", "could not be parsed"),
        ("[]", "expected a JSON object"),
        (json.dumps({"version": 1, "instruments": []}), "missing required fields"),
        (json.dumps({"version": 2, "instruments": [], "connections": []}), "Unsupported file version: 2"),
        (json.dumps({"version": True, "instruments": [], "connections": []}), "Unsupported file version: True"),
        (json.dumps({"version": 1, "instruments": {}, "connections": []}), "must be lists"),
    ],
)
def test_parse_rejects_invalid_envelopes(payload: str, message: str) -> None:
    with pytest.raises(StudioFileError, match=message):
        StudioFileService().parse(payload)


def test_parse_rejects_schema_violations() -> None:
    payload = {
        "version": 1,
        "instruments": [{"id": "node-1", "name": "Synth", "channel": 40}],
        "connections": [],
    }

    with pytest.raises(StudioFileError, match="Invalid file format"):
        StudioFileService().parse(payload)


def test_parse_rejects_duplicate_hubs() -> None:
    hub = create_hub_instrument().model_dump(mode="json")
    second_hub = {**hub, "id": "hapax-2"}
    payload = {"version": 1, "instruments": [hub, second_hub], "connections": []}

    with pytest.raises(StudioFileError, match="hub"):
        StudioFileService().parse(payload)


def test_parse_migrates_legacy_payload() -> None:
    parsed = StudioFileService().parse(_legacy_payload())

    hub, drum = parsed.instruments
    hub_outputs = [port.id for port in hub.outputs]
    assert hub_outputs == [port.id for port in HUB_PRESET.outputs]
    assert "usb-device" not in [port.id for port in hub.inputs]
    assert hub.automation_lanes == []
    assert hub.show_cv_ports is False

    assert [port.id for port in drum.inputs] == ["usb-device-1"]
    assert [port.id for port in drum.outputs] == ["usb-host-1"]
    assert [(lane.lane, lane.note, lane.name) for lane in drum.drum_lanes] == [(3, 36, "KICK"), (1, 38, "SNARE")]

    assert len(parsed.connections) == 1
    connection = parsed.connections[0]
    assert connection.source_handle == "usb-device"
    assert connection.target_handle == "usb-device-1"
    assert connection.id == "edge-hapax-main-usb-device-node-2-usb-device-1"
    assert parsed.presets == []


def test_parse_migrates_legacy_preset_ports() -> None:
    payload = {
        "version": 1,
        "instruments": [],
        "connections": [],
        "presets": [
            {
                "id": "drumbrute",
                "name": "Drumbrute",
                "inputs": [{"id": "usb-in-2", "type": "usb"}],
                "outputs": [{"id": "usb-out-2", "type": "usb"}],
            }
        ],
    }

    parsed = StudioFileService().parse(payload)

    assert [port.id for port in parsed.presets[0].inputs] == ["usb-device-2"]
    assert [port.id for port in parsed.presets[0].outputs] == ["usb-host-2"]

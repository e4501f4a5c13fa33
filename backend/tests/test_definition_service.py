from __future__ import annotations

from backend.app.models.graph import (
    HUB_INSTRUMENT_ID,
    AssignCC,
    AutomationLane,
    AutomationType,
    CCMapping,
    Connection,
    DrumLane,
    Instrument,
    InstrumentType,
    NRPNMapping,
    Port,
    PortType,
    create_hub_instrument,
)
from backend.app.services.definition_service import (
    DefinitionService,
    derive_filename,
    derive_track_name,
    group_by_section,
)
from backend.app.services.routing_service import RoutingService


def _service() -> DefinitionService:
    return DefinitionService(routing_service=RoutingService())


def _minilogue() -> Instrument:
    return Instrument(
        id="node-1",
        name="Minilogue XD",
        manufacturer="Korg",
        channel=3,
        inputs=[Port(id="midi-in", type=PortType.MIDI), Port(id="cv-in", type=PortType.CV)],
        cc_map=[
            CCMapping(cc_number=43, param_name="Cutoff", section="Filter"),
            CCMapping(cc_number=44, param_name="Reso", section="Filter"),
            CCMapping(cc_number=24, param_name="LFORate"),
        ],
        nrpn_map=[NRPNMapping(msb=1, lsb=2, param_name="Mode")],
        assign_ccs=[AssignCC(slot=1, cc_number=43, param_name="Cutoff", default_value=64)],
        automation_lanes=[
            AutomationLane(slot=1, type=AutomationType.CC, cc_number=43),
            AutomationLane(slot=2, type=AutomationType.PB),
            AutomationLane(slot=3, type=AutomationType.NRPN, nrpn_msb=1, nrpn_lsb=2, nrpn_depth=14),
        ],
    )


def test_render_produces_full_definition_text() -> None:
    content = _service().render(_minilogue(), "A", False)

    assert content == "\n".join(
        [
            "############# KORG MINILOGUE XD #############",
            "VERSION 1",
            "TRACKNAME MinilogueXD",
            "TYPE POLY",
            "OUTPORT A",
            "OUTCHAN 3",
            "INPORT NULL",
            "INCHAN NULL",
            "MAXRATE NULL",
            "",
            "[DRUMLANES]",
            "[/DRUMLANES]",
            "",
            "[PC]",
            "[/PC]",
            "",
            "[CC]",
            "# Filter",
            "43 Cutoff",
            "44 Reso",
            "",
            "# General",
            "24 LFORate",
            "",
            "[/CC]",
            "",
            "[NRPN]",
            "# General",
            "1:2:7 Mode",
            "",
            "[/NRPN]",
            "",
            "[ASSIGN]",
            "43 Cutoff 64",
            "[/ASSIGN]",
            "",
            "[AUTOMATION]",
            "CC:43",
            "PB:",
            "NRPN:1:2:14",
            "[/AUTOMATION]",
            "",
            "[COMMENT]",
            "Korg Minilogue XD",
            "Generated by StudioGraph",
            "[/COMMENT]",
        ]
    )
    assert not content.endswith("\n")


def test_render_uses_null_channel_for_analog_ports() -> None:
    content = _service().render(_minilogue(), "CVG1", True)

    assert "OUTPORT CVG1" in content.splitlines()
    assert "OUTCHAN NULL" in content.splitlines()


def test_render_writes_drum_lanes_in_descending_order() -> None:
    drum = Instrument(
        id="node-2",
        name="TR-8S",
        manufacturer="Roland",
        type=InstrumentType.DRUM,
        drum_lanes=[
            DrumLane(lane=1, trig=36, chan="g1", name="KICK"),
            DrumLane(lane=2, note=38, name="SNARE"),
        ],
    )

    lines = _service().render(drum, "B", False).splitlines()

    start = lines.index("[DRUMLANES]")
    assert lines[start : start + 4] == [
        "[DRUMLANES]",
        "2:NULL:NULL:38 SNARE",
        "1:36:G1:NULL KICK",
        "[/DRUMLANES]",
    ]
    assert "TYPE DRUM" in lines


def test_render_skips_drum_lanes_for_non_drum_types() -> None:
    synth = _minilogue()
    synth.drum_lanes = [DrumLane(lane=1, note=36, name="KICK")]

    lines = _service().render(synth, "A", False).splitlines()

    start = lines.index("[DRUMLANES]")
    assert lines[start + 1] == "[/DRUMLANES]"


def test_render_uses_automation_defaults_for_missing_numbers() -> None:
    synth = _minilogue()
    synth.automation_lanes = [
        AutomationLane(slot=1, type=AutomationType.CC),
        AutomationLane(slot=2, type=AutomationType.AT),
        AutomationLane(slot=3, type=AutomationType.CV),
        AutomationLane(slot=4, type=AutomationType.NRPN, nrpn_msb=5, nrpn_lsb=6),
    ]

    lines = _service().render(synth, "A", False).splitlines()

    start = lines.index("[AUTOMATION]")
    assert lines[start + 1 : start + 5] == ["CC:0", "AT:", "CV:1", "NRPN:5:6:7"]


def test_track_name_and_filename_helpers() -> None:
    assert derive_track_name("Minilogue XD", "A", False) == "MinilogueXD"
    assert derive_track_name("Minilogue XD", "A", True) == "MinilogueXD_"
    assert derive_track_name("Juno 106", "CVG1", True) == "Juno106_CVG1"
    assert derive_filename("Minilogue XD", "A", False) == "Minilogue_XD.txt"
    assert derive_filename("TR-8S", "USBH", True) == "TR_8S_USBH.txt"


def test_group_by_section_keeps_first_seen_order() -> None:
    grouped = group_by_section(_minilogue().cc_map)

    assert list(grouped) == ["Filter", "General"]
    assert [mapping.cc_number for mapping in grouped["Filter"]] == [43, 44]


def test_render_all_suffixes_instruments_with_several_hub_ports() -> None:
    synth = _minilogue()
    drum = Instrument(
        id="node-2",
        name="TR-8S",
        manufacturer="Roland",
        inputs=[Port(id="midi-in", type=PortType.MIDI)],
    )
    instruments = [create_hub_instrument(), synth, drum]
    connections = [
        Connection(source=HUB_INSTRUMENT_ID, source_handle="midi-a", target="node-1", target_handle="midi-in"),
        Connection(
            source=HUB_INSTRUMENT_ID,
            source_handle="cv-1",
            target="node-1",
            target_handle="cv-in",
            port_type=PortType.CV,
        ),
        Connection(source=HUB_INSTRUMENT_ID, source_handle="midi-b", target="node-2", target_handle="midi-in"),
    ]

    definitions = _service().render_all(instruments, connections)

    assert [(item.instrument_id, item.filename) for item in definitions] == [
        ("node-1", "Minilogue_XD_A.txt"),
        ("node-1", "Minilogue_XD_CV1.txt"),
        ("node-2", "TR_8S.txt"),
    ]
    assert "TRACKNAME TR-8S" in definitions[2].content.splitlines()
    assert "OUTCHAN NULL" in definitions[1].content.splitlines()


def test_render_all_is_empty_without_hub() -> None:
    assert _service().render_all([_minilogue()], []) == []

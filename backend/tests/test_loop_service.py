from __future__ import annotations

from backend.app.models.graph import Connection, Instrument, Port, PortType
from backend.app.services.loop_service import LoopService


def _instrument(instrument_id: str, *, local_off: bool = False) -> Instrument:
    return Instrument(
        id=instrument_id,
        name=instrument_id.upper(),
        inputs=[Port(id="in", type=PortType.MIDI)],
        outputs=[Port(id="out", type=PortType.MIDI)],
        local_off=local_off,
    )


def _connect(source: str, target: str) -> Connection:
    return Connection(source=source, source_handle="out", target=target, target_handle="in")


def test_detect_reports_no_cycle_for_acyclic_chain() -> None:
    instruments = [_instrument("a"), _instrument("b"), _instrument("c")]
    connections = [_connect("a", "b"), _connect("b", "c")]

    report = LoopService().detect(instruments, connections)

    assert report.has_cycle is False
    assert report.cycle_connections == []


def test_detect_reports_every_connection_on_the_cycle() -> None:
    instruments = [_instrument("a"), _instrument("b"), _instrument("c"), _instrument("d")]
    connections = [_connect("a", "b"), _connect("b", "c"), _connect("c", "a"), _connect("c", "d")]

    report = LoopService().detect(instruments, connections)

    assert report.has_cycle is True
    assert set(report.cycle_connections) == {
        "edge-a-out-b-in",
        "edge-b-out-c-in",
        "edge-c-out-a-in",
    }


def test_detect_treats_self_loop_as_cycle() -> None:
    report = LoopService().detect([_instrument("a")], [_connect("a", "a")])

    assert report.has_cycle is True
    assert report.cycle_connections == ["edge-a-out-a-in"]


def test_detect_suppresses_cycle_through_local_off_instrument() -> None:
    instruments = [_instrument("a"), _instrument("b", local_off=True)]
    connections = [_connect("a", "b"), _connect("b", "a")]

    report = LoopService().detect(instruments, connections)

    assert report.has_cycle is False
    assert report.cycle_connections == []


def test_detect_reports_only_the_first_cycle_in_declaration_order() -> None:
    instruments = [_instrument("a"), _instrument("b"), _instrument("c"), _instrument("d")]
    connections = [_connect("a", "b"), _connect("b", "a"), _connect("c", "d"), _connect("d", "c")]

    report = LoopService().detect(instruments, connections)

    assert report.has_cycle is True
    assert set(report.cycle_connections) == {"edge-a-out-b-in", "edge-b-out-a-in"}


def test_detect_ignores_connections_to_unknown_instruments() -> None:
    instruments = [_instrument("a")]
    connections = [_connect("a", "ghost"), _connect("ghost", "a")]

    report = LoopService().detect(instruments, connections)

    assert report.has_cycle is False


def test_detect_handles_long_chains_without_recursion() -> None:
    instruments = [_instrument(f"n{index}") for index in range(3_000)]
    connections = [_connect(f"n{index}", f"n{index + 1}") for index in range(2_999)]
    connections.append(_connect("n2999", "n0"))

    report = LoopService().detect(instruments, connections)

    assert report.has_cycle is True
    assert len(report.cycle_connections) == 3_000


def test_would_create_cycle_when_target_reaches_source() -> None:
    connections = [_connect("a", "b"), _connect("b", "c")]

    assert LoopService.would_create_cycle(connections, "c", "a") is True
    assert LoopService.would_create_cycle(connections, "a", "c") is False


def test_would_create_cycle_for_self_loop() -> None:
    assert LoopService.would_create_cycle([], "a", "a") is True


def test_would_create_cycle_ignores_local_off() -> None:
    instruments = [_instrument("a"), _instrument("b", local_off=True)]
    connections = [_connect("a", "b")]

    assert LoopService.would_create_cycle(connections, "b", "a") is True

    connections.append(_connect("b", "a"))
    assert LoopService().detect(instruments, connections).has_cycle is False


def test_detect_ignores_local_off_outside_the_cycle() -> None:
    instruments = [_instrument("a"), _instrument("b"), _instrument("c", local_off=True)]
    connections = [_connect("a", "b"), _connect("b", "a"), _connect("b", "c")]

    report = LoopService().detect(instruments, connections)

    assert report.has_cycle is True
    assert set(report.cycle_connections) == {"edge-a-out-b-in", "edge-b-out-a-in"}

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field

from backend.app.models.graph import CCMapping, NRPNMapping

PARAM_NAME_LENGTH = 12
UNKNOWN_PARAM_NAME = "Unknown"

PARAM_ABBREVIATIONS: tuple[tuple[str, str], ...] = (
    ("Envelope", "Env"),
    ("Oscillator", "Osc"),
    ("Parameter", "Param"),
    ("Modulation", "Mod"),
    ("Frequency", "Freq"),
    ("Resonance", "Reso"),
    ("Filter", "Flt"),
    ("Attack", "Atk"),
    ("Decay", "Dcy"),
    ("Sustain", "Sus"),
    ("Release", "Rel"),
    ("Velocity", "Vel"),
    ("Level", "Lvl"),
)


class CatalogError(ValueError):
    pass


@dataclass(slots=True)
class CatalogParseResult:
    manufacturer: str = ""
    device: str = ""
    cc_map: list[CCMapping] = field(default_factory=list)
    nrpn_map: list[NRPNMapping] = field(default_factory=list)


def clean_param_name(name: str | None) -> str:
    """Shorten a catalog parameter name to fit the hub's 12 character display."""
    if not name:
        return UNKNOWN_PARAM_NAME

    cleaned = re.sub(r"^[^:]+:\s*", "", name, count=1)
    for long_form, short_form in PARAM_ABBREVIATIONS:
        cleaned = cleaned.replace(long_form, short_form)
    cleaned = re.sub(r"\s+", "", cleaned)[:PARAM_NAME_LENGTH]
    return cleaned or UNKNOWN_PARAM_NAME


class CatalogService:
    """Parses midi.guide style parameter catalogs into CC and NRPN mappings."""

    def parse_csv(self, text: str) -> CatalogParseResult:
        reader = csv.DictReader(io.StringIO(text))
        if not reader.fieldnames:
            raise CatalogError("Catalog CSV is empty.")
        columns = {name.strip() for name in reader.fieldnames}
        if "parameter_name" not in columns:
            raise CatalogError("Catalog CSV is missing required column(s): parameter_name.")
        if "cc_msb" not in columns and not {"nrpn_msb", "nrpn_lsb"} <= columns:
            raise CatalogError("Catalog CSV needs a cc_msb column or nrpn_msb and nrpn_lsb columns.")

        result = CatalogParseResult()
        seen_cc: set[tuple[int, str]] = set()
        seen_nrpn: set[tuple[int, int, str]] = set()

        for raw_row in reader:
            row = {key.strip(): (value or "").strip() for key, value in raw_row.items() if isinstance(key, str)}
            if not any(row.values()):
                continue

            if not result.manufacturer and row.get("manufacturer"):
                result.manufacturer = row["manufacturer"]
            if not result.device and row.get("device"):
                result.device = row["device"]

            section = row.get("section") or None
            param_name = clean_param_name(row.get("parameter_name"))

            cc_number = _parse_midi_value(row.get("cc_msb"))
            if cc_number is not None and (cc_number, param_name) not in seen_cc:
                seen_cc.add((cc_number, param_name))
                result.cc_map.append(
                    CCMapping(
                        cc_number=cc_number,
                        param_name=param_name,
                        full_param_name=row.get("parameter_name") or UNKNOWN_PARAM_NAME,
                        section=section,
                        default_value=_parse_int(row.get("cc_default_value")),
                    )
                )

            msb = _parse_midi_value(row.get("nrpn_msb"))
            lsb = _parse_midi_value(row.get("nrpn_lsb"))
            if msb is not None and lsb is not None and (msb, lsb, param_name) not in seen_nrpn:
                seen_nrpn.add((msb, lsb, param_name))
                result.nrpn_map.append(
                    NRPNMapping(
                        msb=msb,
                        lsb=lsb,
                        param_name=param_name,
                        section=section,
                        default_value=_parse_int(row.get("nrpn_default_value")),
                    )
                )

        result.cc_map.sort(key=lambda mapping: mapping.cc_number)
        result.nrpn_map.sort(key=lambda mapping: (mapping.msb, mapping.lsb))
        return result


def _parse_int(value: str | None) -> int | None:
    if not value:
        return None
    match = re.match(r"^[-+]?\d+", value)
    if not match:
        return None
    return int(match.group(0))


def _parse_midi_value(value: str | None) -> int | None:
    number = _parse_int(value)
    if number is None or not 0 <= number <= 127:
        return None
    return number

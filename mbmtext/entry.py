from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

from .catalog import DEFAULT_CATALOG, DEFAULT_MARKER, ControlCodeCatalog
from .codes import ArgumentShape, ControlCode, scan_control_codes, validate_layout
from .encode import encode_text
from .sjis import MBM_TEXT_ENCODING, decode_cell, normalize_text

TERMINATOR = b"\xff\xff"


class ControlCodeFormatter:
    """Renders control codes as display text, one method per argument shape.

    The default output is the bracket syntax understood by ``encode_text``:
    ``[TT]``, ``[TT: 0xNNNN, ...]`` and ``[TT: "text"]``. Codes written with
    the alternate 0xF8 marker come out as ``[F8 TT...]`` instead, so the marker
    survives a round trip. Subclass and override individual methods for other
    presentations.
    """

    def format(self, code: ControlCode, entry: "MbmEntry") -> str:
        if code.shape is ArgumentShape.SHORT:
            return self.short_arguments(code, entry)
        if code.shape is ArgumentShape.INT:
            return self.int_arguments(code, entry)
        if code.shape is ArgumentShape.STRING:
            return self.string_argument(code, entry)
        return self.no_arguments(code, entry)

    def no_arguments(self, code: ControlCode, entry: "MbmEntry") -> str:
        return f"[{_type_label(code)}]"

    def short_arguments(self, code: ControlCode, entry: "MbmEntry") -> str:
        values = ", ".join(f"0x{value & 0xFFFF:04X}" for value in code.arguments)
        return f"[{_type_label(code)}: {values}]"

    def int_arguments(self, code: ControlCode, entry: "MbmEntry") -> str:
        values = ", ".join(f"0x{value & 0xFFFFFFFF:04X}" for value in code.arguments)
        return f"[{_type_label(code)}: {values}]"

    def string_argument(self, code: ControlCode, entry: "MbmEntry") -> str:
        return f'[{_type_label(code)}: "{code.string_argument}"]'


def _type_label(code: ControlCode) -> str:
    # Codes using the alternate marker keep it so the encoder can restore it.
    if code.marker == DEFAULT_MARKER:
        return f"{code.type:02X}"
    return f"{code.marker:02X} {code.type:02X}"


DEFAULT_FORMATTER = ControlCodeFormatter()


@dataclass
class MbmEntry:
    """One populated slot of an MBM archive.

    ``payload`` excludes the 0xFFFF terminator. ``index`` is the value found in
    the entry table row, which is not always the slot number.
    """

    index: int
    payload: bytes
    control_codes: List[ControlCode] = field(default_factory=list)

    @classmethod
    def from_payload(
        cls,
        index: int,
        payload: bytes,
        catalog: ControlCodeCatalog = DEFAULT_CATALOG,
        encoding: str = MBM_TEXT_ENCODING,
    ) -> "MbmEntry":
        payload = bytes(payload)
        codes = scan_control_codes(payload, catalog, encoding)
        validate_layout(codes, len(payload))
        return cls(index=index, payload=payload, control_codes=codes)

    @classmethod
    def from_text(
        cls,
        index: int,
        text: str,
        catalog: ControlCodeCatalog = DEFAULT_CATALOG,
        encoding: str = MBM_TEXT_ENCODING,
    ) -> "MbmEntry":
        return cls.from_payload(index, encode_text(text, catalog, encoding), catalog, encoding)

    def text(self, formatter: ControlCodeFormatter = DEFAULT_FORMATTER, encoding: str = MBM_TEXT_ENCODING) -> str:
        return render_entry(self, formatter, encoding)

    def to_bytes(self) -> bytes:
        return self.payload + TERMINATOR

    def describe_codes(self, catalog: ControlCodeCatalog = DEFAULT_CATALOG) -> List[str]:
        return [code.describe(catalog) for code in self.control_codes]


def render_entry(
    entry: MbmEntry,
    formatter: ControlCodeFormatter = DEFAULT_FORMATTER,
    encoding: str = MBM_TEXT_ENCODING,
) -> str:
    """Turn an entry payload into display text.

    Character cells are decoded two bytes at a time; at each control-code
    position the formatter output is emitted instead and the cursor skips the
    code's full width. The result is NFKC-normalised.
    """
    codes_by_position: Dict[int, ControlCode] = {code.position: code for code in entry.control_codes}
    payload = entry.payload
    parts: List[str] = []
    position = 0
    while position < len(payload):
        code = codes_by_position.get(position)
        if code is not None:
            parts.append(formatter.format(code, entry))
            position += code.width
        else:
            parts.append(decode_cell(payload[position : position + 2], encoding))
            position += 2
    return normalize_text("".join(parts))

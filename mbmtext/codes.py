from __future__ import annotations

import enum
import logging
import struct
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from .catalog import (
    CONTROL_MARKERS,
    DEFAULT_CATALOG,
    DEFAULT_MARKER,
    TELOP_IMMEDIATE,
    VOICE_BY_ID,
    VOICE_BY_PATH,
    ControlCodeCatalog,
)
from .errors import ControlCodeLayoutError
from .sjis import MBM_TEXT_ENCODING, decode_cell, normalize_text

log = logging.getLogger(__name__)

SHORT_WIDTH = 2
INT_WIDTH = 4
VOICE_ID_ARGUMENTS = 2


class ArgumentShape(enum.Enum):
    NONE = "none"
    SHORT = "short"
    INT = "int"
    STRING = "string"


@dataclass(frozen=True)
class ControlCode:
    """One control code found in an entry payload.

    ``position`` is the byte offset of the marker/tag unit. ``raw_string`` keeps
    the undecoded bytes of a string argument (without terminator or padding);
    ``string_argument`` is its normalised text.
    """

    type: int
    position: int
    marker: int = DEFAULT_MARKER
    shape: ArgumentShape = ArgumentShape.NONE
    arguments: Tuple[int, ...] = ()
    string_argument: str = ""
    raw_string: bytes = b""

    def __post_init__(self) -> None:
        has_numbers = bool(self.arguments)
        has_string = bool(self.string_argument or self.raw_string)
        if self.shape is ArgumentShape.NONE:
            valid = not has_numbers and not has_string
        elif self.shape in (ArgumentShape.SHORT, ArgumentShape.INT):
            valid = has_numbers and not has_string
        else:
            valid = not has_numbers and self.type in (TELOP_IMMEDIATE, VOICE_BY_PATH)
        if not valid:
            raise ValueError(
                f"Control code 0x{self.type:02X} does not carry a valid {self.shape.value} argument set"
            )

    @property
    def width(self) -> int:
        """Number of payload bytes the code occupies, arguments included."""
        if self.shape is ArgumentShape.SHORT:
            return 2 + SHORT_WIDTH * len(self.arguments)
        if self.shape is ArgumentShape.INT:
            return 2 + INT_WIDTH * len(self.arguments)
        if self.shape is ArgumentShape.STRING:
            if self.type == TELOP_IMMEDIATE:
                return 2 + len(self.raw_string) + 2
            width = 2 + len(self.raw_string) + 1
            if (self.position + width) % 2 == 1:
                width += 1
            return width
        return 2

    @property
    def end(self) -> int:
        return self.position + self.width

    def to_bytes(self) -> bytes:
        head = bytes((self.marker, self.type))
        if self.shape is ArgumentShape.SHORT:
            return head + struct.pack(f"<{len(self.arguments)}h", *self.arguments)
        if self.shape is ArgumentShape.INT:
            return head + struct.pack(f"<{len(self.arguments)}i", *self.arguments)
        if self.shape is ArgumentShape.STRING:
            if self.type == TELOP_IMMEDIATE:
                return head + self.raw_string + b"\x00\x00"
            body = head + self.raw_string + b"\x00"
            return body + b"\x00" * (self.width - len(body))
        return head

    def describe(self, catalog: ControlCodeCatalog = DEFAULT_CATALOG) -> str:
        label = f"{catalog.describe(self.type)} @ 0x{self.position:04X}"
        if self.shape in (ArgumentShape.SHORT, ArgumentShape.INT):
            mask = 0xFFFF if self.shape is ArgumentShape.SHORT else 0xFFFFFFFF
            return f"{label} ({', '.join(f'0x{value & mask:02X}' for value in self.arguments)})"
        if self.shape is ArgumentShape.STRING:
            return f'{label} ("{self.string_argument}")'
        return label


def _require(payload: bytes, start: int, size: int, tag: int, position: int) -> None:
    if start + size > len(payload):
        raise ControlCodeLayoutError(
            f"Control code 0x{tag:02X} at 0x{position:04X} runs past the end of a "
            f"{len(payload)}-byte payload"
        )


def read_control_code(
    payload: bytes,
    position: int,
    catalog: ControlCodeCatalog = DEFAULT_CATALOG,
    encoding: str = MBM_TEXT_ENCODING,
) -> ControlCode:
    """Parse the control code whose marker sits at ``position``."""
    if position + 2 > len(payload):
        raise ControlCodeLayoutError(f"Control-code marker at 0x{position:04X} has no type byte")
    marker, tag = payload[position], payload[position + 1]
    cursor = position + 2

    if tag == VOICE_BY_ID:
        _require(payload, cursor, INT_WIDTH * VOICE_ID_ARGUMENTS, tag, position)
        values = struct.unpack_from(f"<{VOICE_ID_ARGUMENTS}i", payload, cursor)
        return ControlCode(tag, position, marker, ArgumentShape.INT, tuple(values))

    if tag == TELOP_IMMEDIATE:
        end = cursor
        while True:
            _require(payload, end, 2, tag, position)
            if payload[end : end + 2] == b"\x00\x00":
                break
            end += 2
        raw = bytes(payload[cursor:end])
        text = "".join(decode_cell(raw[i : i + 2], encoding) for i in range(0, len(raw), 2))
        return ControlCode(
            tag, position, marker, ArgumentShape.STRING,
            string_argument=normalize_text(text), raw_string=raw,
        )

    if tag == VOICE_BY_PATH:
        end = payload.find(b"\x00", cursor)
        if end == -1:
            raise ControlCodeLayoutError(
                f"Voice path at 0x{position:04X} is missing its zero terminator"
            )
        raw = bytes(payload[cursor:end])
        code = ControlCode(
            tag, position, marker, ArgumentShape.STRING,
            string_argument=raw.decode("ascii", errors="replace"), raw_string=raw,
        )
        # The alignment byte must still be inside the payload.
        _require(payload, position, code.width, tag, position)
        return code

    if catalog.knows(tag):
        count = catalog.short_argument_count(tag)
    else:
        log.warning("Unknown control code type 0x%02X at 0x%04X; reading it without arguments", tag, position)
        count = 0
    if count == 0:
        return ControlCode(tag, position, marker)
    _require(payload, cursor, SHORT_WIDTH * count, tag, position)
    values = struct.unpack_from(f"<{count}h", payload, cursor)
    return ControlCode(tag, position, marker, ArgumentShape.SHORT, tuple(values))


def scan_control_codes(
    payload: bytes,
    catalog: ControlCodeCatalog = DEFAULT_CATALOG,
    encoding: str = MBM_TEXT_ENCODING,
) -> List[ControlCode]:
    """Return every control code in ``payload`` in position order.

    The payload is walked in 2-byte units. Units starting with a marker byte
    are control codes and the cursor skips their full width; anything else is
    a character cell and is left for the display formatter.
    """
    codes: List[ControlCode] = []
    position = 0
    while position < len(payload):
        if payload[position] in CONTROL_MARKERS:
            code = read_control_code(payload, position, catalog, encoding)
            codes.append(code)
            position = code.end
        else:
            position += 2
    return codes


def validate_layout(codes: Iterable[ControlCode], payload_length: int) -> None:
    """Raise ControlCodeLayoutError unless the codes fit the payload without overlapping."""
    previous_end = 0
    for code in sorted(codes, key=lambda item: item.position):
        if code.position % 2:
            raise ControlCodeLayoutError(f"Control code 0x{code.type:02X} at odd offset 0x{code.position:04X}")
        if code.position < previous_end:
            raise ControlCodeLayoutError(
                f"Control code 0x{code.type:02X} at 0x{code.position:04X} overlaps the previous code"
            )
        if code.position < 0 or code.end > payload_length:
            raise ControlCodeLayoutError(
                f"Control code 0x{code.type:02X} at 0x{code.position:04X} lies outside the "
                f"{payload_length}-byte payload"
            )
        previous_end = code.end

"""Turn edited display text back into MBM payload bytes."""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from .catalog import (
    CONTROL_MARKERS,
    DEFAULT_CATALOG,
    DEFAULT_MARKER,
    TELOP_IMMEDIATE,
    VOICE_BY_ID,
    VOICE_BY_PATH,
    ControlCodeCatalog,
)
from .codes import VOICE_ID_ARGUMENTS, ArgumentShape, ControlCode
from .errors import CellWidthError, MalformedPlaceholderError
from .sjis import MBM_TEXT_ENCODING, encode_literal

# Shortest bracketed span; a quoted argument may itself contain "]".
PLACEHOLDER_PATTERN = re.compile(r'\[(?:"[^"]*"|[^\]"])*?\]')

TOKEN_PATTERN = re.compile(
    r"^\[(?:(?P<marker>[0-9A-Fa-f]{2}) )?(?P<type>[0-9A-Fa-f]{2})(?::\s*(?P<args>.*?))?\s*\]$",
    re.DOTALL,
)
NUMBER_PATTERN = re.compile(r"^0[xX](?P<digits>[0-9A-Fa-f]+)$")


def find_placeholders(text: str) -> List[Tuple[int, str]]:
    """Return (character offset, token) for every placeholder in ``text``."""
    return [(match.start(), match.group()) for match in PLACEHOLDER_PATTERN.finditer(text)]


def _signed(value: int, bits: int) -> int:
    if value >= 1 << (bits - 1):
        return value - (1 << bits)
    return value


def _parse_numbers(token: str, offset: int, raw: str) -> List[int]:
    values: List[int] = []
    for part in raw.split(","):
        match = NUMBER_PATTERN.match(part.strip())
        if not match:
            raise MalformedPlaceholderError(token, offset, f"{part.strip()!r} is not a 0x-prefixed hex value")
        values.append(int(match.group("digits"), 16))
    return values


def parse_placeholder(
    token: str,
    offset: int = 0,
    position: int = 0,
    catalog: ControlCodeCatalog = DEFAULT_CATALOG,
    encoding: str = MBM_TEXT_ENCODING,
) -> ControlCode:
    """Build the control code a placeholder token stands for.

    ``offset`` is the token's character offset in the display text (for error
    messages); ``position`` is the byte offset the code will occupy.
    """
    match = TOKEN_PATTERN.match(token)
    if not match:
        raise MalformedPlaceholderError(token, offset, "expected [TT], [MM TT] or [TT: arguments]")

    marker = int(match.group("marker"), 16) if match.group("marker") else DEFAULT_MARKER
    if marker not in CONTROL_MARKERS:
        raise MalformedPlaceholderError(token, offset, f"0x{marker:02X} is not a control-code marker")
    tag = int(match.group("type"), 16)

    raw_args: Optional[str] = match.group("args")
    string_arg: Optional[str] = None
    numbers: List[int] = []
    if raw_args is not None:
        if len(raw_args) >= 2 and raw_args.startswith('"') and raw_args.endswith('"'):
            string_arg = raw_args[1:-1]
        elif raw_args:
            numbers = _parse_numbers(token, offset, raw_args)
        else:
            raise MalformedPlaceholderError(token, offset, "empty argument list")

    if tag in (TELOP_IMMEDIATE, VOICE_BY_PATH):
        if string_arg is None:
            raise MalformedPlaceholderError(token, offset, "expected a quoted string argument")
        try:
            if tag == TELOP_IMMEDIATE:
                raw = encode_literal(string_arg, encoding)
            else:
                raw = string_arg.encode("ascii")
        except UnicodeEncodeError as exc:
            raise MalformedPlaceholderError(token, offset, f"string argument cannot be encoded ({exc.reason})") from exc
        except CellWidthError as exc:
            raise MalformedPlaceholderError(token, offset, f"telop text must be double-width ({exc})") from exc
        if b"\x00" in raw:
            raise MalformedPlaceholderError(token, offset, "string argument contains a NUL character")
        return ControlCode(
            tag, position, marker, ArgumentShape.STRING, string_argument=string_arg, raw_string=raw
        )

    if string_arg is not None:
        raise MalformedPlaceholderError(token, offset, f"type 0x{tag:02X} takes no string argument")

    if tag == VOICE_BY_ID:
        if len(numbers) != VOICE_ID_ARGUMENTS:
            raise MalformedPlaceholderError(token, offset, f"expected {VOICE_ID_ARGUMENTS} arguments")
        if any(value > 0xFFFFFFFF for value in numbers):
            raise MalformedPlaceholderError(token, offset, "argument does not fit in 4 bytes")
        return ControlCode(
            tag, position, marker, ArgumentShape.INT, tuple(_signed(value, 32) for value in numbers)
        )

    expected = catalog.short_argument_count(tag) if catalog.knows(tag) else 0
    if len(numbers) != expected:
        raise MalformedPlaceholderError(token, offset, f"type 0x{tag:02X} takes {expected} argument(s)")
    if not numbers:
        return ControlCode(tag, position, marker)
    if any(value > 0xFFFF for value in numbers):
        raise MalformedPlaceholderError(token, offset, "argument does not fit in 2 bytes")
    return ControlCode(
        tag, position, marker, ArgumentShape.SHORT, tuple(_signed(value, 16) for value in numbers)
    )


def encode_text(
    text: str,
    catalog: ControlCodeCatalog = DEFAULT_CATALOG,
    encoding: str = MBM_TEXT_ENCODING,
) -> bytes:
    """Encode display text into payload bytes (terminator not included).

    Placeholders are located first. The literal text between them is
    normalised, widened to fullwidth forms and encoded one 2-byte cell per
    character (CellWidthError otherwise); each placeholder's
    control-code bytes go in at the byte offset its character offset maps to,
    with nothing left between it and its neighbours.
    """
    buffer = bytearray()
    cursor = 0
    for offset, token in find_placeholders(text):
        buffer += encode_literal(text[cursor:offset], encoding)
        code = parse_placeholder(token, offset, len(buffer), catalog, encoding)
        buffer += code.to_bytes()
        cursor = offset + len(token)
    buffer += encode_literal(text[cursor:], encoding)
    return bytes(buffer)

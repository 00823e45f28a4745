from __future__ import annotations

import unicodedata
from typing import Dict

from .catalog import CONTROL_MARKERS
from .errors import CellWidthError

# Shift-JIS as the games actually write it (Microsoft's code page 932).
MBM_TEXT_ENCODING = "cp932"

# Halfwidth -> fullwidth remapping applied before encoding. The decoder folds
# fullwidth forms to ASCII with NFKC, so this puts them back.
TO_FULLWIDTH: Dict[str, str] = {chr(code): chr(code + 0xFEE0) for code in range(0x21, 0x7F)}
TO_FULLWIDTH[" "] = "\u3000"

_FULLWIDTH_TABLE = str.maketrans(TO_FULLWIDTH)


def normalize_text(text: str) -> str:
    return unicodedata.normalize("NFKC", text)


def to_fullwidth(text: str) -> str:
    return text.translate(_FULLWIDTH_TABLE)


def decode_cell(cell: bytes, encoding: str = MBM_TEXT_ENCODING) -> str:
    """Decode one 2-byte character cell; undecodable bytes become U+FFFD."""
    return cell.decode(encoding, errors="replace")


def encode_literal(text: str, encoding: str = MBM_TEXT_ENCODING) -> bytes:
    """Encode edited text the way the games store it: normalised, then fullwidth.

    Every character must become one 2-byte cell that does not start with a
    control-code marker, otherwise the payload would fall out of step with
    the decoder.
    """
    cells = []
    for char in to_fullwidth(normalize_text(text)):
        cell = char.encode(encoding)
        if len(cell) != 2 or cell[0] in CONTROL_MARKERS:
            raise CellWidthError(char, cell)
        cells.append(cell)
    return b"".join(cells)

"""Exceptions raised while reading or writing MBM archives."""

from __future__ import annotations

from typing import Optional


class MbmFormatError(ValueError):
    """The archive bytes do not describe a usable MBM file."""


class ControlCodeLayoutError(MbmFormatError):
    """Control codes overlap, run past the payload, or sit off a 2-byte boundary."""


class MalformedPlaceholderError(ValueError):
    """A bracketed token in display text cannot be turned back into control-code bytes."""

    def __init__(self, token: str, offset: int, reason: str) -> None:
        super().__init__(f"Malformed placeholder {token!r} at character {offset}: {reason}")
        self.token = token
        self.offset = offset
        self.reason = reason


class CellWidthError(ValueError):
    """A character of edited text does not encode to exactly one 2-byte cell."""

    def __init__(self, char: str, encoded: bytes) -> None:
        super().__init__(f"{char!r} encodes to {encoded.hex()} and cannot fill a 2-byte text cell")
        self.char = char
        self.encoded = encoded


class EntryEncodeError(ValueError):
    """Encoding the display text of one archive slot failed."""

    def __init__(self, slot: int, cause: Optional[Exception] = None) -> None:
        message = f"Could not encode entry in slot {slot}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.slot = slot

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Mapping, Optional

# A control code occupies one 2-byte unit whose first byte is a marker and
# whose second byte is the type tag.
CONTROL_MARKERS = (0x80, 0xF8)
DEFAULT_MARKER = 0x80

# Tags whose arguments are not a plain list of shorts.
TELOP_IMMEDIATE = 0x12
VOICE_BY_ID = 0x13
VOICE_BY_PATH = 0x1B

TYPE_DESCRIPTIONS: Dict[int, str] = {
    0x01: "Linebreak",
    0x02: "New Page",
    0x04: "Text Color",
    0x06: "Wait for Input",
    0x10: "FlowScript String",
    0x11: "Type 1 Non-FlowScript String",
    0x12: "Set Telop (Imm.)",
    0x13: "VO Call (ID)",
    0x14: "Type 2 Non-FlowScript String",
    0x15: "Type 3 Non-FlowScript String",
    0x17: "Unknown (SSQ2 + SQ5 Only)",
    0x19: "Food Effect Value",
    0x1B: "VO Call (Path)",
    0x40: "Guild Name",
    0x41: "Item Name",
    0x42: "Enemy Name",
    0x43: "PC Name",
    0x44: "Ship Name",
    0x45: "Ingredient Icon + Name",
    0x46: "Conditional Linebreak",
    0x47: "Level Recommendation (QR)",
    0x48: "Enemy Name (QR/Req)",
    0x49: "Item Name (QR/Req)",
    0x4A: "Quantity (QR/Req)",
    0x50: "Quest Name (QR/Req)",
    0x51: "Reward (QR/Req)",
    0x52: "Floor (Req)",
    0x53: "Protag Name (EOU)",
    0x54: "Conditional Text Color",
    0x55: "Bustup Expression",
    0x56: "Frederica Name",
    0x57: "Guild House Name",
    0x58: "Unk Bustup Change",
    0x59: "Set Telop",
    0x5A: "Type 1 Data Section Value",
    0x5B: "Type 1 Data Section Value",
    0x5C: "Telop Off",
    0x5E: "Protag Chloe Name",
    0x5F: "Arianna Chloe Name",
    0x60: "Flavio Chloe Name",
    0x7A: "Unk Debug",
}

# Number of 2-byte arguments following each tag. Tags 0x12, 0x13 and 0x1B are
# decoded separately and do not appear here.
SHORT_ARGUMENT_COUNTS: Dict[int, int] = {
    # No arguments
    0x01: 0, 0x02: 0, 0x06: 0, 0x17: 0, 0x40: 0, 0x44: 0, 0x46: 0, 0x47: 0,
    0x50: 0, 0x51: 0, 0x52: 0, 0x53: 0, 0x56: 0, 0x57: 0, 0x5C: 0, 0x5E: 0,
    0x5F: 0, 0x60: 0,
    # One argument
    0x04: 1, 0x10: 1, 0x11: 1, 0x14: 1, 0x15: 1, 0x19: 1, 0x41: 1, 0x42: 1,
    0x43: 1, 0x45: 1, 0x48: 1, 0x49: 1, 0x4A: 1, 0x54: 1, 0x59: 1, 0x5A: 1,
    0x5B: 1, 0x7A: 1,
    # Two or more
    0x55: 2,
    0x58: 3,
}


class ControlCodeCatalog:
    """Read-only lookup of control-code descriptions and short-argument counts.

    A catalog is handed to the scanner and the encoder instead of being read
    from module globals, so a title with different tables can supply its own.
    """

    def __init__(
        self,
        descriptions: Mapping[int, str],
        short_argument_counts: Mapping[int, int],
    ) -> None:
        self._descriptions = MappingProxyType(dict(descriptions))
        self._short_argument_counts = MappingProxyType(dict(short_argument_counts))

    @property
    def descriptions(self) -> Mapping[int, str]:
        return self._descriptions

    @property
    def short_argument_counts(self) -> Mapping[int, int]:
        return self._short_argument_counts

    def describe(self, tag: int) -> str:
        return self._descriptions.get(tag, f"0x{tag:02X}")

    def short_argument_count(self, tag: int) -> Optional[int]:
        return self._short_argument_counts.get(tag)

    def knows(self, tag: int) -> bool:
        return tag in self._short_argument_counts

    def with_overrides(
        self,
        descriptions: Optional[Mapping[int, str]] = None,
        short_argument_counts: Optional[Mapping[int, int]] = None,
    ) -> "ControlCodeCatalog":
        """Return a new catalog with extra or replaced entries layered on top."""
        merged_descriptions = dict(self._descriptions)
        merged_descriptions.update(descriptions or {})
        merged_counts = dict(self._short_argument_counts)
        merged_counts.update(short_argument_counts or {})
        return ControlCodeCatalog(merged_descriptions, merged_counts)

    def __repr__(self) -> str:
        return f"ControlCodeCatalog({len(self._short_argument_counts)} tags)"


DEFAULT_CATALOG = ControlCodeCatalog(TYPE_DESCRIPTIONS, SHORT_ARGUMENT_COUNTS)

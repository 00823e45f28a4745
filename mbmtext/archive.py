from __future__ import annotations

import enum
import logging
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from .catalog import DEFAULT_CATALOG, ControlCodeCatalog
from .entry import DEFAULT_FORMATTER, TERMINATOR, ControlCodeFormatter, MbmEntry
from .errors import EntryEncodeError, MbmFormatError
from .sjis import MBM_TEXT_ENCODING

log = logging.getLogger(__name__)

MBM_MAGIC = b"MSG2"
MBM_VERSION = 0x00010000
# zero, magic, version, file size, entry count, entry table offset, 8 unused bytes
HEADER_STRUCT = struct.Struct("<I4sIIII8x")
# original index, payload length, payload offset, unused
ROW_STRUCT = struct.Struct("<iIII")
HEADER_SIZE = HEADER_STRUCT.size
ROW_SIZE = ROW_STRUCT.size


class TruncatedTableError(MbmFormatError):
    """The entry table runs past the end of the file."""


@dataclass(frozen=True)
class TableRow:
    index: int
    length: int
    offset: int
    reserved: int = 0

    @property
    def is_null(self) -> bool:
        # A zero offset can never point at a payload, so either field being
        # zero marks a reserved slot.
        return self.length == 0 or self.offset == 0

    def to_bytes(self) -> bytes:
        return ROW_STRUCT.pack(self.index, self.length, self.offset, self.reserved)


def read_row(data: bytes, offset: int) -> TableRow:
    if offset + ROW_SIZE > len(data):
        raise TruncatedTableError(f"Entry table row at 0x{offset:X} runs past end of file ({len(data)} bytes)")
    return TableRow(*ROW_STRUCT.unpack_from(data, offset))


class BoundaryState(enum.Enum):
    SCANNING_UNBOUNDED = "scanning-unbounded"
    BOUNDARY_FIXED = "boundary-fixed"


@dataclass
class TableBoundary:
    """Tracks where the entry table ends.

    The header's entry count is unreliable, so the table is taken to end where
    the first populated row's payload starts. Until such a row is seen the
    scan is bounded only by the end of the file.
    """

    state: BoundaryState = BoundaryState.SCANNING_UNBOUNDED
    end: Optional[int] = None

    def observe(self, row: TableRow) -> None:
        if self.state is BoundaryState.SCANNING_UNBOUNDED and not row.is_null:
            self.state = BoundaryState.BOUNDARY_FIXED
            self.end = row.offset
            log.debug("Entry table ends at 0x%X", row.offset)

    def allows(self, offset: int) -> bool:
        if self.state is BoundaryState.SCANNING_UNBOUNDED:
            return True
        return offset < self.end


@dataclass
class MbmArchive:
    """An MBM ("MSG2") text archive.

    Slots hold ``None`` where the table reserves a row without a string.
    ``null_entries_write_index`` records whether reserved rows carry their
    slot number as index (EO5, EON) or always zero (EO3 to EO2U).
    """

    path: Optional[Path] = None
    entries: List[Optional[MbmEntry]] = field(default_factory=list)
    entry_ids: List[int] = field(default_factory=list)
    null_entries_write_index: bool = False
    entry_table_end: Optional[int] = None
    declared_entry_count: int = 0
    catalog: ControlCodeCatalog = DEFAULT_CATALOG
    encoding: str = MBM_TEXT_ENCODING

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, slot: int) -> Optional[MbmEntry]:
        return self.entries[slot]

    def __iter__(self) -> Iterator[Optional[MbmEntry]]:
        return iter(self.entries)

    @property
    def entry_count(self) -> int:
        return sum(1 for entry in self.entries if entry is not None)

    @classmethod
    def load(
        cls,
        path: Path,
        catalog: ControlCodeCatalog = DEFAULT_CATALOG,
        encoding: str = MBM_TEXT_ENCODING,
    ) -> "MbmArchive":
        archive = cls.from_bytes(path.read_bytes(), catalog=catalog, encoding=encoding, source=str(path))
        archive.path = path
        return archive

    @classmethod
    def from_bytes(
        cls,
        data: bytes,
        catalog: ControlCodeCatalog = DEFAULT_CATALOG,
        encoding: str = MBM_TEXT_ENCODING,
        source: str = "<bytes>",
    ) -> "MbmArchive":
        if len(data) < HEADER_SIZE:
            raise MbmFormatError(f"{source} is too short for an MBM header ({len(data)} bytes)")
        _zero, magic, _version, _file_size, declared_count, table_offset = HEADER_STRUCT.unpack_from(data, 0)
        if magic != MBM_MAGIC:
            raise MbmFormatError(f"{source} is not an MBM file (magic {magic!r})")

        archive = cls(declared_entry_count=declared_count, catalog=catalog, encoding=encoding)
        try:
            archive._read_table(data, table_offset)
        except TruncatedTableError:
            log.warning("%s seems to be an empty MBM", source)
            archive.entries = []
            archive.entry_ids = []
            archive.null_entries_write_index = False
            archive.entry_table_end = None
        return archive

    def _read_table(self, data: bytes, table_offset: int) -> None:
        boundary = TableBoundary()
        cursor = table_offset
        while boundary.allows(cursor):
            row = read_row(data, cursor)
            cursor += ROW_SIZE
            boundary.observe(row)
            self.entry_ids.append(row.index)
            if row.is_null:
                self.entries.append(None)
                if row.index != 0 and not self.null_entries_write_index:
                    log.debug("Reserved row at 0x%X carries index %d", cursor - ROW_SIZE, row.index)
                    self.null_entries_write_index = True
                continue
            self.entries.append(self._read_entry(data, row))
        self.entry_table_end = boundary.end

    def _read_entry(self, data: bytes, row: TableRow) -> MbmEntry:
        end = row.offset + row.length
        if end > len(data):
            raise MbmFormatError(
                f"Entry {row.index} payload 0x{row.offset:X}-0x{end:X} runs past end of file ({len(data)} bytes)"
            )
        raw = data[row.offset : end]
        if raw[-2:] != TERMINATOR:
            log.warning("Entry %d does not end with 0xFFFF", row.index)
        return MbmEntry.from_payload(row.index, raw[:-2], self.catalog, self.encoding)

    def texts(self, formatter: ControlCodeFormatter = DEFAULT_FORMATTER) -> List[Optional[str]]:
        """Display text for every slot (None for reserved slots)."""
        return [entry.text(formatter, self.encoding) if entry is not None else None for entry in self.entries]

    def _encode_slot(self, slot: int, text: Optional[str]) -> Optional[MbmEntry]:
        if text is None:
            return None
        current = self.entries[slot] if slot < len(self.entries) else None
        index = current.index if current is not None else slot
        try:
            return MbmEntry.from_text(index, text, self.catalog, self.encoding)
        except ValueError as exc:
            raise EntryEncodeError(slot, exc) from exc

    def _encode_all(self, texts: Sequence[Optional[str]]) -> List[Optional[MbmEntry]]:
        if len(texts) != len(self.entries):
            raise ValueError(f"Expected {len(self.entries)} texts, got {len(texts)}")
        return [self._encode_slot(slot, text) for slot, text in enumerate(texts)]

    def set_text(self, slot: int, text: Optional[str]) -> None:
        """Replace one slot from display text; ``None`` turns it into a reserved slot."""
        entry = self._encode_slot(slot, text)
        self.entries[slot] = entry
        self.entry_ids[slot] = entry.index if entry is not None else self._null_index(slot)

    def apply_texts(self, texts: Sequence[Optional[str]]) -> None:
        """Replace every slot at once. Nothing changes if any slot fails to encode."""
        self.entries = self._encode_all(texts)
        self.entry_ids = [
            entry.index if entry is not None else self._null_index(slot)
            for slot, entry in enumerate(self.entries)
        ]

    def append_entry(self, text: Optional[str]) -> int:
        slot = len(self.entries)
        self.entries.append(None)
        self.entry_ids.append(self._null_index(slot))
        try:
            self.set_text(slot, text)
        except EntryEncodeError:
            self.entries.pop()
            self.entry_ids.pop()
            raise
        return slot

    def clear_entry(self, slot: int) -> None:
        self.set_text(slot, None)

    def _null_index(self, slot: int) -> int:
        return slot if self.null_entries_write_index else 0

    def build_rows(self, entries: Sequence[Optional[MbmEntry]]) -> List[TableRow]:
        """Lay out table rows for ``entries``; payloads follow the table in slot order."""
        rows: List[TableRow] = []
        cursor = HEADER_SIZE + ROW_SIZE * len(entries)
        for slot, entry in enumerate(entries):
            if entry is None:
                rows.append(TableRow(self._null_index(slot), 0, 0))
                continue
            length = len(entry.to_bytes())
            rows.append(TableRow(entry.index, length, cursor))
            cursor += length
        return rows

    def to_bytes(self, texts: Optional[Sequence[Optional[str]]] = None) -> bytes:
        """Serialise the archive.

        When ``texts`` is given each slot is encoded from that display text
        instead of the stored payloads; the archive itself is not modified.
        """
        entries = self.entries if texts is None else self._encode_all(texts)
        rows = self.build_rows(entries)
        body = bytearray()
        for row in rows:
            body.extend(row.to_bytes())
        for entry in entries:
            if entry is not None:
                body.extend(entry.to_bytes())
        file_size = HEADER_SIZE + len(body)
        header = HEADER_STRUCT.pack(0, MBM_MAGIC, MBM_VERSION, file_size, len(entries), HEADER_SIZE)
        log.debug("Wrote %d rows, %d bytes", len(rows), file_size)
        return header + bytes(body)

    def save(self, path: Optional[Path] = None) -> None:
        target = path or self.path
        if target is None:
            raise ValueError("No path supplied for saving MbmArchive.")
        target.write_bytes(self.to_bytes())

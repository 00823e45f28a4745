"""Reading and writing whole MBM archives."""

import logging
import struct

import pytest

from mbmtext.archive import (
    HEADER_SIZE,
    ROW_SIZE,
    BoundaryState,
    MbmArchive,
    TableBoundary,
    TableRow,
)
from mbmtext.errors import EntryEncodeError, MbmFormatError

HEADER = struct.Struct("<I4sIIII8x")
ROW = struct.Struct("<iIII")


def sjis(text: str) -> bytes:
    return text.encode("cp932")


def build_mbm(slots, null_rows_carry_slot=False, declared_count=None, magic=b"MSG2"):
    """Lay out an archive by hand: header, rows, then payloads in slot order."""
    rows = []
    blobs = []
    cursor = HEADER_SIZE + ROW_SIZE * len(slots)
    for slot, item in enumerate(slots):
        if item is None:
            rows.append(ROW.pack(slot if null_rows_carry_slot else 0, 0, 0, 0))
            continue
        index, payload = item
        blob = payload + b"\xff\xff"
        rows.append(ROW.pack(index, len(blob), cursor, 0))
        blobs.append(blob)
        cursor += len(blob)
    count = len(slots) if declared_count is None else declared_count
    header = HEADER.pack(0, magic, 0x00010000, 0, count, HEADER_SIZE)
    return header + b"".join(rows) + b"".join(blobs)


def read_rows(data, count):
    return [ROW.unpack_from(data, HEADER_SIZE + slot * ROW_SIZE) for slot in range(count)]


def test_reads_entries_and_reserved_slots():
    data = build_mbm([None, (1, sjis("Ｈｉ") + b"\x80\x01"), None, (3, sjis("ｘ"))])
    archive = MbmArchive.from_bytes(data)
    assert len(archive) == 4
    assert archive[0] is None and archive[2] is None
    assert archive[1].text() == "Hi[01]"
    assert archive.texts() == [None, "Hi[01]", None, "x"]
    assert archive.entry_ids == [0, 1, 0, 3]
    assert archive.entry_count == 2
    assert archive.entry_table_end == HEADER_SIZE + 4 * ROW_SIZE
    assert archive.null_entries_write_index is False


def test_table_ends_at_first_payload_regardless_of_declared_count():
    data = build_mbm(
        [None, None, None, (3, sjis("Ａ")), (4, sjis("Ｂ"))],
        declared_count=99,
    )
    archive = MbmArchive.from_bytes(data)
    assert archive.declared_entry_count == 99
    assert len(archive) == 5
    assert archive.entry_table_end == HEADER_SIZE + 5 * ROW_SIZE
    assert archive[3].index == 3


def test_payload_bytes_after_boundary_are_not_read_as_rows():
    # Rows 0-2 reserved, row 3 points at X; the 16 bytes at X would parse as
    # another populated row if the scan did not stop there.
    boundary = HEADER_SIZE + 4 * ROW_SIZE
    fake_row = ROW.pack(7, 4, HEADER_SIZE, 0)[:14] + b"\xff\xff"
    rows = [ROW.pack(0, 0, 0, 0)] * 3 + [ROW.pack(3, len(fake_row), boundary, 0)]
    data = HEADER.pack(0, b"MSG2", 0x10000, 0, 1, HEADER_SIZE) + b"".join(rows) + fake_row
    archive = MbmArchive.from_bytes(data)
    assert len(archive) == 4
    assert archive.entry_table_end == boundary
    assert archive[3].payload == fake_row[:14]


def test_null_rows_with_indices_mark_later_variant():
    data = build_mbm([(0, sjis("ａ")), None, None], null_rows_carry_slot=True)
    archive = MbmArchive.from_bytes(data)
    assert archive.null_entries_write_index is True
    assert archive.entry_ids == [0, 1, 2]


def test_null_rows_without_indices_mark_earlier_variant():
    data = build_mbm([(0, sjis("ａ")), None, None])
    assert MbmArchive.from_bytes(data).null_entries_write_index is False


@pytest.mark.parametrize("carry_slot", [True, False])
def test_rewrite_preserves_null_row_indexing(carry_slot):
    data = build_mbm([(0, sjis("ａ")), None, (2, sjis("ｂ")), None], null_rows_carry_slot=carry_slot)
    archive = MbmArchive.from_bytes(data)
    rewritten = archive.to_bytes()
    rows = read_rows(rewritten, 4)
    assert [row[0] for row in rows] == ([0, 1, 2, 3] if carry_slot else [0, 0, 2, 0])
    assert MbmArchive.from_bytes(rewritten).null_entries_write_index is carry_slot


def test_truncated_table_is_treated_as_empty(caplog):
    data = HEADER.pack(0, b"MSG2", 0x10000, 0, 3, HEADER_SIZE) + b"\x00" * 8
    with caplog.at_level(logging.WARNING):
        archive = MbmArchive.from_bytes(data, source="truncated.mbm")
    assert len(archive) == 0
    assert archive.entry_table_end is None
    assert "truncated.mbm seems to be an empty MBM" in caplog.text


def test_table_of_only_reserved_rows_is_empty():
    data = build_mbm([None, None], null_rows_carry_slot=True)
    archive = MbmArchive.from_bytes(data)
    assert len(archive) == 0
    assert archive.null_entries_write_index is False


def test_bad_magic_is_rejected():
    with pytest.raises(MbmFormatError):
        MbmArchive.from_bytes(build_mbm([(0, sjis("ａ"))], magic=b"MSG1"))
    with pytest.raises(MbmFormatError):
        MbmArchive.from_bytes(b"\x00" * 8)


def test_payload_past_end_of_file_is_rejected():
    data = build_mbm([(0, sjis("ａｂｃ"))])
    with pytest.raises(MbmFormatError):
        MbmArchive.from_bytes(data[:-3])


def test_unmodified_text_rewrites_identical_payloads():
    data = build_mbm(
        [
            None,
            (1, sjis("Ｈｅｌｌｏ") + b"\x80\x01" + sjis("Ｗｏｒｌｄ")),
            (2, b"\x80\x04\x02\x00" + sjis("色") + b"\x80\x13" + struct.pack("<2i", 5, 6)),
            None,
            (4, b"\x80\x12" + sjis("テロップ") + b"\x00\x00" + b"\x80\x1Bvo01\x00\x00"),
        ]
    )
    archive = MbmArchive.from_bytes(data)
    rewritten = archive.to_bytes(archive.texts())
    assert rewritten[HEADER_SIZE:] == data[HEADER_SIZE:]
    assert archive.to_bytes()[HEADER_SIZE:] == data[HEADER_SIZE:]


def test_written_header_fields():
    archive = MbmArchive.from_bytes(build_mbm([None, (1, sjis("ａ"))]))
    data = archive.to_bytes()
    zero, magic, version, file_size, count, table_offset = HEADER.unpack_from(data, 0)
    assert (zero, magic, version) == (0, b"MSG2", 0x00010000)
    assert file_size == len(data)
    assert count == 2
    assert table_offset == HEADER_SIZE
    assert read_rows(data, 2)[1] == (1, 4, HEADER_SIZE + 2 * ROW_SIZE, 0)


def test_new_archive_round_trips_through_writer():
    archive = MbmArchive()
    archive.append_entry("Hello[01]World")
    archive.append_entry(None)
    archive.append_entry('[12: "テスト"]Fine.[04: 0x0003]')
    reread = MbmArchive.from_bytes(archive.to_bytes())
    assert reread.texts() == ["Hello[01]World", None, '[12: "テスト"]Fine.[04: 0x0003]']
    assert reread.entry_ids == [0, 0, 2]


def test_set_text_replaces_one_slot():
    archive = MbmArchive.from_bytes(build_mbm([(5, sjis("ａ")), None]))
    archive.set_text(0, "b[02]")
    archive.set_text(1, "c")
    assert archive.texts() == ["b[02]", "c"]
    assert archive[0].index == 5
    assert archive.entry_ids == [5, 1]
    archive.clear_entry(0)
    assert archive[0] is None
    assert archive.entry_ids == [0, 1]


def test_encode_failure_names_the_slot_and_keeps_entry():
    archive = MbmArchive.from_bytes(build_mbm([(0, sjis("ａ")), (1, sjis("ｂ"))]))
    with pytest.raises(EntryEncodeError) as info:
        archive.set_text(1, "bad[04]")
    assert info.value.slot == 1
    assert archive.texts() == ["a", "b"]


def test_apply_texts_is_all_or_nothing():
    archive = MbmArchive.from_bytes(build_mbm([(0, sjis("ａ")), (1, sjis("ｂ"))]))
    with pytest.raises(EntryEncodeError):
        archive.apply_texts(["x", "[zz]"])
    assert archive.texts() == ["a", "b"]
    with pytest.raises(ValueError):
        archive.apply_texts(["x"])
    archive.apply_texts(["x", None])
    assert archive.texts() == ["x", None]


def test_to_bytes_with_texts_leaves_archive_untouched():
    archive = MbmArchive.from_bytes(build_mbm([(0, sjis("ａ"))]))
    data = archive.to_bytes(["changed"])
    assert MbmArchive.from_bytes(data).texts() == ["changed"]
    assert archive.texts() == ["a"]
    with pytest.raises(EntryEncodeError):
        archive.to_bytes(["[zz]"])


def test_failed_append_leaves_no_slot():
    archive = MbmArchive()
    with pytest.raises(EntryEncodeError):
        archive.append_entry("[13]")
    assert len(archive) == 0


def test_save_and_load(tmp_path):
    source = tmp_path / "msg.mbm"
    source.write_bytes(build_mbm([(0, sjis("ａ")), None]))
    archive = MbmArchive.load(source)
    assert archive.path == source
    archive.set_text(0, "edited[01]")
    archive.save()
    assert MbmArchive.load(source).texts() == ["edited[01]", None]
    with pytest.raises(ValueError):
        MbmArchive().save()


def test_table_boundary_states():
    boundary = TableBoundary()
    assert boundary.state is BoundaryState.SCANNING_UNBOUNDED
    assert boundary.allows(10**9)
    boundary.observe(TableRow(0, 0, 0))
    assert boundary.state is BoundaryState.SCANNING_UNBOUNDED
    boundary.observe(TableRow(1, 4, 0x60))
    assert boundary.state is BoundaryState.BOUNDARY_FIXED
    assert boundary.end == 0x60
    boundary.observe(TableRow(2, 4, 0x40))
    assert boundary.end == 0x60
    assert boundary.allows(0x50)
    assert not boundary.allows(0x60)

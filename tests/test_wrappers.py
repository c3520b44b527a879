import struct

import pytest

from bearpe.buffer import BufferAccessError, ByteBuffer, ParserError
from bearpe.executable import AddrType, DataType, ExeArch, ExeBits, Executable
from bearpe.wrappers import ElementWrapper, NodeWrapper

HEADER_OFFSET = 4
TABLE_BASE = 0x10
ENTRY_SIZE = 4
HEADER_DATA = bytes(HEADER_OFFSET) + struct.pack("<HHI", 0x5A4D, 3, 0xDEADBEEF)


class FlatExe(Executable):
    def __init__(self, buffer, bits=ExeBits.BITS_32):
        super().__init__(buffer, bits)

    def arch(self):
        return ExeArch.INTEL

    def mapped_size(self, addr_type):
        return self.raw_size

    def alignment(self, addr_type):
        return 0

    def image_base(self):
        return 0

    def entry_point(self, addr_type=AddrType.RVA):
        return 0

    def raw_to_rva(self, raw):
        return raw

    def rva_to_raw(self, rva):
        return rva

    def wrap(self):
        pass


class Header(ElementWrapper):
    name = "Header"

    def __init__(self, exe, present=True):
        super().__init__(exe)
        self.present = present

    def offset(self):
        return HEADER_OFFSET if self.present else None

    def _layout(self):
        return (("Magic", 2), ("Count", 2), ("Value", 4))

    def addr_type(self, field_id):
        return AddrType.RVA if field_id == 2 else AddrType.NOT_ADDR


class Entry(NodeWrapper):
    name = "Entry"

    def __init__(self, exe, parent, index, base):
        super().__init__(exe, parent, index)
        self.base = base

    def offset(self):
        start = self.base + ENTRY_SIZE * self.entry_num
        return start if self.exe.buffer.contains_block(start, ENTRY_SIZE) else None

    def _layout(self):
        return (("Value", ENTRY_SIZE),)


class Table(NodeWrapper):
    name = "Table"

    def offset(self):
        return TABLE_BASE

    def fields_count(self):
        return self.entries_count()

    def _load_next_entry(self, index):
        entry = Entry(self.exe, self, index, TABLE_BASE)
        if entry.offset() is None or entry.num_value(0) == 0:
            return None
        return entry


def test_field_layout_is_contiguous():
    hdr = Header(FlatExe(ByteBuffer(HEADER_DATA)))
    assert hdr.fields_count() == 3
    assert hdr.field_offset(0) == HEADER_OFFSET
    for field_id in range(hdr.fields_count() - 1):
        assert hdr.field_offset(field_id + 1) == hdr.field_offset(field_id) + hdr.field_size(field_id)
    assert hdr.size() == sum(hdr.field_size(i) for i in range(hdr.fields_count()))


def test_field_names_and_types():
    hdr = Header(FlatExe(ByteBuffer(HEADER_DATA)))
    assert [hdr.field_name(i) for i in range(3)] == ["Magic", "Count", "Value"]
    assert hdr.addr_type(2) == AddrType.RVA
    assert hdr.data_type(0) == DataType.INT
    assert hdr.translate_field_content(0) == ""


def test_num_values():
    hdr = Header(FlatExe(ByteBuffer(HEADER_DATA)))
    assert hdr.num_value(0) == 0x5A4D
    assert hdr.num_value(1) == 3
    assert hdr.num_value(2) == 0xDEADBEEF


def test_set_num_value_round_trip():
    hdr = Header(FlatExe(ByteBuffer(HEADER_DATA)))
    hdr.set_num_value(1, 0x77)
    assert hdr.num_value(1) == 0x77
    assert hdr.num_value(0) == 0x5A4D


def test_wrapped_value_reads_field():
    hdr = Header(FlatExe(ByteBuffer(HEADER_DATA)))
    wrapped = hdr.wrapped_value(2)
    assert wrapped.size == 4
    assert wrapped.value() == 0xDEADBEEF


def test_content_matches_buffer():
    exe = FlatExe(ByteBuffer(HEADER_DATA))
    hdr = Header(exe)
    assert hdr.content() == exe.buffer.content[HEADER_OFFSET:HEADER_OFFSET + hdr.size()]


def test_unknown_field_raises():
    hdr = Header(FlatExe(ByteBuffer(HEADER_DATA)))
    with pytest.raises(IndexError):
        hdr.field_offset(3)
    with pytest.raises(IndexError):
        hdr.field_name(-1)


def test_missing_structure():
    hdr = Header(FlatExe(ByteBuffer(HEADER_DATA)), present=False)
    assert hdr.size() == 0
    assert hdr.field_offset(0) is None
    assert not hdr.wrapped_value(0).is_valid()
    with pytest.raises(BufferAccessError):
        hdr.num_value(0)


def table_exe(extra=bytes(12)):
    return FlatExe(ByteBuffer(bytes(TABLE_BASE) + struct.pack("<III", 1, 2, 3) + extra))


def test_table_loads_entries():
    table = Table(table_exe())
    table.wrap()
    assert table.entries_count() == 3
    assert [entry.num_value(0) for entry in table] == [1, 2, 3]
    assert table.last_entry().num_value(0) == 3
    assert table.sub_fields_count() == 1
    assert table.subfield_offset(1, 0) == table.entry_at(1).offset()
    assert table.subfield_name(0, 0) == "Value"


def test_entry_at_out_of_range():
    table = Table(table_exe())
    table.wrap()
    with pytest.raises(IndexError):
        table.entry_at(3)


def test_empty_table():
    table = Table(FlatExe(ByteBuffer(bytes(TABLE_BASE + ENTRY_SIZE))))
    table.wrap()
    assert table.entries_count() == 0
    assert table.last_entry() is None
    assert not table.can_add_entry()


def test_add_entry_copies_content():
    exe = table_exe(extra=bytes(12) + struct.pack("<I", 7))
    table = Table(exe)
    table.wrap()
    assert table.can_add_entry()
    source = Entry(exe, None, 0, len(exe.buffer) - ENTRY_SIZE)
    added = table.add_entry(source)
    assert table.entries_count() == 4
    assert added.num_value(0) == 7
    assert added.parent is table


def test_add_entry_wrong_type_raises():
    exe = table_exe()
    table = Table(exe)
    table.wrap()
    with pytest.raises(ParserError):
        table.add_entry(Header(exe))
    assert table.entries_count() == 3


def test_add_entry_without_space_raises():
    exe = table_exe(extra=b"")
    table = Table(exe)
    table.wrap()
    assert not table.can_add_entry()
    with pytest.raises(ParserError):
        table.add_entry(Entry(exe, None, 0, TABLE_BASE))


def test_bitness_follows_executable():
    hdr = Header(FlatExe(ByteBuffer(bytes(16)), ExeBits.BITS_64))
    assert hdr.is_bit64
    assert not hdr.is_bit32
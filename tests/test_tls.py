import struct

import pytest

from bearpe.buffer import BufferAccessError, ByteBuffer
from bearpe.executable import AddrType, ExeArch, ExeBits, Executable
from bearpe.tls import TlsCallback, TlsDirectory, TlsField

BASE = 0x400000
DIR_RVA = 0x20
CALLBACKS_RVA = 0x80


class FlatExe(Executable):
    def __init__(self, data, bits=ExeBits.BITS_32):
        super().__init__(ByteBuffer(data), bits)

    def arch(self):
        return ExeArch.INTEL

    def mapped_size(self, addr_type):
        return self.raw_size

    def alignment(self, addr_type):
        return 0

    def image_base(self):
        return BASE

    def entry_point(self, addr_type=AddrType.RVA):
        return 0

    def raw_to_rva(self, raw):
        return raw if 0 <= raw < self.raw_size else None

    def rva_to_raw(self, rva):
        return rva if 0 <= rva < self.raw_size else None

    def wrap(self):
        pass


def make_exe(callbacks, bits=ExeBits.BITS_32, callbacks_va=BASE + CALLBACKS_RVA):
    data = bytearray(0x100)
    ptr = "Q" if bits == ExeBits.BITS_64 else "I"
    directory = struct.pack(
        f"<{ptr}{ptr}{ptr}{ptr}II",
        BASE + 0x40, BASE + 0x48, BASE + 0x50, callbacks_va, 0, 0,
    )
    data[DIR_RVA:DIR_RVA + len(directory)] = directory
    table = struct.pack(f"<{len(callbacks)}{ptr}", *callbacks)
    data[CALLBACKS_RVA:CALLBACKS_RVA + len(table)] = table
    return FlatExe(bytes(data), bits)


def test_32bit_callbacks():
    exe = make_exe([BASE + 0x1000, BASE + 0x1010, 0])
    tls = TlsDirectory(exe, DIR_RVA)
    assert [cb.value() for cb in tls] == [BASE + 0x1000, BASE + 0x1010]
    assert tls.entries_count() == 2


def test_32bit_directory_size_and_fields():
    tls = TlsDirectory(make_exe([0]), DIR_RVA)
    assert tls.size() == 24
    assert tls.field_size(TlsField.CALLBACKS_ADDR) == 4
    assert tls.num_value(TlsField.START_ADDR) == BASE + 0x40
    assert tls.num_value(TlsField.CALLBACKS_ADDR) == BASE + CALLBACKS_RVA


def test_64bit_callbacks_and_size():
    exe = make_exe([BASE + 0x2000, 0], bits=ExeBits.BITS_64)
    tls = TlsDirectory(exe, DIR_RVA)
    assert tls.size() == 40
    assert tls.field_size(TlsField.CALLBACKS_ADDR) == 8
    assert [cb.value() for cb in tls] == [BASE + 0x2000]
    assert tls.entry_at(0).size() == tls.field_size(TlsField.CALLBACKS_ADDR)


def test_callback_raw_offsets_follow_the_array():
    exe = make_exe([BASE + 0x1000, BASE + 0x1010, 0])
    tls = TlsDirectory(exe, DIR_RVA)
    first, second = tls.entries
    assert first.raw_offset() == exe.to_raw(tls.num_value(TlsField.CALLBACKS_ADDR), AddrType.VA)
    assert second.raw_offset() - first.raw_offset() == first.size()


def test_no_callbacks_when_address_is_zero():
    tls = TlsDirectory(make_exe([BASE + 0x1000, 0], callbacks_va=0), DIR_RVA)
    assert len(tls) == 0
    assert TlsCallback(tls, 0).raw_offset() is None


def test_absent_directory():
    tls = TlsDirectory(make_exe([BASE + 0x1000, 0]), 0x1000)
    assert tls.size() == 0
    assert len(tls) == 0
    with pytest.raises(BufferAccessError):
        tls.num_value(TlsField.CALLBACKS_ADDR)


def test_unknown_bitness_has_no_directory():
    exe = make_exe([BASE + 0x1000, 0])
    exe._bit_mode = ExeBits.UNKNOWN
    tls = TlsDirectory(exe, DIR_RVA)
    assert tls.offset() is None
    assert tls.size() == 0


def test_field_names():
    tls = TlsDirectory(make_exe([0]), DIR_RVA)
    assert tls.field_name(TlsField.START_ADDR) == "StartAddressOfRawData"
    assert tls.field_name(TlsField.CALLBACKS_ADDR) == "AddressOfCallBacks"
    assert tls.field_name(TlsField.CHARACT) == "Characteristics"
    assert tls.field_name(99) == "TLS"


def test_addr_types():
    tls = TlsDirectory(make_exe([0]), DIR_RVA)
    assert tls.addr_type(TlsField.START_ADDR) == AddrType.VA
    assert tls.addr_type(TlsField.CALLBACKS_ADDR) == AddrType.VA
    assert tls.addr_type(TlsField.ZEROF_SIZE) == AddrType.NOT_ADDR
    assert tls.addr_type(TlsField.CHARACT) == AddrType.NOT_ADDR


def test_callback_description():
    tls = TlsDirectory(make_exe([BASE + 0x1000, 0]), DIR_RVA)
    callback = tls.entry_at(0)
    assert callback.field_name(0) == "TLS Callback"
    assert callback.addr_type(0) == AddrType.VA
    assert callback.parent is tls


def test_rewrap_after_change():
    exe = make_exe([BASE + 0x1000, 0])
    tls = TlsDirectory(exe, DIR_RVA)
    exe.buffer.set_num_value(CALLBACKS_RVA + 4, 4, BASE + 0x3000)
    tls.wrap()
    assert [cb.value() for cb in tls] == [BASE + 0x1000, BASE + 0x3000]
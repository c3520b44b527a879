import pytest

from bearpe.buffer import BufferAccessError, ByteBuffer, ParserError
from bearpe.executable import (
    AddrType,
    DataType,
    ExeArch,
    ExeBits,
    Executable,
    WrappedValue,
)

IMAGE_BASE = 0x400000
EP = 0x10
DATA = bytes(range(0x40))


class FlatExe(Executable):
    """An image where file offsets equal RVAs."""

    def __init__(self, buffer, bits=ExeBits.BITS_32, resizable=False):
        self.resizable = resizable
        self.wrap_calls = 0
        super().__init__(buffer, bits)

    def arch(self):
        return ExeArch.INTEL

    def mapped_size(self, addr_type):
        return self.raw_size

    def alignment(self, addr_type):
        return 0

    def image_base(self):
        return IMAGE_BASE

    def entry_point(self, addr_type=AddrType.RVA):
        return self.convert_addr(EP, AddrType.RVA, addr_type)

    def raw_to_rva(self, raw):
        return raw if 0 <= raw < self.raw_size else None

    def rva_to_raw(self, rva):
        return rva if 0 <= rva < self.raw_size else None

    def wrap(self):
        self.wrap_calls += 1

    def can_resize(self, new_size):
        return self.resizable


class NamedThing:
    name = "Hdr"


def test_rva_va_round_trip():
    exe = FlatExe(ByteBuffer(DATA))
    va = exe.rva_to_va(0x20)
    assert va == IMAGE_BASE + 0x20
    assert exe.va_to_rva(va) == 0x20


def test_va_below_base_has_no_rva():
    exe = FlatExe(ByteBuffer(DATA))
    assert exe.va_to_rva(IMAGE_BASE - 1) is None
    assert exe.rva_to_va(None) is None


def test_va_to_raw_accepts_rva_like_values():
    exe = FlatExe(ByteBuffer(DATA))
    assert exe.va_to_raw(IMAGE_BASE + 5) == 5
    assert exe.va_to_raw(5) == 5


@pytest.mark.parametrize("kind", [AddrType.RAW, AddrType.RVA, AddrType.VA])
def test_convert_same_type_is_identity(kind):
    exe = FlatExe(ByteBuffer(DATA))
    assert exe.convert_addr(0x12, kind, kind) == 0x12


def test_convert_not_addr_is_none():
    exe = FlatExe(ByteBuffer(DATA))
    assert exe.convert_addr(0x12, AddrType.NOT_ADDR, AddrType.RAW) is None
    assert exe.convert_addr(0x12, AddrType.RAW, AddrType.NOT_ADDR) is None


def test_convert_raw_va_round_trip():
    exe = FlatExe(ByteBuffer(DATA))
    va = exe.convert_addr(0x30, AddrType.RAW, AddrType.VA)
    assert exe.convert_addr(va, AddrType.VA, AddrType.RAW) == 0x30
    assert exe.convert_addr(va, AddrType.VA, AddrType.RVA) == 0x30


def test_to_raw_outside_file():
    exe = FlatExe(ByteBuffer(DATA))
    assert exe.to_raw(0x40, AddrType.RAW) is None
    assert exe.to_raw(IMAGE_BASE + 0x100, AddrType.VA) is None
    assert exe.to_raw(0x3F, AddrType.RVA) == 0x3F


def test_get_content_at_by_va():
    exe = FlatExe(ByteBuffer(DATA))
    assert exe.get_content_at(IMAGE_BASE + 4, AddrType.VA, 3) == bytes([4, 5, 6])


def test_get_content_at_invalid_raises():
    exe = FlatExe(ByteBuffer(DATA))
    with pytest.raises(BufferAccessError):
        exe.get_content_at(0x100, AddrType.RVA, 1)
    with pytest.raises(BufferAccessError):
        exe.get_content_at(0x3E, AddrType.RAW, 4)


def test_is_valid_addr():
    exe = FlatExe(ByteBuffer(DATA))
    assert exe.is_valid_addr(0, AddrType.RAW)
    assert not exe.is_valid_addr(0x40, AddrType.RAW)
    assert exe.is_valid_addr(IMAGE_BASE + 0x3F, AddrType.VA)
    assert not exe.is_valid_addr(IMAGE_BASE + 0x40, AddrType.VA)
    assert not exe.is_valid_addr(1, AddrType.NOT_ADDR)


def test_image_size_is_virtual_mapped_size():
    exe = FlatExe(ByteBuffer(DATA))
    assert exe.image_size() == exe.mapped_size(AddrType.VA) == 0x40


def test_all_entry_points():
    exe = FlatExe(ByteBuffer(DATA))
    assert exe.all_entry_points() == {EP: "_start"}
    assert exe.all_entry_points(AddrType.VA) == {IMAGE_BASE + EP: "_start"}


def test_resize_refused_by_default():
    exe = FlatExe(ByteBuffer(DATA))
    with pytest.raises(ParserError):
        exe.resize(0x80)
    assert exe.raw_size == 0x40
    assert exe.wrap_calls == 0


def test_resize_allowed_rewraps():
    exe = FlatExe(ByteBuffer(bytes(8)), resizable=True)
    exe.resize(0x20)
    assert exe.raw_size == 0x20
    assert exe.is_resized
    assert exe.wrap_calls == 1


def test_bit_mode_flags():
    exe32 = FlatExe(ByteBuffer(bytes(4)), ExeBits.BITS_32)
    exe64 = FlatExe(ByteBuffer(bytes(4)), ExeBits.BITS_64)
    assert exe32.is_bit32 and not exe32.is_bit64
    assert exe64.is_bit64 and not exe64.is_bit32
    assert exe64.bit_mode == ExeBits.BITS_64


def test_wrapper_container():
    exe = FlatExe(ByteBuffer(DATA))
    exe.wrappers[0] = NamedThing()
    assert exe.wrappers_count == 1
    assert exe.wrapper_name(0) == "Hdr"
    assert exe.wrapper_name(5) == ""
    assert exe.get_wrapper(5) is None


def test_dump_fragment(tmp_path):
    exe = FlatExe(ByteBuffer(DATA))
    target = tmp_path / "frag.bin"
    written = exe.dump_fragment(2, 4, target)
    assert written == 4
    assert target.read_bytes() == bytes([2, 3, 4, 5])


def test_wrapped_int_value():
    buf = ByteBuffer(b"\x34\x12\x00\x00")
    value = WrappedValue(buf, 0, 2, DataType.INT)
    assert value.is_valid()
    assert value.value() == 0x1234


def test_wrapped_string_values():
    text = b"AB\x00C"
    wide = "hi".encode("utf-16-le") + b"\x00\x00"
    buf = ByteBuffer(text + wide)
    assert WrappedValue(buf, 0, len(text), DataType.STRING).value() == "AB"
    assert WrappedValue(buf, len(text), len(wide), DataType.WSTRING).value() == "hi"
    assert WrappedValue(buf, 0, 3, DataType.COMPLEX).value() == b"AB\x00"


def test_wrapped_value_empty():
    value = WrappedValue()
    assert not value.is_valid()
    assert value.value() is None
    assert value.data_type == DataType.NONE


def test_wrapped_value_out_of_bounds_raises():
    buf = ByteBuffer(b"\x01\x02")
    with pytest.raises(BufferAccessError):
        WrappedValue(buf, 1, 4, DataType.INT).value()
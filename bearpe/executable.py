"""Executable images: address kinds, address conversions and wrapped field values."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import TYPE_CHECKING, Dict, Optional, Union

from .buffer import BufferAccessError, ByteBuffer, ParserError

if TYPE_CHECKING:
    from .wrappers import ElementWrapper


class AddrType(IntEnum):
    """Kind of an address stored in an executable."""

    NOT_ADDR = 0
    RAW = 1
    RVA = 2
    VA = 3


class ExeBits(IntEnum):
    """Bitness of an executable."""

    UNKNOWN = 0
    BITS_16 = 16
    BITS_32 = 32
    BITS_64 = 64


class ExeArch(IntEnum):
    """Processor family of an executable."""

    UNKNOWN = 0
    INTEL = 1
    ARM = 2


class DataType(IntEnum):
    """How the bytes of a field are to be interpreted."""

    NONE = 0
    INT = 1
    STRING = 2
    WSTRING = 3
    COMPLEX = 4


class WrappedValue:
    """A typed view of ``size`` bytes at ``offset`` inside a buffer."""

    def __init__(
        self,
        owner: Optional[ByteBuffer] = None,
        offset: Optional[int] = None,
        size: int = 0,
        data_type: DataType = DataType.NONE,
    ) -> None:
        self.owner = owner
        self.offset = offset
        self.size = size
        self.data_type = DataType(data_type)

    def is_valid(self) -> bool:
        """Tell whether the value covers any bytes."""
        return self.size != 0

    def value(self) -> Union[int, str, bytes, None]:
        """Decode the referenced bytes according to the data type."""
        if not self.is_valid() or self.owner is None or self.offset is None:
            return None
        raw = self.owner.get_content_at(self.offset, self.size)
        if self.data_type == DataType.INT:
            if self.size <= 8:
                return int.from_bytes(raw, "little")
            return raw
        if self.data_type == DataType.STRING:
            return raw.split(b"\x00", 1)[0].decode("latin-1")
        if self.data_type == DataType.WSTRING:
            even = raw[: len(raw) - len(raw) % 2]
            return even.decode("utf-16-le", errors="replace").split("\x00", 1)[0]
        if self.data_type == DataType.COMPLEX:
            return raw
        return None

    def __repr__(self) -> str:
        return (
            f"WrappedValue(offset={self.offset!r}, size={self.size}, "
            f"data_type={self.data_type.name})"
        )


class Executable(ABC):
    """An executable image backed by a byte buffer, holding its structure wrappers."""

    def __init__(self, buffer: ByteBuffer, bit_mode: ExeBits = ExeBits.UNKNOWN) -> None:
        self.buffer = buffer
        self._bit_mode = ExeBits(bit_mode)
        self.wrappers: Dict[int, "ElementWrapper"] = {}

    # --- format specific ----------------------------------------------------

    @abstractmethod
    def arch(self) -> ExeArch:
        """Processor family of the image."""

    @abstractmethod
    def mapped_size(self, addr_type: AddrType) -> int:
        """Size of the image in the given address space."""

    @abstractmethod
    def alignment(self, addr_type: AddrType) -> int:
        """Alignment unit in the given address space."""

    @abstractmethod
    def image_base(self) -> int:
        """Preferred load address."""

    @abstractmethod
    def entry_point(self, addr_type: AddrType = AddrType.RVA) -> Optional[int]:
        """Main entry point expressed in the given address space."""

    @abstractmethod
    def raw_to_rva(self, raw: int) -> Optional[int]:
        """File offset to RVA, or None if it is not mapped."""

    @abstractmethod
    def rva_to_raw(self, rva: int) -> Optional[int]:
        """RVA to file offset, or None if it has no file backing."""

    @abstractmethod
    def wrap(self) -> None:
        """(Re)build the structure wrappers from the buffer."""

    # --- buffer -------------------------------------------------------------

    @property
    def bit_mode(self) -> ExeBits:
        return self._bit_mode

    @property
    def is_bit64(self) -> bool:
        return self.bit_mode == ExeBits.BITS_64

    @property
    def is_bit32(self) -> bool:
        return self.bit_mode == ExeBits.BITS_32

    @property
    def raw_size(self) -> int:
        return self.buffer.content_size

    @property
    def content(self) -> bytes:
        return self.buffer.content

    @property
    def is_resized(self) -> bool:
        return self.buffer.is_resized

    def can_resize(self, new_size: int) -> bool:
        """Tell whether the image may be resized; disabled by default."""
        return False

    def resize(self, new_size: int) -> None:
        """Resize the underlying buffer and rebuild the wrappers."""
        if not self.can_resize(new_size):
            raise ParserError(f"resizing to 0x{new_size:X} is not allowed")
        if not self.buffer.resize(new_size):
            raise ParserError("the underlying buffer cannot be resized")
        self.wrap()

    def dump_fragment(self, offset: int, size: int, path: Union[str, os.PathLike]) -> int:
        """Write ``size`` raw bytes from ``offset`` into a file; return the count written."""
        data = self.buffer.get_content_at(offset, size)
        with open(path, "wb") as handle:
            handle.write(data)
        return len(data)

    # --- wrappers -----------------------------------------------------------

    def get_wrapper(self, wrapper_id: int) -> Optional["ElementWrapper"]:
        return self.wrappers.get(wrapper_id)

    @property
    def wrappers_count(self) -> int:
        return len(self.wrappers)

    def wrapper_name(self, wrapper_id: int) -> str:
        wrapper = self.wrappers.get(wrapper_id)
        return wrapper.name if wrapper is not None else ""

    # --- content access -----------------------------------------------------

    def get_content_at(self, offset: int, addr_type: AddrType, size: int) -> bytes:
        """Return ``size`` bytes at an address of the given kind."""
        raw = self.to_raw(offset, addr_type)
        if raw is None:
            raise BufferAccessError(
                f"address 0x{offset:X} ({AddrType(addr_type).name}) is not backed by the file"
            )
        return self.buffer.get_content_at(raw, size)

    # --- conversions --------------------------------------------------------

    def to_raw(self, offset: Optional[int], addr_type: AddrType) -> Optional[int]:
        """Convert an address of any kind to a file offset inside the buffer."""
        raw = self.convert_addr(offset, addr_type, AddrType.RAW)
        if raw is None or not 0 <= raw < self.raw_size:
            return None
        return raw

    def convert_addr(
        self, addr: Optional[int], in_type: AddrType, out_type: AddrType
    ) -> Optional[int]:
        """Convert between raw offsets, RVAs and VAs; None if it cannot be done."""
        if addr is None or in_type == AddrType.NOT_ADDR or out_type == AddrType.NOT_ADDR:
            return None
        if in_type == out_type:
            return addr
        if in_type == AddrType.RAW:
            rva = self.raw_to_rva(addr)
            return rva if out_type == AddrType.RVA else self.rva_to_va(rva)
        if in_type == AddrType.RVA:
            return self.rva_to_raw(addr) if out_type == AddrType.RAW else self.rva_to_va(addr)
        # in_type is VA
        return self.va_to_rva(addr) if out_type == AddrType.RVA else self.va_to_raw(addr)

    def rva_to_va(self, rva: Optional[int]) -> Optional[int]:
        if rva is None:
            return None
        return rva + self.image_base()

    def _va_to_rva(self, va: Optional[int], autodetect: bool) -> Optional[int]:
        if va is None:
            return None
        base = self.image_base()
        if va < base:
            return va if autodetect else None
        return va - base

    def va_to_rva(self, va: Optional[int]) -> Optional[int]:
        return self._va_to_rva(va, autodetect=False)

    def va_to_raw(self, va: Optional[int]) -> Optional[int]:
        """VA to file offset; a value below the image base is taken as an RVA."""
        rva = self._va_to_rva(va, autodetect=True)
        if rva is None:
            return None
        return self.rva_to_raw(rva)

    def is_valid_addr(self, addr: Optional[int], addr_type: AddrType) -> bool:
        """Tell whether the address lies inside the file or the mapped image."""
        if addr is None or addr_type == AddrType.NOT_ADDR:
            return False
        if addr_type == AddrType.RAW:
            return 0 <= addr < self.raw_size
        rva = self.convert_addr(addr, addr_type, AddrType.RVA)
        return rva is not None and 0 <= rva < self.image_size()

    def image_size(self) -> int:
        return self.mapped_size(AddrType.VA)

    def all_entry_points(self, addr_type: AddrType = AddrType.RVA) -> Dict[int, str]:
        """All entry points of the image, keyed by address."""
        return {self.entry_point(addr_type): "_start"}
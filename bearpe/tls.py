"""The TLS data directory of a PE image and its callbacks."""

from __future__ import annotations

from enum import IntEnum
from typing import Optional, Sequence, Tuple

from .buffer import BufferAccessError
from .executable import AddrType, ExeBits, Executable
from .wrappers import NodeWrapper


class TlsField(IntEnum):
    """Fields of the TLS directory."""

    START_ADDR = 0
    END_ADDR = 1
    INDEX_ADDR = 2
    CALLBACKS_ADDR = 3
    ZEROF_SIZE = 4
    CHARACT = 5


_FIELD_NAMES = (
    "StartAddressOfRawData",
    "EndAddressOfRawData",
    "AddressOfIndex",
    "AddressOfCallBacks",
    "SizeOfZeroFill",
    "Characteristics",
)

_ADDRESS_FIELDS = (
    TlsField.START_ADDR,
    TlsField.END_ADDR,
    TlsField.INDEX_ADDR,
    TlsField.CALLBACKS_ADDR,
)


class TlsDirectory(NodeWrapper):
    """The TLS directory found at an RVA, holding its list of callbacks."""

    name = "TLS"

    def __init__(self, exe: Executable, dir_address: Optional[int]) -> None:
        super().__init__(exe)
        self.dir_address = dir_address
        self.wrap()

    def _ptr_size(self) -> int:
        return 8 if self.exe.bit_mode == ExeBits.BITS_64 else 4

    def _layout(self) -> Sequence[Tuple[str, int]]:
        ptr = self._ptr_size()
        sizes = (ptr, ptr, ptr, ptr, 4, 4)
        return tuple(zip(_FIELD_NAMES, sizes))

    def _struct_size(self) -> int:
        return sum(size for _, size in self._layout())

    def offset(self) -> Optional[int]:
        if self.exe.bit_mode not in (ExeBits.BITS_32, ExeBits.BITS_64):
            return None
        if self.dir_address is None:
            return None
        raw = self.exe.to_raw(self.dir_address, AddrType.RVA)
        if raw is None or not self.exe.buffer.contains_block(raw, self._struct_size()):
            return None
        return raw

    def _load_next_entry(self, index: int) -> Optional["TlsCallback"]:
        entry = TlsCallback(self, index)
        if entry.offset() is None:
            return None
        try:
            value = entry.value()
        except BufferAccessError:
            return None
        if value == 0:
            return None
        return entry

    def wrap(self) -> None:
        """Reload the callbacks, up to the first zero address."""
        super().wrap()

    def size(self) -> int:
        if self.offset() is None:
            return 0
        return self._struct_size()

    def field_name(self, field_id: int) -> str:
        try:
            return super().field_name(field_id)
        except IndexError:
            return self.name

    def addr_type(self, field_id: int) -> AddrType:
        if field_id in _ADDRESS_FIELDS:
            return AddrType.VA
        return AddrType.NOT_ADDR

    def num_value(self, field_id: int) -> int:
        """Read a field of the directory as an unsigned integer."""
        return super().num_value(TlsField(field_id))


class TlsCallback(NodeWrapper):
    """One address of the TLS callbacks array."""

    CALLBACK_ADDR = 0
    name = "TLS Callback"

    def __init__(self, directory: TlsDirectory, index: int) -> None:
        super().__init__(directory.exe, directory, index)
        self.directory = directory
        self.index = index

    def _addr_size(self) -> int:
        return self.directory.field_size(TlsField.CALLBACKS_ADDR)

    def _layout(self) -> Sequence[Tuple[str, int]]:
        return ((self.name, self._addr_size()),)

    def raw_offset(self) -> Optional[int]:
        """Raw offset of this callback slot, or None if it cannot be reached."""
        try:
            first_va = self.directory.num_value(TlsField.CALLBACKS_ADDR)
        except BufferAccessError:
            return None
        if first_va == 0:
            return None
        first_raw = self.exe.to_raw(first_va, AddrType.VA)
        if first_raw is None:
            return None
        addr_size = self._addr_size()
        my_raw = first_raw + addr_size * self.index
        if not self.exe.buffer.contains_block(my_raw, addr_size):
            return None
        return my_raw

    def offset(self) -> Optional[int]:
        return self.raw_offset()

    def field_name(self, field_id: int) -> str:
        return self.name

    def addr_type(self, field_id: int) -> AddrType:
        return AddrType.VA

    def value(self) -> int:
        """The callback address (a VA)."""
        return self.num_value(self.CALLBACK_ADDR)
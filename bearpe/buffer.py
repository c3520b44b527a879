"""Byte buffers with bounds-checked access to little-endian values and strings."""

from __future__ import annotations

import os
from typing import Union

DEFAULT_PADDING = 2
UNKNOWN_ERROR_CODE = -1


class ParserError(Exception):
    """Base error of the parser, carrying a description and a numeric code."""

    def __init__(self, info: str = "", code: int = UNKNOWN_ERROR_CODE) -> None:
        super().__init__(info)
        self.info = info
        self.code = code


class BufferAccessError(ParserError):
    """Raised when a buffer is accessed outside of its bounds or cannot be read."""


def units_count(value: int, unit: int, roundup: bool = True) -> int:
    """Number of ``unit``-sized blocks in ``value``; 0 if ``unit`` is 0."""
    if unit == 0:
        return 0
    units, remainder = divmod(value, unit)
    if roundup and remainder:
        units += 1
    return units


def roundup(value: int, unit: int) -> int:
    """Round ``value`` up to a multiple of ``unit``; 0 if ``unit`` is 0."""
    return units_count(value, unit) * unit


def roundup_to_unit(size: int, unit: int) -> int:
    """Round ``size`` up to a multiple of ``unit``, leaving it unchanged if ``unit`` is 0."""
    if unit == 0:
        return size
    return units_count(size, unit) * unit


def is_printable(c: Union[int, str]) -> bool:
    """Tell whether a byte (or one-character string) is printable ASCII."""
    if isinstance(c, str):
        if len(c) != 1:
            raise ValueError("expected a single character")
        c = ord(c)
    return 0x20 <= c < 0x7F


class ByteBuffer:
    """A resizable, bounds-checked block of bytes."""

    def __init__(self, data: Union[bytes, bytearray, int] = b"", padding: int = DEFAULT_PADDING) -> None:
        if isinstance(data, int):
            if data < 0:
                raise ValueError("buffer size cannot be negative")
            self._data = bytearray(data)
        else:
            self._data = bytearray(data)
        if padding < 0:
            raise ValueError("padding cannot be negative")
        self.padding = padding
        self.original_size = len(self._data)

    # --- storage primitives -------------------------------------------------

    @property
    def content_size(self) -> int:
        return len(self._data)

    @property
    def content(self) -> bytes:
        return bytes(self._data)

    def _read(self, offset: int, size: int) -> bytes:
        return bytes(self._data[offset:offset + size])

    def _write(self, offset: int, data: bytes) -> None:
        self._data[offset:offset + len(data)] = data

    # --- generic access -----------------------------------------------------

    def __len__(self) -> int:
        return self.content_size

    def __getitem__(self, idx: int) -> int:
        if not 0 <= idx < self.content_size:
            raise IndexError(f"index {idx} out of buffer bounds")
        return self._read(idx, 1)[0]

    @property
    def is_resized(self) -> bool:
        return self.original_size != self.content_size

    def contains_block(self, offset: int, size: int) -> bool:
        """Tell whether the whole block lies inside the buffer."""
        if offset < 0 or size < 0:
            return False
        return offset < self.content_size and offset + size <= self.content_size

    def intersects_block(self, offset: int, size: int) -> bool:
        """Tell whether the block overlaps the buffer at all."""
        if size <= 0:
            return False
        return offset < self.content_size and offset + size > 0

    def max_size_from_offset(self, offset: int) -> int:
        """Bytes available from ``offset`` to the end of the buffer."""
        if offset < 0 or offset >= self.content_size:
            return 0
        return self.content_size - offset

    def get_content_at(self, offset: int, size: int) -> bytes:
        """Return ``size`` bytes at ``offset``; raise if the block does not fit."""
        if size <= 0 or not self.contains_block(offset, size):
            raise BufferAccessError(
                f"block at 0x{offset:X} of size 0x{max(size, 0):X} is outside the buffer"
            )
        return self._read(offset, size)

    @staticmethod
    def _check_num_size(size: int) -> None:
        if not 1 <= size <= 8:
            raise ValueError(f"unsupported numeric size: {size}")

    def get_num_value(self, offset: int, size: int) -> int:
        """Read an unsigned little-endian integer of ``size`` bytes."""
        self._check_num_size(size)
        return int.from_bytes(self.get_content_at(offset, size), "little")

    def set_num_value(self, offset: int, size: int, value: int) -> None:
        """Write an unsigned little-endian integer of ``size`` bytes."""
        self._check_num_size(size)
        if not 0 <= value < (1 << (8 * size)):
            raise ValueError(f"value 0x{value:X} does not fit in {size} bytes")
        self.get_content_at(offset, size)  # bounds check
        self._write(offset, value.to_bytes(size, "little"))

    def is_area_empty(self, offset: int, size: int) -> bool:
        """Tell whether the block lies inside the buffer and holds only zeros."""
        if size <= 0 or not self.contains_block(offset, size):
            return False
        return not any(self._read(offset, size))

    def fill_content(self, filling: int) -> None:
        """Overwrite the whole buffer with the byte ``filling``."""
        if not 0 <= filling <= 0xFF:
            raise ValueError("filling must be a byte value")
        if self.content_size:
            self._write(0, bytes([filling]) * self.content_size)

    def resize(self, new_size: int) -> bool:
        """Change the size, zero-filling any new space."""
        if new_size < 0:
            raise ValueError("buffer size cannot be negative")
        if new_size < len(self._data):
            del self._data[new_size:]
        else:
            self._data.extend(bytes(new_size - len(self._data)))
        return True

    def get_string_value(self, offset: int, length: int | None = None) -> str:
        """Read a NUL-terminated ASCII string at ``offset``, at most ``length`` bytes."""
        available = self.max_size_from_offset(offset)
        if available == 0:
            raise BufferAccessError(f"offset 0x{offset:X} is outside the buffer")
        if length is not None:
            if length < 0:
                raise ValueError("length cannot be negative")
            available = min(available, length)
        raw = self._read(offset, available)
        end = raw.find(b"\x00")
        if end != -1:
            raw = raw[:end]
        return raw.decode("latin-1")


class BufferView(ByteBuffer):
    """A window onto a region of another buffer; writes go to the parent."""

    def __init__(self, parent: ByteBuffer, offset: int, size: int) -> None:
        if offset < 0 or size < 0:
            raise ValueError("view offset and size cannot be negative")
        self.parent = parent
        self.offset = offset
        self.requested_size = size
        self.padding = 0
        self.original_size = size

    @property
    def content_size(self) -> int:
        return min(self.requested_size, self.parent.max_size_from_offset(self.offset))

    @property
    def content(self) -> bytes:
        return self._read(0, self.content_size)

    @property
    def is_resized(self) -> bool:
        return False

    def _read(self, offset: int, size: int) -> bytes:
        return self.parent._read(self.offset + offset, size)

    def _write(self, offset: int, data: bytes) -> None:
        self.parent._write(self.offset + offset, data)

    def resize(self, new_size: int) -> bool:
        return False


def read_file(path: Union[str, os.PathLike]) -> ByteBuffer:
    """Load a whole file into a :class:`ByteBuffer`."""
    try:
        with open(path, "rb") as handle:
            data = handle.read()
    except OSError as err:
        raise BufferAccessError(f"Cannot open the file: {os.fspath(path)}") from err
    return ByteBuffer(data)
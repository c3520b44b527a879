"""Wrappers that expose structures inside an executable as fields and child entries."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator, List, Optional, Sequence, Tuple

from .buffer import BufferAccessError, ByteBuffer, ParserError
from .executable import AddrType, DataType, Executable, WrappedValue


def _write_bytes(buf: ByteBuffer, offset: int, data: bytes) -> None:
    buf.get_content_at(offset, len(data))  # bounds check of the whole area
    for start in range(0, len(data), 8):
        chunk = data[start:start + 8]
        buf.set_num_value(offset + start, len(chunk), int.from_bytes(chunk, "little"))


class ElementWrapper(ABC):
    """A structure at a raw offset of an executable, described as a list of fields.

    Subclasses give the structure position through :meth:`offset` and its
    layout through ``_layout()``, a sequence of ``(name, size)`` pairs.
    """

    name = ""

    def __init__(self, exe: Executable) -> None:
        self.exe = exe

    @abstractmethod
    def offset(self) -> Optional[int]:
        """Raw offset of the structure, or None if it is not present."""

    def _layout(self) -> Sequence[Tuple[str, int]]:
        return ()

    def wrap(self) -> None:
        """Reload cached state from the buffer."""

    # --- whole structure ----------------------------------------------------

    def size(self) -> int:
        if self.offset() is None:
            return 0
        return sum(size for _, size in self._layout())

    def content(self) -> bytes:
        start = self.offset()
        if start is None:
            raise BufferAccessError(f"{self.name or type(self).__name__} is not present")
        return self.exe.buffer.get_content_at(start, self.size())

    @property
    def is_bit64(self) -> bool:
        return self.exe.is_bit64

    @property
    def is_bit32(self) -> bool:
        return self.exe.is_bit32

    # --- fields -------------------------------------------------------------

    def fields_count(self) -> int:
        return len(self._layout())

    def sub_fields_count(self) -> int:
        return 1

    def _field(self, field_id: int) -> Tuple[int, Tuple[str, int]]:
        layout = self._layout()
        if not 0 <= field_id < len(layout):
            raise IndexError(f"field {field_id} does not exist")
        relative = sum(size for _, size in layout[:field_id])
        return relative, layout[field_id]

    def field_name(self, field_id: int) -> str:
        return self._field(field_id)[1][0]

    def field_offset(self, field_id: int) -> Optional[int]:
        relative, _ = self._field(field_id)
        start = self.offset()
        if start is None:
            return None
        return start + relative

    def field_size(self, field_id: int) -> int:
        return self._field(field_id)[1][1]

    def addr_type(self, field_id: int) -> AddrType:
        return AddrType.NOT_ADDR

    def data_type(self, field_id: int) -> DataType:
        return DataType.INT

    def translate_field_content(self, field_id: int) -> str:
        return ""

    def has_subfield_wrapper(self, parent_type: int) -> bool:
        return False

    def num_value(self, field_id: int) -> int:
        """Read the field as an unsigned little-endian integer."""
        start = self.field_offset(field_id)
        if start is None:
            raise BufferAccessError(f"field {field_id} is not present")
        return self.exe.buffer.get_num_value(start, self.field_size(field_id))

    def set_num_value(self, field_id: int, value: int) -> None:
        """Write the field as an unsigned little-endian integer."""
        start = self.field_offset(field_id)
        if start is None:
            raise BufferAccessError(f"field {field_id} is not present")
        self.exe.buffer.set_num_value(start, self.field_size(field_id), value)

    def wrapped_value(self, field_id: int) -> WrappedValue:
        start = self.field_offset(field_id)
        if start is None:
            return WrappedValue()
        return WrappedValue(
            self.exe.buffer, start, self.field_size(field_id), self.data_type(field_id)
        )


class NodeWrapper(ElementWrapper):
    """An element that may own child entries, such as a table of records."""

    def __init__(
        self,
        exe: Executable,
        parent: Optional["NodeWrapper"] = None,
        entry_num: Optional[int] = None,
    ) -> None:
        super().__init__(exe)
        self.parent = parent
        self.entry_num = entry_num
        self.entries: List[NodeWrapper] = []

    # --- loading ------------------------------------------------------------

    def _load_next_entry(self, index: int) -> Optional["NodeWrapper"]:
        return None

    def clear(self) -> None:
        self.entries.clear()

    def wrap(self) -> None:
        """Reload the child entries, one after another, until none is left."""
        self.clear()
        index = 0
        while (entry := self._load_next_entry(index)) is not None:
            self.entries.append(entry)
            index += 1

    def is_valid(self) -> bool:
        return True

    # --- children -----------------------------------------------------------

    def __iter__(self) -> Iterator["NodeWrapper"]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def entry_at(self, index: int) -> "NodeWrapper":
        if not 0 <= index < len(self.entries):
            raise IndexError(f"entry {index} does not exist")
        return self.entries[index]

    def entries_count(self) -> int:
        return len(self.entries)

    def last_entry(self) -> Optional["NodeWrapper"]:
        return self.entries[-1] if self.entries else None

    def sub_fields_count(self) -> int:
        return self.entries[0].fields_count() if self.entries else 0

    def subfield_offset(self, field_id: int, sub_field: int) -> Optional[int]:
        return self.entry_at(field_id).field_offset(sub_field)

    def subfield_size(self, field_id: int, sub_field: int) -> int:
        return self.entry_at(field_id).field_size(sub_field)

    def subfield_name(self, field_id: int, sub_field: int) -> str:
        return self.entry_at(field_id).field_name(sub_field)

    # --- adding entries -----------------------------------------------------

    def _next_entry_offset(self) -> Optional[int]:
        last = self.last_entry()
        if last is None:
            return None
        start = last.offset()
        if start is None:
            return None
        return start + last.size()

    def _entry_size(self) -> int:
        last = self.last_entry()
        return last.size() if last is not None else 0

    def _is_my_entry_type(self, entry: "NodeWrapper") -> bool:
        if not isinstance(entry, NodeWrapper):
            return False
        if self.entries:
            return isinstance(entry, type(self.entries[0]))
        return True

    def can_add_entry(self) -> bool:
        """Tell whether the space right after the last entry is free."""
        next_offset = self._next_entry_offset()
        entry_size = self._entry_size()
        if next_offset is None or entry_size == 0:
            return False
        return self.exe.buffer.is_area_empty(next_offset, entry_size)

    def add_entry(self, entry: "NodeWrapper") -> Optional["NodeWrapper"]:
        """Copy ``entry`` after the last entry, reload, and return the new last entry."""
        if not self._is_my_entry_type(entry):
            raise ParserError("the entry is not of a type this node holds")
        if not self.can_add_entry():
            raise ParserError("there is no free space for a new entry")
        next_offset = self._next_entry_offset()
        data = entry.content()
        if len(data) != self._entry_size():
            raise ParserError("the entry size does not match the node's entries")
        _write_bytes(self.exe.buffer, next_offset, data)
        self.wrap()
        return self.last_entry()
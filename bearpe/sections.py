"""Section headers of a PE image and the mapping of raw and virtual addresses to sections."""

from __future__ import annotations

import bisect
import logging
import threading
from enum import IntFlag
from typing import Dict, List, Optional, Sequence, Tuple

from .buffer import ByteBuffer, ParserError, roundup_to_unit, units_count
from .executable import AddrType, DataType, ExeArch, ExeBits, Executable
from .wrappers import NodeWrapper

log = logging.getLogger(__name__)

SECTION_HEADER_SIZE = 40
SECTION_NAME_LEN = 8


class SectionCharacteristic(IntFlag):
    """Flags of the Characteristics field of a section header."""

    CNT_CODE = 0x00000020
    CNT_INITIALIZED_DATA = 0x00000040
    CNT_UNINITIALIZED_DATA = 0x00000080
    LNK_NRELOC_OVFL = 0x01000000
    MEM_DISCARDABLE = 0x02000000
    MEM_NOT_CACHED = 0x04000000
    MEM_NOT_PAGED = 0x08000000
    MEM_SHARED = 0x10000000
    MEM_EXECUTE = 0x20000000
    MEM_READ = 0x40000000
    MEM_WRITE = 0x80000000


_DESCRIPTIONS: Dict[int, str] = {
    SectionCharacteristic.MEM_READ: "readable",
    SectionCharacteristic.MEM_WRITE: "writeable",
    SectionCharacteristic.MEM_EXECUTE: "executable",
    SectionCharacteristic.LNK_NRELOC_OVFL: "contains extended relocations",
    SectionCharacteristic.MEM_DISCARDABLE: "discardable",
    SectionCharacteristic.MEM_NOT_CACHED: "not cachable",
    SectionCharacteristic.MEM_NOT_PAGED: "non-pageable",
    SectionCharacteristic.MEM_SHARED: "shareable",
    SectionCharacteristic.CNT_CODE: "code",
    SectionCharacteristic.CNT_INITIALIZED_DATA: "initialized data",
    SectionCharacteristic.CNT_UNINITIALIZED_DATA: "uninitialized data",
}


def access_rights_desc(characteristics: int) -> str:
    """Describe read/write/execute rights as a three-letter string such as ``r-x``."""
    return "".join(
        letter if characteristics & flag else "-"
        for letter, flag in (
            ("r", SectionCharacteristic.MEM_READ),
            ("w", SectionCharacteristic.MEM_WRITE),
            ("x", SectionCharacteristic.MEM_EXECUTE),
        )
    )


def split_characteristics(characteristics: int) -> List[int]:
    """The known flags set in ``characteristics``, in ascending order."""
    return [int(flag) for flag in sorted(_DESCRIPTIONS) if characteristics & flag]


def translate_characteristic(characteristic: int) -> str:
    """Description of a single flag, or an empty string if it is not known."""
    return _DESCRIPTIONS.get(characteristic, "")


class PEImage(Executable):
    """A PE image read from a buffer, exposing its headers and section table."""

    _MACHINES_INTEL = (0x014C, 0x8664)
    _MACHINES_ARM = (0x01C0, 0x01C4, 0xAA64)

    def __init__(self, buffer: ByteBuffer) -> None:
        if buffer.content_size < 0x40 or buffer.get_content_at(0, 2) != b"MZ":
            raise ParserError("not an MZ executable")
        nt_offset = buffer.get_num_value(0x3C, 4)
        if not buffer.contains_block(nt_offset, 4) or buffer.get_content_at(nt_offset, 4) != b"PE\x00\x00":
            raise ParserError("PE signature not found")
        self.file_hdr_offset = nt_offset + 4
        self.opt_hdr_offset = self.file_hdr_offset + 20
        magic = buffer.get_num_value(self.opt_hdr_offset, 2)
        bits = {0x10B: ExeBits.BITS_32, 0x20B: ExeBits.BITS_64}.get(magic)
        if bits is None:
            raise ParserError(f"unknown optional header magic: 0x{magic:X}")
        super().__init__(buffer, bits)
        self.nt_offset = nt_offset
        self.sections: SectionHeaders
        self.wrap()

    def _opt(self, relative: int, size: int = 4) -> int:
        return self.buffer.get_num_value(self.opt_hdr_offset + relative, size)

    def wrap(self) -> None:
        self.sections = SectionHeaders(self)
        self.wrappers[0] = self.sections
        self.sections.wrap()

    # --- headers ------------------------------------------------------------

    @property
    def machine(self) -> int:
        return self.buffer.get_num_value(self.file_hdr_offset, 2)

    def arch(self) -> ExeArch:
        if self.machine in self._MACHINES_INTEL:
            return ExeArch.INTEL
        if self.machine in self._MACHINES_ARM:
            return ExeArch.ARM
        return ExeArch.UNKNOWN

    def hdr_sections_num(self) -> int:
        return self.buffer.get_num_value(self.file_hdr_offset + 2, 2)

    def set_hdr_sections_num(self, count: int) -> None:
        self.buffer.set_num_value(self.file_hdr_offset + 2, 2, count)
        self.sections.wrap()

    def sec_hdrs_offset(self) -> int:
        opt_size = self.buffer.get_num_value(self.file_hdr_offset + 16, 2)
        return self.opt_hdr_offset + opt_size

    @property
    def headers_size(self) -> int:
        return self._opt(60)

    def image_base(self) -> int:
        if self.is_bit64:
            return self._opt(24, 8)
        return self._opt(28)

    def alignment(self, addr_type: AddrType) -> int:
        if addr_type == AddrType.RAW:
            return self._opt(36)
        if addr_type in (AddrType.RVA, AddrType.VA):
            return self._opt(32)
        return 0

    def mapped_size(self, addr_type: AddrType) -> int:
        if addr_type == AddrType.RAW:
            return self.raw_size
        return self._opt(56)

    def entry_point(self, addr_type: AddrType = AddrType.RVA) -> Optional[int]:
        return self.convert_addr(self._opt(16), AddrType.RVA, addr_type)

    def sections_count(self) -> int:
        return len(self.sections)

    # --- conversions --------------------------------------------------------

    def raw_to_rva(self, raw: int) -> Optional[int]:
        sec = self.sections.section_at_offset(raw, AddrType.RAW, True)
        if sec is not None:
            return raw - sec.content_offset(AddrType.RAW) + sec.content_offset(AddrType.RVA)
        if 0 <= raw < min(self.headers_size, self.raw_size):
            return raw
        return None

    def rva_to_raw(self, rva: int) -> Optional[int]:
        sec = self.sections.section_at_offset(rva, AddrType.RVA, True)
        if sec is not None:
            raw = rva - sec.content_offset(AddrType.RVA) + sec.content_offset(AddrType.RAW)
            return raw if raw < self.raw_size else None
        if 0 <= rva < min(self.headers_size, self.raw_size):
            return rva
        return None


class SectionHeader(NodeWrapper):
    """One entry of the section table."""

    NAME = 0
    VSIZE = 1
    VPTR = 2
    RSIZE = 3
    RPTR = 4
    RELOC_PTR = 5
    LINENUM_PTR = 6
    RELOC_NUM = 7
    LINENUM_NUM = 8
    CHARACT = 9

    _FIELDS: Tuple[Tuple[str, int], ...] = (
        ("Name", 8),
        ("Virtual Size", 4),
        ("Virtual Addr.", 4),
        ("Raw size", 4),
        ("Raw Addr.", 4),
        ("Ptr to Reloc.", 4),
        ("Ptr to Linenum.", 4),
        ("Num. of Reloc.", 2),
        ("Num. of Linenum.", 2),
        ("Characteristics", 4),
    )

    def __init__(self, pe: PEImage, index: int) -> None:
        super().__init__(pe, None, index)
        self.pe = pe
        self.index = index
        self.name = ""
        self.mapped_name = ""
        self.reload_name()

    def _layout(self) -> Sequence[Tuple[str, int]]:
        return self._FIELDS

    def offset(self) -> Optional[int]:
        start = self.pe.sec_hdrs_offset() + self.index * SECTION_HEADER_SIZE
        if not self.pe.buffer.contains_block(start, SECTION_HEADER_SIZE):
            return None
        return start

    def wrap(self) -> None:
        self.reload_name()

    def reload_name(self) -> bool:
        """Reread the name from the header; False if the header is not present."""
        start = self.offset()
        if start is None:
            return False
        raw = self.pe.buffer.get_content_at(start, SECTION_NAME_LEN)
        self.name = raw.split(b"\x00", 1)[0].decode("latin-1")
        self.mapped_name = self.name or f"#{self.index}"
        return True

    def field_name(self, field_id: int) -> str:
        try:
            return super().field_name(field_id)
        except IndexError:
            return ""

    def addr_type(self, field_id: int) -> AddrType:
        if field_id == self.VPTR:
            return AddrType.RVA
        if field_id == self.RPTR:
            return AddrType.RAW
        return AddrType.NOT_ADDR

    def data_type(self, field_id: int) -> DataType:
        return DataType.STRING if field_id == self.NAME else DataType.INT

    @property
    def characteristics(self) -> int:
        return self.num_value(self.CHARACT)

    # --- declared values ----------------------------------------------------

    def declared_offset(self, addr_type: AddrType) -> Optional[int]:
        """Offset written in the header for the given address space."""
        if self.offset() is None:
            return None
        if addr_type == AddrType.RAW:
            return self.num_value(self.RPTR)
        if addr_type in (AddrType.VA, AddrType.RVA):
            return self.num_value(self.VPTR)
        return None

    def declared_size(self, addr_type: AddrType) -> int:
        """Size written in the header for the given address space."""
        if self.offset() is None:
            return 0
        if addr_type == AddrType.RAW:
            return self.num_value(self.RSIZE)
        if addr_type in (AddrType.VA, AddrType.RVA):
            return self.num_value(self.VSIZE)
        return 0

    # --- mapped values ------------------------------------------------------

    def content_offset(self, addr_type: AddrType, use_mapped: bool = True) -> Optional[int]:
        """Start of the content; a mapped raw start is rounded down to the file alignment."""
        offset = self.declared_offset(addr_type)
        if offset is None or not use_mapped:
            return offset
        if addr_type == AddrType.RAW:
            align = self.pe.alignment(AddrType.RAW)
            rounded = units_count(offset, align, False) * align
            if rounded != 0:
                offset = rounded
            if offset > self.pe.mapped_size(addr_type):
                return None
        return offset

    def content_end_offset(self, addr_type: AddrType, recalculate: bool = True) -> Optional[int]:
        start = self.content_offset(addr_type, True)
        if start is None:
            return None
        return start + self.content_size(addr_type, recalculate)

    def content_size(self, addr_type: AddrType, recalculate: bool = True) -> int:
        """Declared size, or with ``recalculate`` the size that is really mapped."""
        if self.offset() is None:
            return 0
        if not recalculate:
            return self.declared_size(addr_type)
        if addr_type == AddrType.RAW:
            return self.mapped_raw_size()
        if addr_type in (AddrType.RVA, AddrType.VA):
            return self.mapped_virtual_size()
        return 0

    def mapped_raw_size(self) -> int:
        """Raw size that the loader really maps."""
        sec_offset = self.content_offset(AddrType.RAW)
        if sec_offset is None:
            return 0
        pe_size = self.pe.raw_size
        if sec_offset > pe_size:
            return 0
        raw_size = self.declared_size(AddrType.RAW)
        if raw_size == 0:
            return 0
        virtual_size = self.declared_size(AddrType.RVA) or self.declared_size(AddrType.RAW)
        if virtual_size < raw_size:
            raw_size = virtual_size
        raw_size = roundup_to_unit(raw_size, self.pe.alignment(AddrType.RAW))
        if sec_offset + raw_size > pe_size:
            trimmed = pe_size - sec_offset
            if virtual_size:
                virtual_size = roundup_to_unit(virtual_size, self.pe.alignment(AddrType.RVA))
            if virtual_size and trimmed > virtual_size:
                return virtual_size
            return trimmed
        return raw_size

    def mapped_virtual_size(self) -> int:
        """Virtual size that the loader really maps, trimmed to the next section and the image."""
        start = self.content_offset(AddrType.RVA)
        if start is None:
            return 0
        declared = self.declared_size(AddrType.RVA) or self.declared_size(AddrType.RAW)
        virtual_size = max(declared, self.mapped_raw_size())
        virtual_size = roundup_to_unit(virtual_size, self.pe.alignment(AddrType.RVA))
        sec_end = start + virtual_size
        img_size = self.pe.image_size()
        if img_size < start:
            return 0
        for sec in list(self.pe.sections.entries):
            current = sec.content_offset(AddrType.RVA, True)
            if current is None:
                continue
            if start < current < sec_end:
                sec_end = current
        if sec_end > img_size:
            return img_size - start
        return sec_end - start


def _hex(value: Optional[int]) -> str:
    return "-" if value is None else f"{value:X}"


class SectionHeaders(NodeWrapper):
    """The section table, with lookups of sections by raw or virtual offset."""

    SECT_COUNT_MAX = 0x2000
    name = "Section Hdrs"

    def __init__(self, pe: PEImage) -> None:
        super().__init__(pe)
        self.pe = pe
        self._raw_map: Dict[int, SectionHeader] = {}
        self._virtual_map: Dict[int, SectionHeader] = {}
        self._lock = threading.RLock()

    def offset(self) -> Optional[int]:
        with self._lock:
            return self.entries[0].offset() if self.entries else None

    def size(self) -> int:
        with self._lock:
            if not self.entries:
                return 0
            start = self.pe.sec_hdrs_offset()
            end = start + len(self.entries) * SECTION_HEADER_SIZE
            return min(end, self.pe.raw_size) - start

    def fields_count(self) -> int:
        with self._lock:
            return len(self.entries)

    def field_name(self, field_id: int) -> str:
        if not 0 <= field_id < len(self.entries):
            return ""
        return self.entries[field_id].name

    def clear(self) -> None:
        super().clear()
        self._raw_map.clear()
        self._virtual_map.clear()

    def _load_next_entry(self, index: int) -> Optional[SectionHeader]:
        sec = SectionHeader(self.pe, index)
        if sec.offset() is None:
            log.warning("Deleting invalid section...")
            return None
        return sec

    def wrap(self) -> None:
        with self._lock:
            self.clear()
            count = min(self.pe.hdr_sections_num(), self.SECT_COUNT_MAX)
            for index in range(count):
                sec = self._load_next_entry(index)
                if sec is None:
                    break
                self.entries.append(sec)
                self._add_mapping(sec)

    def _add_mapping(self, sec: SectionHeader) -> None:
        if sec.content_size(AddrType.RAW, True) == 0:
            return
        end_rva = sec.content_end_offset(AddrType.RVA, True)
        end_raw = sec.content_end_offset(AddrType.RAW, True)
        if end_raw in self._raw_map:
            prev = self._raw_map[end_raw]
            if prev.content_offset(AddrType.RAW) < sec.content_offset(AddrType.RAW):
                return
        if end_rva in self._virtual_map:
            prev = self._virtual_map.get(end_raw)
            if prev is None:
                return
            if prev.content_offset(AddrType.RVA) < sec.content_offset(AddrType.RVA):
                return
        self._virtual_map[end_rva] = sec
        self._raw_map[end_raw] = sec

    def reload_mapping(self) -> None:
        """Rebuild the offset lookups from the loaded entries."""
        with self._lock:
            self._raw_map.clear()
            self._virtual_map.clear()
            for sec in self.entries:
                self._add_mapping(sec)

    def _map_for(self, addr_type: AddrType) -> Optional[Dict[int, SectionHeader]]:
        if addr_type == AddrType.RAW:
            return self._raw_map
        if addr_type in (AddrType.RVA, AddrType.VA):
            return self._virtual_map
        return None

    # --- adding entries -----------------------------------------------------

    def _next_entry_offset(self) -> Optional[int]:
        return self.pe.sec_hdrs_offset() + len(self.entries) * SECTION_HEADER_SIZE

    def _entry_size(self) -> int:
        return SECTION_HEADER_SIZE

    def _is_my_entry_type(self, entry: NodeWrapper) -> bool:
        return isinstance(entry, SectionHeader)

    def can_add_entry(self) -> bool:
        """Tell whether the space after the last header is free for one more."""
        return super().can_add_entry()

    def add_entry(self, entry: NodeWrapper) -> Optional[NodeWrapper]:
        """Append a copy of ``entry`` to the table and update the section count."""
        count = self.pe.hdr_sections_num()
        if count >= self.SECT_COUNT_MAX:
            raise ParserError("the limit of sections is exceeded")
        super().add_entry(entry)
        self.pe.set_hdr_sections_num(count + 1)
        return self.last_entry()

    # --- lookups ------------------------------------------------------------

    def section_at_offset(
        self, offset: int, addr_type: AddrType, recalculate: bool = False
    ) -> Optional[SectionHeader]:
        """The section whose content holds ``offset``, or None."""
        sec_map = self._map_for(addr_type)
        if not sec_map:
            return None
        keys = sorted(sec_map)
        for key in keys[bisect.bisect_left(keys, offset):]:
            sec = sec_map[key]
            start = sec.content_offset(addr_type)
            if start is None:
                continue
            end = sec.content_end_offset(addr_type, recalculate)
            if start <= offset < end:
                return sec
            if offset < start:
                break
        return None

    def mapping_lines(self, addr_type: AddrType) -> List[str]:
        """Describe the lookup for an address space, one line per section."""
        sec_map = self._map_for(addr_type)
        if sec_map is None:
            return []
        return [
            f"[{end:X}] {sec.name} {_hex(sec.content_offset(addr_type))} "
            f"{_hex(sec.content_end_offset(addr_type, True))}"
            for end, sec in sorted(sec_map.items())
        ]
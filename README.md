# bearpe

A pure-Python library for looking inside Portable Executable (PE) files. It has no dependencies outside the standard library. Every part of it works on a byte buffer held in memory.

## Modules

- `bearpe.buffer`: `ByteBuffer` and `BufferView`. They give bounds-checked reads and writes of little-endian integers and NUL-terminated strings. The module also has `read_file`, the rounding helpers `units_count`, `roundup` and `roundup_to_unit`, and `is_printable`.
- `bearpe.executable`: the `Executable` base class. It converts addresses between raw file offsets, RVAs and VAs (`AddrType`). It also holds `WrappedValue`, a typed view of a field.
- `bearpe.wrappers`: `ElementWrapper` and `NodeWrapper`. These are generic descriptions of on-disk structures as lists of fields and child entries.
- `bearpe.sections`: `PEImage`, which reads the MZ/PE headers and the section table. It also has `SectionHeader` and `SectionHeaders`, with the raw and virtual sizes that a loader really maps, and helpers that describe section characteristics.
- `bearpe.security`: `SecurityDirectory`, the certificate table entry.
- `bearpe.tls`: `TlsDirectory` and its `TlsCallback` entries.
- `bearpe.ordinals`: `OrdinalsLookup` and `find_func_name`. They give function names for imports by ordinal from `ws2_32`, `wsock32` and `oleaut32`.

## Installation

```
pip install .
```

## Usage

Read a file and work on the bytes:

```python
from bearpe.buffer import read_file

buf = read_file("sample.exe")
magic = buf.get_num_value(0, 2)        # 0x5A4D for "MZ"
name = buf.get_string_value(0x80, 4)
```

Walk the sections of an image and map addresses:

```python
from bearpe.buffer import read_file
from bearpe.executable import AddrType
from bearpe.sections import PEImage, access_rights_desc

pe = PEImage(read_file("sample.exe"))
for sec in pe.sections:
    print(sec.mapped_name, access_rights_desc(sec.characteristics),
          sec.content_offset(AddrType.RAW), sec.content_size(AddrType.RVA))

ep = pe.entry_point(AddrType.RVA)
entry_section = pe.sections.section_at_offset(ep, AddrType.RVA, True)
ep_raw = pe.convert_addr(ep, AddrType.RVA, AddrType.RAW)
print("\n".join(pe.sections.mapping_lines(AddrType.RVA)))
```

Describe section characteristics:

```python
from bearpe.sections import split_characteristics, translate_characteristic

[translate_characteristic(c) for c in split_characteristics(0x60000020)]
# ['code', 'executable', 'readable']
```

Read the TLS callbacks and the certificate entry. You give the directory address yourself: an RVA for TLS and a raw file offset for the certificate.

```python
from bearpe.security import SecurityDirectory
from bearpe.tls import TlsDirectory, TlsField

tls = TlsDirectory(pe, tls_rva)
callbacks = [cb.value() for cb in tls]          # VAs, up to the first zero
tls.num_value(TlsField.CALLBACKS_ADDR)

cert = SecurityDirectory(pe, cert_offset)
cert.size()
cert.translate_field_content(SecurityDirectory.TYPE)   # e.g. "PKCS Signed Data"
```

Look up an import that is given only by ordinal:

```python
from bearpe.ordinals import find_func_name

find_func_name("WS2_32", 23)    # "socket"
find_func_name("oleaut32", 2)   # "SysAllocString"
```

Errors are raised as exceptions:

- A read outside a buffer raises `bearpe.buffer.BufferAccessError`.
- A buffer that is not an MZ/PE image raises `bearpe.buffer.ParserError` from `PEImage`.
- A refused change, such as adding a section header with no free space, also raises `bearpe.buffer.ParserError`.

## What it does not do

- There is no command-line tool.
- `PEImage` does not parse the data directory table. It does not read the import, export, resource, relocation, debug, load-config or CLR directories either. The TLS and security directories must be given their addresses.
- Plain DOS executables without a PE header are not supported.
- Changes are made to the buffer in memory. Only `Executable.dump_fragment` writes bytes back to a file.

## Running the tests

```
pip install .[test]
pytest
```